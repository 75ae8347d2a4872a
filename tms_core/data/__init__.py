"""
Data layer: models, the store contract and the typed repository.
"""

from .repository import Repository
from .store import DocumentStore, InMemoryDocumentStore

__all__ = ["DocumentStore", "InMemoryDocumentStore", "Repository"]

"""
Freight brokerage core: profitability, billing documents, tracking events
and provider integrations (DAT, MacroPoint, ePay, QuickBooks).
"""

__version__ = "0.1.0"

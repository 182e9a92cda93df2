"""
Stock Token Ledger

Product inventory as fungible ledger tokens with a locally reconciled
view of ownership, metadata and balances.
"""

__version__ = "1.0.0"

"""
Bank Ledger

Transaction posting engine for a banking demo: atomic balance mutation for
deposits, withdrawals and transfers, exact Decimal arithmetic, and
dashboard aggregation over accounts and transactions.
"""

__version__ = "1.0.0"

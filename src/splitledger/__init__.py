"""SplitLedger: shared-expense balance ledger for friends and groups."""

__version__ = "0.1.0"

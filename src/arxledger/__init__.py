"""ARX-P points ledger and reconciliation service."""

__version__ = "0.1.0"

"""finsync - Qonto sync with AI-assisted project assignment of supplier invoices."""

__version__ = "1.0.0"

"""Project assignment of supplier invoices, automatic and manual."""

"""Qonto sync pipeline for finsync.

Paginated fetch, reconciliation keyed by external id, and staggered
classification of new supplier invoices.
"""

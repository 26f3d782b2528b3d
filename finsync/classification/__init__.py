"""Supplier invoice document classification with a vision model."""

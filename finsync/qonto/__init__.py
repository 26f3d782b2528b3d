"""Qonto third-party API client."""

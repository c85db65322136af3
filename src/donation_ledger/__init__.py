"""Donation inventory and consumption ledger."""

__version__ = "0.1.0"

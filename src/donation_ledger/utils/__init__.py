"""Utilities package for the donation ledger."""

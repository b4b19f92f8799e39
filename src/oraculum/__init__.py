"""Oraculum — related-notes embedding index for markdown vaults."""

__version__ = "0.1.0"

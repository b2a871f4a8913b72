"""Storefront bridge and preview backend for the AI Art Studio."""

__version__ = "0.1.0"

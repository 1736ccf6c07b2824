"""Competitive price scraping and product matching."""

__version__ = "0.1.0"

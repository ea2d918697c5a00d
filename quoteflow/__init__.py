"""QuoteFlow - position tree editing core for a quote editor."""

__version__ = "0.1.0"

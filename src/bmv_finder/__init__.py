"""UK Land Registry sold-price ingestion, search and BMV analysis."""

__version__ = "0.1.0"

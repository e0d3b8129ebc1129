"""HerbSync - resilient botanical data ingestion."""

__version__ = "0.1.0"

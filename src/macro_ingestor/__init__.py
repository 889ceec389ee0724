"""macro-ingestor: resilient ingestion of Argentine macroeconomic time series."""

__version__ = "0.1.0"

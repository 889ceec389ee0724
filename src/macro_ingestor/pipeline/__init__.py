"""Ingestion use cases: incremental update, backfill, discovery and metadata populate."""

from macro_ingestor.pipeline.backfill import BackfillSeries
from macro_ingestor.pipeline.base import ingest_range
from macro_ingestor.pipeline.discover import (
    DEFAULT_DISCOVERY_CRITERIA,
    DiscoverSeries,
    DiscoveryCriterion,
    DiscoveryResult,
)
from macro_ingestor.pipeline.populate import (
    PROVIDER_SOURCES,
    PopulateResult,
    PopulateSeries,
    infer_unit,
)
from macro_ingestor.pipeline.update import FetchAndStoreSeries, determine_from_date

__all__ = [
    "ingest_range",
    "determine_from_date",
    "FetchAndStoreSeries",
    "BackfillSeries",
    "DiscoverSeries",
    "DiscoveryCriterion",
    "DiscoveryResult",
    "DEFAULT_DISCOVERY_CRITERIA",
    "PopulateSeries",
    "PopulateResult",
    "PROVIDER_SOURCES",
    "infer_unit",
]

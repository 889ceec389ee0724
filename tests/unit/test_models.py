"""Tests for macro_ingestor.core.models."""

from datetime import date

import pytest
from pydantic import ValidationError

from macro_ingestor.core.models import (
    FetchRangeParams,
    FetchRangeResult,
    Frequency,
    IngestResult,
    SeriesMapping,
    SeriesMetadata,
    SeriesPoint,
    SeriesSource,
)


class TestSeriesPoint:
    def test_valid_point(self):
        p = SeriesPoint(series_id="1", ts=date(2024, 1, 2), value=42.5)
        assert p.series_id == "1"
        assert p.metadata is None

    def test_frozen(self):
        p = SeriesPoint(series_id="1", ts=date(2024, 1, 2), value=1.0)
        with pytest.raises(ValidationError):
            p.value = 2.0

    def test_blank_series_id_rejected(self):
        with pytest.raises(ValidationError, match="series_id"):
            SeriesPoint(series_id="  ", ts=date(2024, 1, 2), value=1.0)

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_value_rejected(self, bad):
        with pytest.raises(ValidationError, match="finite"):
            SeriesPoint(series_id="1", ts=date(2024, 1, 2), value=bad)

    def test_date_string_coerced(self):
        p = SeriesPoint(series_id="1", ts="2024-03-04", value=1)
        assert p.ts == date(2024, 3, 4)
        assert isinstance(p.value, float)


class TestEnums:
    def test_source_values(self):
        assert SeriesSource.CENTRAL_BANK_MONETARY == "bcra"
        assert SeriesSource("indec") is SeriesSource.STATISTICS_AGENCY

    def test_frequency_values(self):
        assert [f.value for f in Frequency] == [
            "daily", "weekly", "monthly", "quarterly", "yearly",
        ]


class TestFetchRangeParams:
    def test_defaults(self):
        p = FetchRangeParams(external_id="1", start=date(2024, 1, 1))
        assert p.end is None
        assert p.limit is None
        assert p.offset == 0

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError, match="must not be before"):
            FetchRangeParams(external_id="1", start=date(2024, 2, 1), end=date(2024, 1, 1))

    def test_single_day_range_allowed(self):
        p = FetchRangeParams(external_id="1", start=date(2024, 1, 1), end=date(2024, 1, 1))
        assert p.start == p.end

    def test_limit_must_be_positive(self):
        with pytest.raises(ValidationError, match="limit"):
            FetchRangeParams(external_id="1", start=date(2024, 1, 1), limit=0)

    def test_offset_non_negative(self):
        with pytest.raises(ValidationError, match="offset"):
            FetchRangeParams(external_id="1", start=date(2024, 1, 1), offset=-1)


class TestOtherModels:
    def test_fetch_range_result_defaults(self):
        r = FetchRangeResult(provider="X")
        assert r.points == []
        assert r.total_count == 0
        assert r.has_more is False

    def test_metadata_default_map(self):
        m = SeriesMetadata(id="1", source="bcra", frequency="daily")
        assert m.metadata == {}
        assert m.source is SeriesSource.CENTRAL_BANK_MONETARY

    def test_mapping_defaults(self):
        m = SeriesMapping(internal_series_id="a", external_series_id="1", provider_name="P")
        assert m.keywords == []
        assert m.description is None

    def test_ingest_result_is_mutable(self):
        r = IngestResult(series_id="1", success=True)
        r.points_stored = 3
        assert r.points_stored == 3

"""Tests for the update, backfill, discovery and populate use cases."""

from __future__ import annotations

import asyncio
from datetime import date
from unittest.mock import AsyncMock

import pytest

from macro_ingestor.core.exceptions import ProviderError
from macro_ingestor.core.models import (
    AvailableSeries,
    FetchRangeResult,
    Frequency,
    SeriesMapping,
    SeriesMetadata,
    SeriesSource,
)
from macro_ingestor.pipeline import (
    BackfillSeries,
    DiscoverSeries,
    DiscoveryCriterion,
    FetchAndStoreSeries,
    PopulateSeries,
    determine_from_date,
    infer_unit,
)
from macro_ingestor.providers.chain import ProviderChain
from macro_ingestor.providers.resolver import SeriesIdResolver

TODAY = date(2024, 6, 10)


def _chain(*providers):
    return ProviderChain(providers, primary=providers[0].name)


class TestDetermineFromDate:
    def test_day_after_last_point(self):
        assert determine_from_date(date(2024, 1, 31), TODAY) == date(2024, 2, 1)

    def test_lookback_when_empty(self):
        assert determine_from_date(None, TODAY) == date(2024, 6, 9)
        assert determine_from_date(None, TODAY, default_lookback_days=30) == date(2024, 5, 11)


class TestFetchAndStoreSeries:
    async def test_first_run_uses_lookback(self, store, fake_provider_cls, make_point):
        provider = fake_provider_cls("BCRA_MONETARIAS", [make_point(ts=TODAY, value=5.0)])
        use_case = FetchAndStoreSeries(store, _chain(provider), today=lambda: TODAY)

        result = await use_case.execute("1")

        assert result.success is True
        assert (result.points_fetched, result.points_stored) == (1, 1)
        assert result.provider == "BCRA_MONETARIAS"
        assert provider.fetch_calls[0].start == date(2024, 6, 9)
        assert provider.fetch_calls[0].end is None

    async def test_incremental_start(self, store, fake_provider_cls, make_point):
        await store.upsert_points([make_point(series_id="1", ts=date(2024, 6, 5))])
        provider = fake_provider_cls("BCRA_MONETARIAS", [])
        use_case = FetchAndStoreSeries(store, _chain(provider), today=lambda: TODAY)

        result = await use_case.execute("1")

        assert provider.fetch_calls[0].start == date(2024, 6, 6)
        assert result.success is True
        assert result.points_stored == 0

    async def test_external_id_resolved_and_points_stored_under_canonical_id(
        self, store, fake_provider_cls, make_point
    ):
        await store.create_mapping(
            SeriesMapping(
                internal_series_id="reservas",
                external_series_id="1",
                provider_name="BCRA_MONETARIAS",
            )
        )
        provider = fake_provider_cls("BCRA_MONETARIAS", [make_point(ts=TODAY)])
        use_case = FetchAndStoreSeries(
            store, _chain(provider), resolver=SeriesIdResolver(store), today=lambda: TODAY
        )

        result = await use_case.execute("reservas")

        assert result.success is True
        assert provider.fetch_calls[0].external_id == "1"
        assert [p.series_id for p in await store.get_points("reservas")] == ["reservas"]
        assert await store.get_points("1") == []

    async def test_each_failover_candidate_gets_its_own_native_id(
        self, store, fake_provider_cls, make_point
    ):
        for provider_name, native_id in (
            ("BCRA_MONETARIAS", "1"),
            ("DATOS_SERIES", "174.1_RRVAS_IDOS_0_0_36"),
        ):
            await store.create_mapping(
                SeriesMapping(
                    internal_series_id="reservas",
                    external_series_id=native_id,
                    provider_name=provider_name,
                )
            )
        bcra = fake_provider_cls("BCRA_MONETARIAS", ProviderError("HTTP 503"))
        datos = fake_provider_cls("DATOS_SERIES", [make_point(ts=TODAY)])
        use_case = FetchAndStoreSeries(
            store, _chain(bcra, datos), resolver=SeriesIdResolver(store), today=lambda: TODAY
        )

        result = await use_case.execute("reservas")

        assert result.provider == "DATOS_SERIES"
        assert bcra.fetch_calls[0].external_id == "1"
        assert datos.fetch_calls[0].external_id == "174.1_RRVAS_IDOS_0_0_36"
        assert [p.series_id for p in await store.get_points("reservas")] == ["reservas"]

    async def test_exhausted_chain_becomes_failed_result(self, store, fake_provider_cls):
        provider = fake_provider_cls("BCRA_MONETARIAS", ProviderError("HTTP 503"))
        result = await FetchAndStoreSeries(store, _chain(provider), today=lambda: TODAY).execute("1")
        assert result.success is False
        assert "HTTP 503" in result.error

    async def test_storage_error_becomes_failed_result(self, fake_provider_cls, make_point):
        store = AsyncMock()
        store.get_last_date.return_value = None
        store.upsert_points.side_effect = RuntimeError("locked")
        provider = fake_provider_cls("BCRA_MONETARIAS", [make_point()])
        result = await FetchAndStoreSeries(store, _chain(provider), today=lambda: TODAY).execute("1")
        assert result.success is False
        assert result.error == "locked"

    async def test_execute_many_keeps_order_and_isolates_failures(
        self, store, fake_provider_cls, make_point
    ):
        good = fake_provider_cls("BCRA_MONETARIAS", [make_point(ts=TODAY)])
        bad = fake_provider_cls("DOLARAPI", ProviderError("down"))
        chain = ProviderChain([good, bad], primary="DOLARAPI", fallbacks=[])
        use_case = FetchAndStoreSeries(store, chain, today=lambda: TODAY)

        results = await use_case.execute_many(["1", "dolarapi.blue_ars", "7"])

        assert [r.series_id for r in results] == ["1", "dolarapi.blue_ars", "7"]
        assert [r.success for r in results] == [True, False, True]

    async def test_execute_many_bounded(self, make_point):
        in_flight = peak = 0

        class SlowChain:
            def suggest_provider(self, series_id):
                return "X"

            async def fetch_range(self, params, resolve=None):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return FetchRangeResult(points=[], provider="X")

        store = AsyncMock()
        store.get_last_date.return_value = None
        use_case = FetchAndStoreSeries(store, SlowChain(), max_concurrent=2, today=lambda: TODAY)

        results = await use_case.execute_many([str(i) for i in range(8)])

        assert len(results) == 8
        assert peak == 2

    def test_max_concurrent_validated(self):
        with pytest.raises(ValueError):
            FetchAndStoreSeries(AsyncMock(), None, max_concurrent=0)


class TestBackfillSeries:
    async def test_range_forwarded_and_stored(self, store, fake_provider_cls, make_points):
        provider = fake_provider_cls("BCRA_MONETARIAS", make_points(31, start=date(2024, 1, 1)))
        use_case = BackfillSeries(store, _chain(provider))

        result = await use_case.execute("1", date(2024, 1, 1), date(2024, 1, 31))

        assert result.success is True
        assert result.points_stored == 31
        params = provider.fetch_calls[0]
        assert (params.start, params.end) == (date(2024, 1, 1), date(2024, 1, 31))
        stats = await use_case.get_backfill_stats("1")
        assert stats.total_points == 31

    async def test_rerun_is_idempotent(self, store, fake_provider_cls, make_points):
        provider = fake_provider_cls("BCRA_MONETARIAS", make_points(10))
        use_case = BackfillSeries(store, _chain(provider))
        await use_case.execute("1", date(2024, 1, 1))
        await use_case.execute("1", date(2024, 1, 1))
        assert (await use_case.get_backfill_stats("1")).total_points == 10

    async def test_inverted_range_fails_without_fetching(self, store, fake_provider_cls):
        provider = fake_provider_cls("BCRA_MONETARIAS", [])
        result = await BackfillSeries(store, _chain(provider)).execute(
            "1", date(2024, 2, 1), date(2024, 1, 1)
        )
        assert result.success is False
        assert provider.fetch_calls == []

    async def test_stats_none_before_backfill(self, store, fake_provider_cls):
        use_case = BackfillSeries(store, _chain(fake_provider_cls("BCRA_MONETARIAS")))
        assert await use_case.get_backfill_stats("1") is None


class TestInferUnit:
    @pytest.mark.parametrize(
        "title, unit",
        [
            ("Tipo de cambio Dólar", "USD"),
            ("Reservas en USD", "USD"),
            ("Tasa de política monetaria", "percent"),
            ("Variación en porcentaje", "percent"),
            ("Índice de precios", "index"),
            ("Base monetaria en pesos", "ARS"),
            ("Algo sin pistas", "ARS"),
        ],
    )
    def test_keywords(self, title, unit):
        assert infer_unit(title) == unit


class TestPopulateSeries:
    @pytest.fixture
    def catalogue_provider(self, fake_provider_cls):
        return fake_provider_cls(
            "BCRA_MONETARIAS",
            available=[
                AvailableSeries(id="1", title="Reservas en USD", description="Diaria", frequency="daily"),
                AvailableSeries(id="27", title="Inflación mensual (porcentaje)", frequency="monthly"),
            ],
        )

    async def _map(self, store, internal, external, provider="BCRA_MONETARIAS"):
        await store.create_mapping(
            SeriesMapping(
                internal_series_id=internal, external_series_id=external, provider_name=provider
            )
        )

    async def test_creates_metadata_for_matches(self, store, catalogue_provider):
        await self._map(store, "reservas", "1")
        await self._map(store, "inflacion", "27")
        await self._map(store, "ghost", "999")
        await self._map(store, "fx_usd", "USD", provider="BCRA_CAMBIARIAS")

        result = await PopulateSeries(store, catalogue_provider).execute()

        assert (result.success, result.populated, result.skipped) == (True, 2, 1)
        reservas = await store.get_series_metadata("reservas")
        assert reservas.source is SeriesSource.CENTRAL_BANK_MONETARY
        assert reservas.frequency is Frequency.DAILY
        assert reservas.unit == "USD"
        assert reservas.metadata["provider_series_id"] == "1"
        inflacion = await store.get_series_metadata("inflacion")
        assert (inflacion.frequency, inflacion.unit) == (Frequency.MONTHLY, "percent")
        assert await store.get_series_metadata("fx_usd") is None

    async def test_existing_metadata_merged(self, store, catalogue_provider):
        await self._map(store, "reservas", "1")
        await store.upsert_series_metadata(
            SeriesMetadata(
                id="reservas",
                source=SeriesSource.CENTRAL_BANK_MONETARY,
                frequency=Frequency.WEEKLY,
                unit="ARS",
                metadata={"owner": "research"},
            )
        )

        result = await PopulateSeries(store, catalogue_provider).execute()

        assert result.populated == 1
        meta = await store.get_series_metadata("reservas")
        assert meta.frequency is Frequency.WEEKLY
        assert meta.metadata["owner"] == "research"
        assert meta.metadata["title"] == "Reservas en USD"

    async def test_catalogue_failure(self, store, fake_provider_cls):
        provider = fake_provider_cls("BCRA_MONETARIAS")
        provider.get_available_series = AsyncMock(side_effect=ProviderError("catalog down"))
        result = await PopulateSeries(store, provider).execute()
        assert result.success is False
        assert result.errors == ["catalog down"]

    async def test_unknown_frequency_defaults_daily(self, store, fake_provider_cls):
        provider = fake_provider_cls(
            "DATOS_SERIES", available=[AvailableSeries(id="x", title="Serie", frequency="hourly")]
        )
        await self._map(store, "serie", "x", provider="DATOS_SERIES")
        await PopulateSeries(store, provider).execute()
        meta = await store.get_series_metadata("serie")
        assert meta.frequency is Frequency.DAILY
        assert meta.source is SeriesSource.STATISTICS_AGENCY


class TestDiscoverSeries:
    CATALOGUE = [
        AvailableSeries(id="6", title="Tasa de Política Monetaria (en % n.a.)"),
        AvailableSeries(id="1", title="Reservas Internacionales del BCRA (en millones de dólares)"),
        AvailableSeries(id="15", title="Base monetaria - Total (en millones de pesos)"),
    ]
    CRITERIA = [
        DiscoveryCriterion("reservas", ("reservas internacionales",), "Reservas"),
        DiscoveryCriterion("base", ("BASE MONETARIA",), "Base monetaria"),
        DiscoveryCriterion("leliqs", ("leliq",), "Stock de LELIQ"),
    ]

    @pytest.fixture
    def provider(self, fake_provider_cls):
        return fake_provider_cls("BCRA_MONETARIAS", available=list(self.CATALOGUE))

    async def test_matches_recorded_as_mappings(self, store, provider):
        result = await DiscoverSeries(store, provider, self.CRITERIA).execute()

        assert [(m.series_id, m.external_id, m.created) for m in result.mapped] == [
            ("reservas", "1", True),
            ("base", "15", True),
        ]
        assert await store.get_external_series_id("reservas", "BCRA_MONETARIAS") == "1"
        assert await store.get_internal_series_id("15", "BCRA_MONETARIAS") == "base"
        mapping = (await store.list_mappings("BCRA_MONETARIAS"))[0]
        assert mapping.keywords == ["BASE MONETARIA"]

    async def test_unmatched_criterion_reported(self, store, provider):
        result = await DiscoverSeries(store, provider, self.CRITERIA).execute()
        assert [u.series_id for u in result.unmapped] == ["leliqs"]
        assert await store.get_external_series_id("leliqs", "BCRA_MONETARIAS") is None

    async def test_rerun_keeps_existing_mappings(self, store, provider):
        await DiscoverSeries(store, provider, self.CRITERIA).execute()
        result = await DiscoverSeries(store, provider, self.CRITERIA).execute()
        assert [m.created for m in result.mapped] == [False, False]
        assert len(await store.list_mappings("BCRA_MONETARIAS")) == 2

    async def test_existing_metadata_notes_provider_id(self, store, provider):
        await store.upsert_series_metadata(
            SeriesMetadata(
                id="reservas",
                source=SeriesSource.CENTRAL_BANK_MONETARY,
                frequency=Frequency.DAILY,
                metadata={"owner": "research"},
            )
        )
        await DiscoverSeries(store, provider, self.CRITERIA[:1]).execute()

        meta = await store.get_series_metadata("reservas")
        assert meta.metadata["owner"] == "research"
        assert meta.metadata["provider_series_id"] == "1"
        assert "last_discovered" in meta.metadata

    async def test_catalogued_series_without_mapping_reported(self, store, provider):
        for series_id, source in (
            ("ipc", SeriesSource.STATISTICS_AGENCY),
            ("depositos", SeriesSource.CENTRAL_BANK_MONETARY),
        ):
            await store.upsert_series_metadata(
                SeriesMetadata(id=series_id, source=source, frequency=Frequency.MONTHLY)
            )

        result = await DiscoverSeries(store, provider, self.CRITERIA[:1]).execute()

        reasons = {u.series_id: u.reason for u in result.unmapped}
        assert reasons == {
            "ipc": "Statistics agency series, not served by BCRA_MONETARIAS",
            "depositos": "No BCRA_MONETARIAS mapping found",
        }

    async def test_default_criteria_map_reserves_and_base(self, store, provider):
        result = await DiscoverSeries(store, provider).execute()
        assert [(m.series_id, m.external_id) for m in result.mapped] == [("1", "1"), ("15", "15")]

    async def test_catalogue_failure_propagates(self, store, fake_provider_cls):
        provider = fake_provider_cls("BCRA_MONETARIAS")
        provider.get_available_series = AsyncMock(side_effect=ProviderError("catalog down"))
        with pytest.raises(ProviderError, match="catalog down"):
            await DiscoverSeries(store, provider).execute()

"""Tests for ProviderChain routing, health gating and failover."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from macro_ingestor.core.exceptions import ProviderError, ProvidersExhaustedError
from macro_ingestor.core.models import FetchRangeParams
from macro_ingestor.providers.chain import ProviderChain

A, B, C = "BCRA_MONETARIAS", "BCRA_CAMBIARIAS", "DATOS_SERIES"


def _params(external_id="1"):
    return FetchRangeParams(external_id=external_id, start=date(2024, 1, 1))


class TestRouting:
    @pytest.fixture
    def chain(self, fake_provider_cls):
        return ProviderChain([fake_provider_cls(A)], primary=A)

    @pytest.mark.parametrize(
        "external_id, expected",
        [
            ("dolarapi.mep_ars", "DOLARAPI"),
            ("oficial.usd_ars", "BCRA_OFICIAL"),
            ("bcra.7", "BCRA_MONETARIAS"),
            ("7931", "BCRA_MONETARIAS"),
            ("fx.usd", "BCRA_CAMBIARIAS"),
            ("indec.ipc", "DATOS_SERIES"),
            ("168.1_T_CAMBIOR_D_0_0_26", "DATOS_SERIES"),
            ("something_else", A),
        ],
    )
    def test_suggest_provider(self, chain, external_id, expected):
        assert chain.suggest_provider(external_id) == expected

    def test_fallbacks_default_to_registration_order(self, fake_provider_cls):
        chain = ProviderChain(
            [fake_provider_cls(n) for n in (A, B, C)], primary=A
        )
        assert chain.candidates("x") == [A, B, C]

    def test_suggested_provider_goes_first_once(self, fake_provider_cls):
        chain = ProviderChain([fake_provider_cls(n) for n in (A, B, C)], primary=A)
        assert chain.candidates("fx.usd") == [B, C]

    def test_routed_id_skips_primary_missing_from_fallbacks(self, fake_provider_cls):
        chain = ProviderChain(
            [fake_provider_cls(n) for n in (A, "DOLARAPI", C)], primary=A, fallbacks=[C]
        )
        assert chain.candidates("dolarapi.mep_ars") == ["DOLARAPI", C]

    def test_explicit_fallbacks(self, fake_provider_cls):
        chain = ProviderChain(
            [fake_provider_cls(n) for n in (A, B, C)], primary=A, fallbacks=[C]
        )
        assert chain.candidates("x") == [A, C]
        assert chain.providers == [A, B, C]
        assert chain.primary == A


class TestFailover:
    async def test_primary_succeeds(self, fake_provider_cls, make_point):
        a = fake_provider_cls(A, [make_point()])
        b = fake_provider_cls(B, [make_point()])
        result = await ProviderChain([a, b], primary=A).fetch_range(_params())
        assert result.provider == A
        assert b.fetch_calls == []

    async def test_unhealthy_provider_never_fetched(self, fake_provider_cls, make_point):
        a = fake_provider_cls(A, [make_point()], healthy=False)
        b = fake_provider_cls(B, [make_point(value=2.0)])
        result = await ProviderChain([a, b], primary=A).fetch_range(_params())
        assert result.provider == B
        assert a.fetch_calls == []
        assert a.health_calls == 1

    async def test_error_moves_to_next(self, fake_provider_cls, make_point):
        a = fake_provider_cls(A, ProviderError("boom"))
        b = fake_provider_cls(B, [make_point()])
        result = await ProviderChain([a, b], primary=A).fetch_range(_params())
        assert result.provider == B
        assert len(a.fetch_calls) == 1

    async def test_any_exception_moves_to_next(self, fake_provider_cls, make_point):
        a = fake_provider_cls(A, RuntimeError("unexpected"))
        b = fake_provider_cls(B, [make_point()])
        assert (await ProviderChain([a, b], primary=A).fetch_range(_params())).provider == B

    async def test_failing_health_probe_counts_as_failure(self, fake_provider_cls, make_point):
        a = fake_provider_cls(A, [make_point()], healthy=ProviderError("probe died"))
        b = fake_provider_cls(B, [make_point()])
        assert (await ProviderChain([a, b], primary=A).fetch_range(_params())).provider == B
        assert a.fetch_calls == []

    async def test_empty_success_is_terminal(self, fake_provider_cls, make_point):
        a = fake_provider_cls(A, [])
        b = fake_provider_cls(B, [make_point()])
        result = await ProviderChain([a, b], primary=A).fetch_range(_params())
        assert result.provider == A
        assert result.points == []
        assert b.fetch_calls == []

    async def test_routed_failover_uses_fallbacks_not_primary(
        self, fake_provider_cls, make_point
    ):
        primary = fake_provider_cls(A, [make_point()])
        dolar = fake_provider_cls("DOLARAPI", [make_point()], healthy=False)
        datos = fake_provider_cls(C, [make_point()])
        chain = ProviderChain([primary, dolar, datos], primary=A, fallbacks=[C])

        result = await chain.fetch_range(_params("dolarapi.mep_ars"))

        assert result.provider == C
        assert primary.fetch_calls == []
        assert primary.health_calls == 0

    async def test_resolve_called_per_candidate(self, fake_provider_cls, make_point):
        a = fake_provider_cls(A, ProviderError("boom"))
        b = fake_provider_cls(B, [make_point()])
        native = {A: "bcra-id", B: "fx-id"}

        async def resolve(name):
            return native[name]

        result = await ProviderChain([a, b], primary=A).fetch_range(_params("x"), resolve=resolve)

        assert a.fetch_calls[0].external_id == "bcra-id"
        assert b.fetch_calls[0].external_id == "fx-id"
        assert [p.series_id for p in result.points] == ["fx-id"]

    async def test_resolve_error_propagates(self, fake_provider_cls, make_point):
        a = fake_provider_cls(A, [make_point()])

        async def resolve(name):
            raise RuntimeError("mapping table unavailable")

        with pytest.raises(RuntimeError, match="mapping table"):
            await ProviderChain([a], primary=A).fetch_range(_params(), resolve=resolve)
        assert a.fetch_calls == []

    async def test_unregistered_candidate_skipped(self, fake_provider_cls, make_point):
        b = fake_provider_cls(B, [make_point()])
        chain = ProviderChain([b], primary=A, fallbacks=[B])
        assert (await chain.fetch_range(_params())).provider == B

    async def test_exhausted_carries_last_error(self, fake_provider_cls):
        first, last = ProviderError("first"), ProviderError("last")
        a = fake_provider_cls(A, first)
        b = fake_provider_cls(B, last)
        with pytest.raises(ProvidersExhaustedError) as exc_info:
            await ProviderChain([a, b], primary=A).fetch_range(_params())
        err = exc_info.value
        assert err.last_error is last
        assert err.__cause__ is last
        assert err.context["providers_tried"] == [A, B]
        assert "last" in str(err)

    async def test_exhausted_when_all_unhealthy(self, fake_provider_cls):
        a = fake_provider_cls(A, healthy=False)
        with pytest.raises(ProvidersExhaustedError) as exc_info:
            await ProviderChain([a], primary=A).fetch_range(_params())
        assert exc_info.value.last_error is None


class TestHealthCache:
    async def test_no_ttl_probes_every_fetch(self, fake_provider_cls, make_point):
        a = fake_provider_cls(A, [make_point()])
        chain = ProviderChain([a], primary=A)
        await chain.fetch_range(_params())
        await chain.fetch_range(_params())
        assert a.health_calls == 2

    async def test_ttl_reuses_verdict(self, fake_provider_cls, make_point):
        a = fake_provider_cls(A, [make_point()])
        chain = ProviderChain([a], primary=A, health_ttl_seconds=60)
        await chain.fetch_range(_params())
        await chain.fetch_range(_params())
        assert a.health_calls == 1

    async def test_failure_invalidates_cached_verdict(self, fake_provider_cls, make_point):
        a = fake_provider_cls(A, ProviderError("x"))
        b = fake_provider_cls(B, [make_point()])
        chain = ProviderChain([a, b], primary=A, health_ttl_seconds=60)
        await chain.fetch_range(_params())
        await chain.fetch_range(_params())
        assert a.health_calls == 2


class TestHealthStatus:
    async def test_reports_every_provider(self, fake_provider_cls):
        a = fake_provider_cls(A, healthy=True)
        b = fake_provider_cls(B, healthy=False)
        c = fake_provider_cls(C, healthy=ProviderError("probe exploded"))
        status = await ProviderChain([a, b, c], primary=A).get_health_status()
        assert list(status) == [A, B, C]
        assert status[A].is_healthy is True
        assert status[B].is_healthy is False
        assert status[C].is_healthy is False
        assert status[C].error == "probe exploded"

    async def test_cancellation_propagates(self, fake_provider_cls):
        a = fake_provider_cls(A, healthy=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await ProviderChain([a], primary=A).get_health_status()

    async def test_close_closes_all(self, fake_provider_cls):
        providers = [fake_provider_cls(n) for n in (A, B)]
        await ProviderChain(providers, primary=A).close()
        assert all(p.closed for p in providers)

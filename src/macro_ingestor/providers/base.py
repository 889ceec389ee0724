"""Provider protocol: the source-agnostic interface layer.

Architecture
------------
Every upstream source sits behind one adapter that speaks the canonical
model:

    Upstream JSON → envelope model → normalize_points → FetchRangeResult

- **SeriesProvider** is the consumer-facing protocol. The provider chain,
  the use cases and the API depend only on it.

- Each adapter validates the response envelope with its own pydantic model
  and hands the raw items to :mod:`macro_ingestor.core.normalize`, so the
  date/number coercion rules live in exactly one place.

Adding a source means writing one adapter and registering it in
:mod:`macro_ingestor.providers.registry`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ValidationError

from macro_ingestor.core.exceptions import ProviderError
from macro_ingestor.core.models import (
    AvailableSeries,
    FetchRangeParams,
    FetchRangeResult,
    ProviderHealth,
    SeriesPoint,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000
MAX_PAGES = 1000

M = TypeVar("M", bound=BaseModel)

# (raw item count, normalized points) for one page
PageFetcher = Callable[[int, int], Awaitable[tuple[int, list[SeriesPoint]]]]


@runtime_checkable
class SeriesProvider(Protocol):
    """One upstream data source, translated to the canonical model."""

    name: str

    async def health(self) -> ProviderHealth:
        """Probe the source. Must not raise; failures are reported in the result."""
        ...

    async def fetch_range(self, params: FetchRangeParams) -> FetchRangeResult:
        """Fetch every point in the requested range.

        Raises
        ------
        ProviderError
            Transport failure, non-2xx answer, or malformed envelope.
        """
        ...

    async def get_available_series(self) -> list[AvailableSeries]:
        """Enumerate series the source can serve. May return an empty list."""
        ...

    async def close(self) -> None: ...


async def collect_pages(
    provider: str,
    fetch_page: PageFetcher,
    limit: int,
    offset: int = 0,
) -> list[SeriesPoint]:
    """Run the offset/limit pagination loop until a short page is seen.

    Exhaustion is detected on the raw page length, so items dropped during
    normalization do not end the loop early.
    """
    points: list[SeriesPoint] = []
    current = offset
    for _ in range(MAX_PAGES):
        raw_count, page_points = await fetch_page(current, limit)
        points.extend(page_points)
        if raw_count < limit:
            return points
        current += limit

    raise ProviderError(
        f"{provider}: pagination did not terminate after {MAX_PAGES} pages",
        context={"provider": provider, "offset": current, "limit": limit},
    )


def parse_envelope(provider: str, model: type[M], payload: object) -> M:
    """Validate an upstream response body against its envelope model."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ProviderError(
            f"{provider}: unexpected response shape: {e.error_count()} validation errors",
            context={"provider": provider, "errors": e.errors(include_url=False)},
        ) from e


def build_result(provider: str, points: list[SeriesPoint]) -> FetchRangeResult:
    return FetchRangeResult(
        points=points,
        total_count=len(points),
        has_more=False,
        provider=provider,
    )

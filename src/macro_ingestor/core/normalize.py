"""Shared date/value coercion used by every provider adapter.

Upstream sources disagree on how they spell dates and numbers. Every adapter
funnels raw items through :func:`normalize_points`, which keeps the valid
observations in their original order and silently drops the rest.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from macro_ingestor.core.models import SeriesPoint

logger = logging.getLogger(__name__)

_NULL_TOKENS = frozenset({"", "null", "none", "n/a", "na", "nan", "-"})
_FALLBACK_DATE_FORMATS = ("%d/%m/%Y", "%Y/%m/%d")

Extractor = Callable[[Any], tuple[Any, Any]]


def parse_date(raw: Any) -> date | None:
    """Coerce an upstream date field to a calendar date.

    Accepts ``date``/``datetime`` objects, ISO dates (``2024-01-31``), ISO
    datetimes with or without offset (aware values are taken in UTC) and
    ``DD/MM/YYYY``. Returns None for anything unparsable, including
    impossible dates like ``2024-02-30``.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        return _datetime_to_date(raw)
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        return None

    text = raw.strip()
    if not text:
        return None

    if len(text) == 10 and text[4] == "-":
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None

    try:
        return _datetime_to_date(datetime.fromisoformat(text))
    except ValueError:
        pass

    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_value(raw: Any) -> float | None:
    """Coerce an upstream numeric field to a finite float, or None."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float, Decimal)):
        value = float(raw)
    elif isinstance(raw, str):
        text = raw.strip()
        if text.lower() in _NULL_TOKENS:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    else:
        return None
    return value if math.isfinite(value) else None


def normalize_points(
    items: Iterable[Any],
    series_id: str,
    extract: Extractor,
) -> list[SeriesPoint]:
    """Turn raw upstream items into SeriesPoints, dropping malformed ones.

    Args:
        items: Raw items from one page of an upstream response.
        series_id: Identifier to stamp on every produced point.
        extract: Returns ``(raw_date, raw_value)`` for one item. Items for
            which it raises KeyError/IndexError/TypeError are dropped.

    Returns:
        Valid points in the same relative order as ``items``.
    """
    points: list[SeriesPoint] = []
    dropped = 0
    for item in items:
        try:
            raw_date, raw_value = extract(item)
        except (KeyError, IndexError, TypeError, ValueError):
            dropped += 1
            continue
        ts = parse_date(raw_date)
        value = parse_value(raw_value)
        if ts is None or value is None:
            dropped += 1
            continue
        points.append(SeriesPoint(series_id=series_id, ts=ts, value=value))

    if dropped:
        logger.debug("Dropped %d malformed points for %s", dropped, series_id)
    return points


def _datetime_to_date(dt: datetime) -> date:
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC)
    return dt.date()

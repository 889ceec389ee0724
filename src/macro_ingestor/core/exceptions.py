"""Custom exception hierarchy for macro-ingestor."""

from typing import Any


class MacroIngestorError(Exception):
    """Base exception for all macro-ingestor errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(MacroIngestorError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str - the config field that failed validation
        value: Any - the invalid value (redacted for secrets)
    """


class ProviderError(MacroIngestorError):
    """An upstream source failed to answer or answered with garbage.

    Policy: the provider chain records it and moves to the next candidate.

    Context keys:
        provider: str - provider name
        url: str - the URL that was being fetched
        status_code: int | None - HTTP status if one was received
    """


class RateLimitError(ProviderError):
    """Upstream rate limit exceeded (HTTP 429) after retries.

    Policy: same as ProviderError; SourceClient already waited and retried.

    Context keys:
        retry_after: float | None - seconds the upstream asked us to wait
    """


class ProvidersExhaustedError(ProviderError):
    """Every candidate provider was skipped or failed.

    Policy: terminal for the fetch. Use cases turn it into a failed result.
    The last upstream error is kept on `last_error` and as `__cause__`.

    Context keys:
        external_id: str - the series that was requested
        providers_tried: list[str] - candidate order
        last_error: str | None - message of the last recorded failure
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        last_error: BaseException | None = None,
    ):
        super().__init__(message, context)
        self.last_error = last_error


class StorageError(MacroIngestorError):
    """Database operation failed.

    Policy: raise immediately. No retry at this layer.

    Context keys:
        operation: str - "upsert", "query", "migrate", etc.
        table: str - the table involved
    """

"""REST API for health, readiness, stored series and pipeline triggers."""

from macro_ingestor.api.app import create_app

__all__ = ["create_app"]

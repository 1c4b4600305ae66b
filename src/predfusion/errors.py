"""Error taxonomy for the aggregation pipeline."""

from __future__ import annotations


class PredFusionError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(PredFusionError):
    """Startup configuration is unusable (e.g. no platforms enabled)."""


class TransportError(PredFusionError):
    """Platform unreachable, timed out, rejected auth, or returned an unreadable body."""

    def __init__(self, platform_id: str, message: str) -> None:
        super().__init__(f"{platform_id}: {message}")
        self.platform_id = platform_id
        self.message = message


class MalformedRecordError(PredFusionError):
    """A single upstream record failed validation. The batch continues without it."""


class NoSnapshotError(PredFusionError):
    """Every platform is offline and no snapshot has ever been produced."""

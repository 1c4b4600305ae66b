"""Per-platform polling statistics - poll counts, success rate, last duration."""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
from threading import Lock


@dataclass
class PlatformPollStats:
    total_polls: int = 0
    successful_polls: int = 0
    failed_polls: int = 0
    skipped_records: int = 0
    rejected_records: int = 0
    last_listing_count: int = 0
    last_poll_at: int | None = None
    last_duration_ms: int | None = None
    last_error: str | None = None
    recent_durations_ms: deque[int] = field(default_factory=lambda: deque(maxlen=20))

    @property
    def success_rate(self) -> float:
        if self.total_polls == 0:
            return 0.0
        return round(self.successful_polls / self.total_polls, 4)

    @property
    def avg_duration_ms(self) -> float | None:
        if not self.recent_durations_ms:
            return None
        return sum(self.recent_durations_ms) / len(self.recent_durations_ms)


class PollStats:
    """Counters updated by platform poll loops, read by the API."""

    def __init__(self) -> None:
        self._stats: dict[str, PlatformPollStats] = {}
        self._lock = Lock()

    def record_success(
        self,
        platform_id: str,
        at: int,
        duration_ms: int,
        listings: int,
        skipped: int = 0,
        rejected: int = 0,
    ) -> None:
        with self._lock:
            s = self._stats.setdefault(platform_id, PlatformPollStats())
            s.total_polls += 1
            s.successful_polls += 1
            s.skipped_records += skipped
            s.rejected_records += rejected
            s.last_listing_count = listings
            s.last_poll_at = at
            s.last_duration_ms = duration_ms
            s.last_error = None
            s.recent_durations_ms.append(duration_ms)

    def record_failure(self, platform_id: str, at: int, duration_ms: int, error: str) -> None:
        with self._lock:
            s = self._stats.setdefault(platform_id, PlatformPollStats())
            s.total_polls += 1
            s.failed_polls += 1
            s.last_poll_at = at
            s.last_duration_ms = duration_ms
            s.last_error = error
            s.recent_durations_ms.append(duration_ms)

    def get(self, platform_id: str) -> PlatformPollStats:
        with self._lock:
            return self._stats.setdefault(platform_id, PlatformPollStats())

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            out = {}
            for pid, s in sorted(self._stats.items()):
                d = asdict(s)
                d.pop("recent_durations_ms")
                d["success_rate"] = s.success_rate
                d["avg_duration_ms"] = s.avg_duration_ms
                out[pid] = d
            return out

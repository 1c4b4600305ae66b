"""Per-platform health: healthy / degraded / offline from fetch results and staleness."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from threading import Lock

import structlog

from predfusion.clock import Clock, now_ms
from predfusion.config.settings import Settings
from predfusion.models import PlatformHealthRecord, PlatformStatus

log = structlog.get_logger(__name__)


@dataclass
class _State:
    last_success_at: int | None = None
    last_attempt_at: int | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    outage_started_at: int | None = None
    reported: PlatformStatus | None = None


class HealthMonitor:
    """Records fetch outcomes; status is derived at read time so staleness needs no timer.

    Success returns a platform to healthy at once. Failures degrade it, and it goes
    offline after offline_after_failures in a row or an outage longer than outage_bound.
    """

    def __init__(
        self,
        *,
        staleness_sec: float = 60,
        offline_after_failures: int = 5,
        outage_bound_sec: float = 300,
        clock: Clock = now_ms,
    ) -> None:
        self.staleness_ms = int(staleness_sec * 1000)
        self.offline_after_failures = offline_after_failures
        self.outage_bound_ms = int(outage_bound_sec * 1000)
        self._clock = clock
        self._states: dict[str, _State] = {}
        self._lock = Lock()

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = now_ms) -> HealthMonitor:
        return cls(
            staleness_sec=settings.staleness_sec,
            offline_after_failures=settings.offline_after_failures,
            outage_bound_sec=settings.outage_bound_sec,
            clock=clock,
        )

    def register(self, platform_id: str) -> None:
        with self._lock:
            self._states.setdefault(platform_id, _State())

    @property
    def platforms(self) -> list[str]:
        with self._lock:
            return sorted(self._states)

    def record_result(
        self,
        platform_id: str,
        success: bool,
        timestamp: int | None = None,
        error: str | None = None,
    ) -> PlatformHealthRecord:
        ts = timestamp if timestamp is not None else self._clock()
        with self._lock:
            st = self._states.setdefault(platform_id, _State())
            st.last_attempt_at = ts
            if success:
                st.last_success_at = ts
                st.last_error = None
                st.consecutive_failures = 0
                st.outage_started_at = None
            else:
                st.last_error = error
                st.consecutive_failures += 1
                if st.outage_started_at is None:
                    st.outage_started_at = ts
            return self._record(platform_id, st, max(ts, self._clock()))

    def status(self, platform_id: str) -> PlatformHealthRecord:
        with self._lock:
            st = self._states.setdefault(platform_id, _State())
            return self._record(platform_id, st, self._clock())

    def all_status(self) -> dict[str, PlatformHealthRecord]:
        return {pid: self.status(pid) for pid in self.platforms}

    def _derive(self, st: _State, now: int) -> tuple[PlatformStatus, bool, int | None]:
        since = now - st.last_success_at if st.last_success_at is not None else None
        stale = since is None or since > self.staleness_ms
        if st.consecutive_failures >= self.offline_after_failures:
            return PlatformStatus.OFFLINE, stale, since
        # Outage runs from the first failure after the last success
        if st.outage_started_at is not None and now - st.outage_started_at > self.outage_bound_ms:
            return PlatformStatus.OFFLINE, stale, since
        if st.consecutive_failures > 0 or stale:
            return PlatformStatus.DEGRADED, stale, since
        return PlatformStatus.HEALTHY, stale, since

    def _record(self, platform_id: str, st: _State, now: int) -> PlatformHealthRecord:
        status, stale, since = self._derive(st, now)
        if st.reported is not None and status is not st.reported:
            log.info(
                "platform_status_changed",
                platform=platform_id,
                old=st.reported.value,
                new=status.value,
                consecutive_failures=st.consecutive_failures,
                error=st.last_error,
            )
        st.reported = status
        return PlatformHealthRecord(
            platform_id=platform_id,
            status=status,
            last_success_at=st.last_success_at,
            last_attempt_at=st.last_attempt_at,
            last_error=st.last_error,
            consecutive_failures=st.consecutive_failures,
            is_stale=stale,
            time_since_last_fetch_ms=since,
        )

    def staleness_status(self) -> dict[str, dict[str, object]]:
        """{platform: {is_stale, last_fetch, time_since_last_fetch}} for every known platform."""
        out: dict[str, dict[str, object]] = {}
        for pid, rec in self.all_status().items():
            out[pid] = {
                "is_stale": rec.is_stale,
                "last_fetch": rec.last_success_at,
                "time_since_last_fetch": rec.time_since_last_fetch_ms,
            }
        return out

    def usable(self, platform_ids: Iterable[str]) -> list[str]:
        """Platforms that are not offline."""
        return [pid for pid in platform_ids if self.status(pid).status is not PlatformStatus.OFFLINE]

    def all_offline(self) -> bool:
        pids = self.platforms
        return bool(pids) and not self.usable(pids)

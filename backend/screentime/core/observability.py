from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from threading import Lock
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from screentime.services.aggregation import AggregationRun


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AggregationRunRegistry:
    """In-process record of recent batch aggregation runs."""

    def __init__(self, max_recent_runs: int = 20) -> None:
        self._lock = Lock()
        self._max_recent_runs = max(1, max_recent_runs)
        self._recent_runs: deque[dict] = deque(maxlen=self._max_recent_runs)
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._started_at = _utc_now()
            self._total_runs = 0
            self._total_failed_runs = 0
            self._total_failed_users = 0
            self._last_failure_at: datetime | None = None
            self._last_failure_reason: str | None = None
            self._recent_runs.clear()

    def configure(self, *, max_recent_runs: int | None = None) -> None:
        with self._lock:
            if max_recent_runs is None:
                return
            normalized = max(1, max_recent_runs)
            if normalized == self._max_recent_runs:
                return
            self._max_recent_runs = normalized
            self._recent_runs = deque(self._recent_runs, maxlen=normalized)

    def record_run(self, run: AggregationRun) -> None:
        with self._lock:
            self._total_runs += 1
            self._total_failed_users += len(run.failed_user_ids)
            self._recent_runs.append(run.to_dict())

    def record_failure(self, *, pushed_by: str, reason: str) -> None:
        with self._lock:
            self._total_failed_runs += 1
            self._last_failure_at = _utc_now()
            self._last_failure_reason = f"{pushed_by}: {reason}"

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "started_at": self._started_at,
                "total_runs": self._total_runs,
                "total_failed_runs": self._total_failed_runs,
                "total_failed_users": self._total_failed_users,
                "last_failure_at": self._last_failure_at,
                "last_failure_reason": self._last_failure_reason,
                "recent_runs": [dict(item) for item in reversed(self._recent_runs)],
            }


aggregation_run_registry = AggregationRunRegistry()

from __future__ import annotations

import asyncio
from datetime import date
from uuid import UUID

from screentime.core.errors import StoreReadError, StoreWriteError, UpstreamUnavailable
from screentime.schemas.weekly_summaries import DailyUsageRecord, WeeklySummary
from screentime.services.week_window import WeekWindow

USER_A = UUID("8a4c3f2a-2f88-4c74-9bc0-3123d26df302")
USER_B = UUID("0d365f2a-830d-4dbe-8884-59a6d5106dc4")
USER_C = UUID("5b0f6c1e-7d2a-4f5e-9a61-2c8e3f1d9b47")


def auth_headers(user_id: UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer mock_{user_id}"}


def usage(user_id: UUID, day: str, package_name: str | None, minutes: int | None) -> DailyUsageRecord:
    return DailyUsageRecord(
        user_id=user_id,
        date=date.fromisoformat(day),
        package_name=package_name,
        minutes=minutes,
    )


class FakeUsageStore:
    """In-memory store with the same replace/merge upsert semantics as SQL."""

    def __init__(
        self,
        users: list[UUID] | None = None,
        records: list[DailyUsageRecord] | None = None,
    ) -> None:
        self.users: list[UUID] = list(users or [])
        self.records: list[DailyUsageRecord] = list(records or [])
        self.summaries: dict[tuple[UUID, date], WeeklySummary] = {}
        self.read_failures: set[UUID] = set()
        self.write_failures: set[UUID] = set()
        self.unreachable = False
        self.read_delay_seconds = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls: list[tuple[str, UUID | None]] = []

    async def ensure_user(self, user_id: UUID, email: str | None = None) -> None:
        self.calls.append(("ensure_user", user_id))
        if user_id not in self.users:
            self.users.append(user_id)

    async def list_user_ids(self) -> list[UUID]:
        self.calls.append(("list_user_ids", None))
        if self.unreachable:
            raise UpstreamUnavailable("record store is unreachable")
        return list(self.users)

    async def fetch_daily_usage(self, user_id: UUID, window: WeekWindow) -> list[DailyUsageRecord]:
        self.calls.append(("fetch_daily_usage", user_id))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.read_delay_seconds:
                await asyncio.sleep(self.read_delay_seconds)
            if user_id in self.read_failures:
                raise StoreReadError("failed to read daily usage", user_id=str(user_id))
            return [
                record
                for record in self.records
                if record.user_id == user_id and window.start <= record.date <= window.end
            ]
        finally:
            self.in_flight -= 1

    def _apply(self, summary: WeeklySummary, *, merge: bool, guarded: bool) -> bool:
        if summary.user_id in self.write_failures:
            raise StoreWriteError("failed to write weekly summary", user_id=str(summary.user_id))
        key = (summary.user_id, summary.week_start)
        existing = self.summaries.get(key)
        if existing is None:
            self.summaries[key] = summary.model_copy(deep=True)
            return True
        if guarded and existing.pushed_at > summary.pushed_at:
            return False
        apps = {**existing.apps, **summary.apps} if merge else dict(summary.apps)
        self.summaries[key] = summary.model_copy(update={"apps": apps}, deep=True)
        return True

    async def replace_weekly_summary(self, summary: WeeklySummary, *, guarded: bool = False) -> bool:
        self.calls.append(("replace_weekly_summary", summary.user_id))
        return self._apply(summary, merge=False, guarded=guarded)

    async def merge_weekly_summary(self, summary: WeeklySummary, *, guarded: bool = False) -> bool:
        self.calls.append(("merge_weekly_summary", summary.user_id))
        return self._apply(summary, merge=True, guarded=guarded)

    async def get_weekly_summary(self, user_id: UUID, week_start: date) -> WeeklySummary | None:
        self.calls.append(("get_weekly_summary", user_id))
        return self.summaries.get((user_id, week_start))

    def writes(self) -> list[tuple[str, UUID | None]]:
        return [call for call in self.calls if call[0].endswith("_weekly_summary") and call[0] != "get_weekly_summary"]

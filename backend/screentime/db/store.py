from __future__ import annotations

import json
from datetime import date
from typing import Protocol
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from screentime.core.errors import StoreReadError, StoreWriteError, UpstreamUnavailable
from screentime.db.session import get_sessionmaker
from screentime.schemas.weekly_summaries import DailyUsageRecord, WeeklySummary
from screentime.services.week_window import WeekWindow

STORE_ERRORS = (SQLAlchemyError, OSError)

_UPSERT_SUMMARY_SQL = """
INSERT INTO weekly_summaries (
    user_id,
    week_start,
    generated_at,
    apps,
    pushed_by,
    pushed_at
)
VALUES (
    :user_id,
    :week_start,
    :generated_at,
    CAST(:apps AS jsonb),
    :pushed_by,
    :pushed_at
)
ON CONFLICT (user_id, week_start) DO UPDATE
SET generated_at = EXCLUDED.generated_at,
    apps = {apps_expression},
    pushed_by = EXCLUDED.pushed_by,
    pushed_at = EXCLUDED.pushed_at
{guard}
RETURNING user_id
"""

REPLACE_APPS = "EXCLUDED.apps"
# jsonb || overwrites keys present on the right and keeps the rest.
MERGE_APPS = "weekly_summaries.apps || EXCLUDED.apps"
PUSHED_AT_GUARD = "WHERE weekly_summaries.pushed_at <= EXCLUDED.pushed_at"


def build_upsert_summary_sql(*, merge: bool, guarded: bool) -> str:
    return _UPSERT_SUMMARY_SQL.format(
        apps_expression=MERGE_APPS if merge else REPLACE_APPS,
        guard=PUSHED_AT_GUARD if guarded else "",
    )


class UsageStore(Protocol):
    async def ensure_user(self, user_id: UUID, email: str | None = None) -> None: ...

    async def list_user_ids(self) -> list[UUID]: ...

    async def fetch_daily_usage(
        self, user_id: UUID, window: WeekWindow
    ) -> list[DailyUsageRecord]: ...

    async def replace_weekly_summary(
        self, summary: WeeklySummary, *, guarded: bool = False
    ) -> bool: ...

    async def merge_weekly_summary(
        self, summary: WeeklySummary, *, guarded: bool = False
    ) -> bool: ...

    async def get_weekly_summary(
        self, user_id: UUID, week_start: date
    ) -> WeeklySummary | None: ...


def _decode_apps(raw) -> dict[str, int]:
    if raw is None:
        return {}
    if isinstance(raw, str):
        raw = json.loads(raw)
    return {str(key): int(value) for key, value in raw.items()}


class SqlUsageStore:
    """Postgres-backed record store.

    Every call opens its own session so concurrent batch workers never share
    one. Each write is a single upsert statement and is not retried here.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._sessionmaker = sessionmaker

    def _session(self) -> AsyncSession:
        if self._sessionmaker is None:
            self._sessionmaker = get_sessionmaker()
        return self._sessionmaker()

    async def list_user_ids(self) -> list[UUID]:
        try:
            async with self._session() as session:
                result = await session.execute(text("SELECT id FROM users ORDER BY id"))
                return [UUID(str(row[0])) for row in result.all()]
        except STORE_ERRORS as exc:
            raise UpstreamUnavailable("record store is unreachable") from exc

    async def ensure_user(self, user_id: UUID, email: str | None = None) -> None:
        try:
            async with self._session() as session:
                await session.execute(
                    text(
                        """
                        INSERT INTO users (id, email)
                        VALUES (:user_id, :email)
                        ON CONFLICT (id) DO NOTHING
                        """
                    ),
                    {"user_id": str(user_id), "email": email},
                )
                await session.commit()
        except STORE_ERRORS as exc:
            raise StoreWriteError("failed to register user", user_id=str(user_id)) from exc

    async def fetch_daily_usage(
        self, user_id: UUID, window: WeekWindow
    ) -> list[DailyUsageRecord]:
        try:
            async with self._session() as session:
                result = await session.execute(
                    text(
                        """
                        SELECT user_id, date, package_name, minutes
                        FROM daily_usage
                        WHERE user_id = :user_id
                          AND date >= :week_start
                          AND date <= :week_end
                        """
                    ),
                    {
                        "user_id": str(user_id),
                        "week_start": window.start,
                        "week_end": window.end,
                    },
                )
                rows = result.mappings().all()
        except STORE_ERRORS as exc:
            raise StoreReadError(
                "failed to read daily usage", user_id=str(user_id)
            ) from exc
        return [DailyUsageRecord.model_validate(dict(row)) for row in rows]

    async def _upsert(self, summary: WeeklySummary, *, merge: bool, guarded: bool) -> bool:
        try:
            async with self._session() as session:
                result = await session.execute(
                    text(build_upsert_summary_sql(merge=merge, guarded=guarded)),
                    {
                        "user_id": str(summary.user_id),
                        "week_start": summary.week_start,
                        "generated_at": summary.generated_at,
                        "apps": json.dumps(summary.apps, sort_keys=True),
                        "pushed_by": summary.pushed_by.value,
                        "pushed_at": summary.pushed_at,
                    },
                )
                applied = result.first() is not None
                await session.commit()
        except STORE_ERRORS as exc:
            raise StoreWriteError(
                "failed to write weekly summary", user_id=str(summary.user_id)
            ) from exc
        return applied

    async def replace_weekly_summary(
        self, summary: WeeklySummary, *, guarded: bool = False
    ) -> bool:
        return await self._upsert(summary, merge=False, guarded=guarded)

    async def merge_weekly_summary(
        self, summary: WeeklySummary, *, guarded: bool = False
    ) -> bool:
        return await self._upsert(summary, merge=True, guarded=guarded)

    async def get_weekly_summary(
        self, user_id: UUID, week_start: date
    ) -> WeeklySummary | None:
        try:
            async with self._session() as session:
                result = await session.execute(
                    text(
                        """
                        SELECT user_id, week_start, generated_at, apps, pushed_by, pushed_at
                        FROM weekly_summaries
                        WHERE user_id = :user_id AND week_start = :week_start
                        LIMIT 1
                        """
                    ),
                    {"user_id": str(user_id), "week_start": week_start},
                )
                row = result.mappings().first()
        except STORE_ERRORS as exc:
            raise StoreReadError(
                "failed to read weekly summary", user_id=str(user_id)
            ) from exc
        if not row:
            return None
        payload = dict(row)
        payload["apps"] = _decode_apps(payload["apps"])
        return WeeklySummary.model_validate(payload)

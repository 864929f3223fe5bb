import asyncio
from datetime import date, datetime, timezone

import pytest

from helpers import USER_A, USER_B, FakeUsageStore, usage
from screentime.core.config import settings
from screentime.core.errors import ApiError, ErrorCode, UpstreamUnavailable
from screentime.core.observability import aggregation_run_registry
from screentime.schemas.weekly_summaries import PushedBy, WeeklySummaryPushRequest
from screentime.services import triggers
from screentime.services.triggers import (
    push_device_summary,
    run_manual_aggregation,
    run_scheduled_aggregation,
)
from screentime.services.week_window import week_window_for

FIRED_AT = datetime(2024, 5, 13, 3, 0, tzinfo=timezone.utc)
WEEK_START = date(2024, 5, 6)


@pytest.fixture(autouse=True)
def _reset_registry():
    aggregation_run_registry.reset()
    yield
    aggregation_run_registry.reset()


def _store() -> FakeUsageStore:
    return FakeUsageStore(
        users=[USER_A, USER_B],
        records=[
            usage(USER_A, "2024-05-06", "com.video", 30),
            usage(USER_B, "2024-05-08", "com.chat", 12),
        ],
    )


def test_scheduled_and_manual_runs_differ_only_in_provenance():
    cron_store = _store()
    manual_store = _store()

    cron_run = asyncio.run(run_scheduled_aggregation(cron_store, fired_at=FIRED_AT))
    manual_run = asyncio.run(run_manual_aggregation(manual_store, reference=FIRED_AT))

    assert cron_run.week_start == manual_run.week_start == WEEK_START
    assert cron_run.pushed_by == PushedBy.SERVER_CRON
    assert manual_run.pushed_by == PushedBy.SERVER_MANUAL
    for key, cron_summary in cron_store.summaries.items():
        manual_summary = manual_store.summaries[key]
        assert cron_summary.apps == manual_summary.apps
        assert cron_summary.pushed_by == PushedBy.SERVER_CRON
        assert manual_summary.pushed_by == PushedBy.SERVER_MANUAL


def test_manual_run_accepts_explicit_backfill_window():
    store = _store()
    window = week_window_for(date(2024, 4, 29))

    run = asyncio.run(run_manual_aggregation(store, window=window))

    assert run.week_start == date(2024, 4, 29)
    assert run.written == 0
    assert run.skipped == 2


def test_runs_are_recorded_in_registry():
    asyncio.run(run_scheduled_aggregation(_store(), fired_at=FIRED_AT))

    snapshot = aggregation_run_registry.snapshot()
    assert snapshot["total_runs"] == 1
    assert snapshot["recent_runs"][0]["pushed_by"] == "server_cron"
    assert snapshot["recent_runs"][0]["week_start"] == WEEK_START


def test_unreachable_store_is_recorded_and_reraised():
    store = _store()
    store.unreachable = True

    with pytest.raises(UpstreamUnavailable):
        asyncio.run(run_manual_aggregation(store, reference=FIRED_AT))

    snapshot = aggregation_run_registry.snapshot()
    assert snapshot["total_failed_runs"] == 1
    assert snapshot["last_failure_reason"].startswith("server_manual")


def test_batch_uses_configured_concurrency(monkeypatch):
    captured = {}

    async def _fake_run(store, window, pushed_by, **kwargs):
        captured.update(kwargs)
        raise UpstreamUnavailable("stop")

    monkeypatch.setattr(settings, "aggregation_concurrency", 7)
    monkeypatch.setattr(triggers, "run_weekly_aggregation", _fake_run)

    with pytest.raises(UpstreamUnavailable):
        asyncio.run(run_scheduled_aggregation(_store(), fired_at=FIRED_AT))
    assert captured["concurrency"] == 7
    assert captured["guarded"] is False


def test_device_push_replaces_whole_apps_mapping():
    store = _store()
    asyncio.run(run_scheduled_aggregation(store, fired_at=FIRED_AT))
    store.summaries[(USER_A, WEEK_START)] = store.summaries[(USER_A, WEEK_START)].model_copy(
        update={"apps": {"A": 10, "B": 5}}
    )

    payload = WeeklySummaryPushRequest(weekStart=WEEK_START, apps={"A": 12})
    asyncio.run(push_device_summary(store, USER_A, payload))

    stored = store.summaries[(USER_A, WEEK_START)]
    assert stored.apps == {"A": 12}
    assert stored.pushed_by == PushedBy.DEVICE


def test_device_push_keeps_payload_generated_at():
    store = _store()
    generated_at = datetime(2024, 5, 12, 22, 0, tzinfo=timezone.utc)
    now = datetime(2024, 5, 13, 9, 0, tzinfo=timezone.utc)

    payload = WeeklySummaryPushRequest(
        weekStart=WEEK_START, generatedAt=generated_at, apps={"A": 1}
    )
    summary = asyncio.run(push_device_summary(store, USER_A, payload, now=now))

    assert summary.generated_at == generated_at
    assert summary.pushed_at == now


def test_write_guard_rejects_stale_device_push(monkeypatch):
    monkeypatch.setattr(settings, "summary_write_guard", "pushed_at")
    store = _store()
    asyncio.run(run_scheduled_aggregation(store, fired_at=FIRED_AT))
    before = store.summaries[(USER_A, WEEK_START)]

    stale_now = datetime(2000, 1, 1, tzinfo=timezone.utc)
    payload = WeeklySummaryPushRequest(weekStart=WEEK_START, apps={"A": 12})
    with pytest.raises(ApiError) as exc_info:
        asyncio.run(push_device_summary(store, USER_A, payload, now=stale_now))

    assert exc_info.value.status_code == 409
    assert exc_info.value.error_code == ErrorCode.CONFLICT

    assert store.summaries[(USER_A, WEEK_START)] == before

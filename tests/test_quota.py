from __future__ import annotations

import pytest

from backstream.exceptions import QuotaExceeded, UserNotFound
from backstream.models import User
from backstream.quota import QuotaGate, utc_today
from backstream.store import InMemoryJobStore


def _gate(store: InMemoryJobStore, today: str = "2023-01-02") -> QuotaGate:
    return QuotaGate(store, daily_limit_cents=10, clock=lambda: today)


@pytest.mark.anyio
async def test_stale_usage_date_resets_allowance() -> None:
    store = InMemoryJobStore()
    await store.put_user(User(id="u1", ai_usage_date="2023-01-01", ai_usage_cents=10))
    gate = _gate(store)

    assert await gate.check_remaining("u1") is True

    await gate.charge("u1", 1)
    user = await store.get_user("u1")
    assert user is not None
    assert user.ai_usage_date == "2023-01-02"
    assert user.ai_usage_cents == 1


@pytest.mark.anyio
async def test_same_day_usage_accumulates_until_limit() -> None:
    store = InMemoryJobStore()
    await store.put_user(User(id="u1", ai_usage_date="2023-01-02", ai_usage_cents=9.5))
    gate = _gate(store)

    assert await gate.check_remaining("u1") is True
    await gate.charge("u1", 0.5)
    assert await gate.check_remaining("u1") is False
    with pytest.raises(QuotaExceeded) as exc_info:
        await gate.ensure_allowed("u1")
    assert exc_info.value.used_cents == 10
    assert "Daily usage limit reached" in exc_info.value.message


@pytest.mark.anyio
async def test_non_positive_charge_is_ignored() -> None:
    store = InMemoryJobStore()
    await store.put_user(User(id="u1"))
    gate = _gate(store)

    assert await gate.charge("u1", 0) is None
    assert await gate.charge("u1", -2) is None
    user = await store.get_user("u1")
    assert user is not None
    assert user.ai_usage_date is None
    assert user.ai_usage_cents == 0


@pytest.mark.anyio
async def test_status_reports_remaining() -> None:
    store = InMemoryJobStore()
    await store.put_user(User(id="u1", ai_usage_date="2023-01-02", ai_usage_cents=2.5))
    status = await _gate(store).status("u1")

    assert status.date == "2023-01-02"
    assert status.used_cents == 2.5
    assert status.remaining_cents == 7.5
    assert status.allowed is True


@pytest.mark.anyio
async def test_unknown_user() -> None:
    gate = _gate(InMemoryJobStore())
    with pytest.raises(UserNotFound):
        await gate.check_remaining("missing")
    assert await gate.charge("missing", 1) is None


def test_utc_today_format() -> None:
    today = utc_today()
    assert len(today) == 10
    assert today[4] == "-" and today[7] == "-"

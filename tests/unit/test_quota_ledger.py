"""Unit tests for the quota ledger."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from app.domains.quota.service import QuotaLedger, current_window_start
from app.exceptions.relay import UserNotFoundError
from models import User


class TestCurrentWindowStart:
    def test_after_boundary_same_day(self):
        now = datetime(2024, 5, 10, 8, 30, tzinfo=UTC)
        assert current_window_start(now, 0, 0) == datetime(2024, 5, 10, 0, 0, tzinfo=UTC)

    def test_before_boundary_previous_day(self):
        now = datetime(2024, 5, 10, 2, 0, tzinfo=UTC)
        assert current_window_start(now, 3, 15) == datetime(2024, 5, 9, 3, 15, tzinfo=UTC)

    def test_naive_treated_as_utc(self):
        now = datetime(2024, 5, 10, 8, 30)
        assert current_window_start(now, 0, 0).tzinfo is UTC


@pytest.mark.asyncio
class TestQuotaLedger:
    """Test cases for QuotaLedger."""

    async def test_state_and_remaining(self, ledger, make_user):
        await make_user("carol", max_tokens=100, used=40)

        state = await ledger.state("carol")

        assert state.max_tokens == 100
        assert state.tokens_used_today == 40
        assert state.remaining == 60
        assert await ledger.remaining("carol") == 60

    async def test_unknown_user(self, ledger):
        with pytest.raises(UserNotFoundError):
            await ledger.remaining("ghost")

    async def test_charge_persists_immediately(self, ledger, test_user, session_factory):
        remaining = await ledger.charge(test_user.username, 30)

        assert remaining == 70
        async with session_factory() as db:
            user = await db.get(User, test_user.username)
            assert user.tokens_used_today == 30

    async def test_charge_may_overshoot_cap(self, ledger, make_user):
        await make_user("dave", max_tokens=10, used=8)

        remaining = await ledger.charge("dave", 5)

        assert remaining == -3
        assert await ledger.remaining("dave") == -3

    async def test_charge_zero_is_noop(self, ledger, test_user):
        assert await ledger.charge(test_user.username, 0) == 100

    async def test_negative_charge_rejected(self, ledger, test_user):
        with pytest.raises(ValueError):
            await ledger.charge(test_user.username, -1)

    async def test_concurrent_charges_are_not_lost(self, ledger, test_user):
        await asyncio.gather(*(ledger.charge(test_user.username, 1) for _ in range(20)))

        assert (await ledger.state(test_user.username)).tokens_used_today == 20

    async def test_reset_all_zeroes_users_from_previous_window(self, ledger, make_user):
        yesterday = datetime.now(UTC) - timedelta(days=1, hours=1)
        await make_user("erin", max_tokens=100, used=100, quota_reset_at=yesterday)
        await make_user("frank", max_tokens=50, used=20, quota_reset_at=yesterday)

        count = await ledger.reset_all()

        assert count == 2
        assert await ledger.remaining("erin") == 100
        assert await ledger.remaining("frank") == 50

    async def test_reset_all_is_idempotent_within_window(self, ledger, make_user):
        yesterday = datetime.now(UTC) - timedelta(days=1, hours=1)
        await make_user("erin", max_tokens=100, used=100, quota_reset_at=yesterday)

        assert await ledger.reset_all() == 1
        await ledger.charge("erin", 10)

        assert await ledger.reset_all() == 0
        assert await ledger.remaining("erin") == 90

    async def test_reset_all_next_window_resets_again(self, ledger, make_user):
        first = datetime(2024, 5, 10, 0, 5, tzinfo=UTC)
        await make_user("erin", max_tokens=100, used=70, quota_reset_at=first - timedelta(days=1))

        assert await ledger.reset_all(now=first) == 1
        await ledger.charge("erin", 10)
        assert await ledger.reset_all(now=first + timedelta(days=1)) == 1
        assert await ledger.remaining("erin") == 100

    async def test_reset_all_never_reset_user(self, ledger, make_user):
        await make_user("gina", used=5, quota_reset_at=None)

        assert await ledger.reset_all() == 1
        assert await ledger.remaining("gina") == 100

    async def test_reset_uses_configured_time(self, session_factory, make_user):
        ledger = QuotaLedger(session_factory, reset_hour=6, reset_minute=30)
        last = datetime(2024, 5, 10, 6, 45, tzinfo=UTC)
        await make_user("hank", used=50, quota_reset_at=last)

        # Still inside the 06:30 window that began on 2024-05-10
        assert await ledger.reset_all(now=datetime(2024, 5, 11, 6, 0, tzinfo=UTC)) == 0
        assert await ledger.reset_all(now=datetime(2024, 5, 11, 6, 31, tzinfo=UTC)) == 1

"""Tests for the points ledger: journal, sign-in streaks, levels."""
import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from orderpay.config import LoyaltyConfig
from orderpay.errors import AlreadySignedInToday, InsufficientPoints, NotFoundError
from orderpay.payments.constants import PointType, UserLevel
from orderpay.services.domains import PointsLedger, calculate_user_level


@pytest.fixture
def ledger(db):
    return PointsLedger(db.users, db.point_records, LoyaltyConfig())


@pytest.fixture
def user(fake_client):
    fake_client.seed(
        "users",
        {"id": "u1", "points": 0, "total_points": 0, "total_spent": "0.00", "sign_in_count": 0},
    )
    return fake_client.row("users", "u1")


@pytest.mark.asyncio
async def test_journal_sum_matches_balance(ledger, user, fake_client):
    await ledger.earn("u1", 100, "order reward")
    await ledger.spend("u1", 30, "order discount")
    await ledger.return_points("u1", 30, order_no="202401010001")

    records = await ledger.records("u1")
    assert [r.points for r in records] == [30, -30, 100]
    assert [r.balance for r in records] == [100, 70, 100]
    assert sum(r.points for r in records) == fake_client.row("users", "u1")["points"] == 100
    assert records[1].type == PointType.SPEND


@pytest.mark.asyncio
async def test_returned_points_are_not_lifetime_earnings(ledger, user, fake_client):
    await ledger.earn("u1", 50, "order reward")
    await ledger.spend("u1", 20, "order discount")
    await ledger.return_points("u1", 20)

    row = fake_client.row("users", "u1")
    assert row["points"] == 50
    assert row["total_points"] == 50


@pytest.mark.asyncio
async def test_spend_more_than_balance(ledger, user, fake_client):
    await ledger.earn("u1", 10, "order reward")

    with pytest.raises(InsufficientPoints) as exc_info:
        await ledger.spend("u1", 11, "order discount")

    assert exc_info.value.available == 10
    assert fake_client.row("users", "u1")["points"] == 10
    assert len(await ledger.records("u1")) == 1


@pytest.mark.asyncio
async def test_concurrent_spends_never_go_negative(ledger, user, fake_client):
    await ledger.earn("u1", 100, "order reward")

    results = await asyncio.gather(
        ledger.spend("u1", 60, "order discount"),
        ledger.spend("u1", 60, "order discount"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, InsufficientPoints) for r in results) == 1
    assert fake_client.row("users", "u1")["points"] == 40


@pytest.mark.asyncio
async def test_records_paging_newest_first(ledger, user):
    for points in (1, 2, 3, 4, 5):
        await ledger.earn("u1", points, "order reward")

    page = await ledger.records("u1", limit=2, offset=1)
    assert [r.points for r in page] == [4, 3]


@pytest.mark.asyncio
async def test_sign_in_streaks(ledger, user, fake_client):
    day1 = datetime(2024, 10, 1, 9, 0, tzinfo=UTC)

    first = await ledger.sign_in("u1", now=day1)
    assert first == {"points_awarded": 5, "streak": 1}

    with pytest.raises(AlreadySignedInToday):
        await ledger.sign_in("u1", now=day1 + timedelta(hours=10))

    second = await ledger.sign_in("u1", now=day1 + timedelta(days=1))
    assert second["streak"] == 2

    third = await ledger.sign_in("u1", now=day1 + timedelta(days=3))
    assert third["streak"] == 1

    row = fake_client.row("users", "u1")
    assert row["points"] == 15
    assert row["total_points"] == 15
    assert row["sign_in_count"] == 1
    assert {r.reason for r in await ledger.records("u1")} == {"sign-in reward"}


@pytest.mark.asyncio
async def test_concurrent_sign_ins_award_once(ledger, user, fake_client):
    now = datetime(2024, 10, 1, 9, 0, tzinfo=UTC)

    results = await asyncio.gather(
        ledger.sign_in("u1", now=now),
        ledger.sign_in("u1", now=now),
        return_exceptions=True,
    )

    assert sum(isinstance(r, AlreadySignedInToday) for r in results) == 1
    assert fake_client.row("users", "u1")["points"] == 5


@pytest.mark.asyncio
async def test_add_spent_derives_level(ledger, user, fake_client):
    await ledger.add_spent("u1", Decimal("499.99"))
    assert fake_client.row("users", "u1")["level"] == "bronze"

    updated = await ledger.add_spent("u1", Decimal("0.01"))
    assert updated.level == UserLevel.SILVER
    assert updated.total_spent == Decimal("500.00")


@pytest.mark.asyncio
async def test_interleaved_earns_and_spends_keep_totals(ledger, user, fake_client):
    await ledger.earn("u1", 100, "order reward")

    await asyncio.gather(
        ledger.earn("u1", 5, "order reward"),
        ledger.spend("u1", 5, "order discount"),
        ledger.earn("u1", 7, "order reward"),
        ledger.spend("u1", 3, "order discount"),
    )

    row = fake_client.row("users", "u1")
    records = await ledger.records("u1", limit=10)
    assert row["points"] == 104
    assert row["total_points"] == 112
    assert sum(r.points for r in records) == row["points"]


@pytest.mark.asyncio
async def test_replayed_order_changes_apply_once(ledger, user, fake_client):
    first = await ledger.earn("u1", 40, "order reward", order_no="202410190001")
    again = await ledger.earn("u1", 40, "order reward", order_no="202410190001")
    await ledger.spend("u1", 10, "order discount", order_no="202410190002")
    await ledger.spend("u1", 10, "order discount", order_no="202410190002")
    await ledger.add_spent("u1", Decimal("93.00"), order_no="202410190001")
    await ledger.add_spent("u1", Decimal("93.00"), order_no="202410190001")

    row = fake_client.row("users", "u1")
    assert again.id == first.id
    assert row["points"] == 30
    assert row["total_points"] == 40
    assert row["total_spent"] == "93.00"
    assert len(await ledger.records("u1")) == 2


@pytest.mark.parametrize(
    "spent, level",
    [
        ("0", UserLevel.BRONZE),
        ("500", UserLevel.SILVER),
        ("999.99", UserLevel.SILVER),
        ("1000", UserLevel.GOLD),
        ("5000", UserLevel.PLATINUM),
    ],
)
def test_calculate_user_level(spent, level):
    assert calculate_user_level(spent) == level


@pytest.mark.asyncio
async def test_unknown_user(ledger):
    with pytest.raises(NotFoundError):
        await ledger.earn("nobody", 1, "order reward")

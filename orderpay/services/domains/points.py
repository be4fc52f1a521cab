"""
Points ledger: append-only journal with the balance kept on the user row.

Every change goes through UserRepository.apply_ledger_change, so the
balance update and its PointRecord commit together and the journal always
sums to the balance. Changes tied to an order carry an idempotency key
(`earn:<order_no>`, `spend:<order_no>`, ...), which makes them safe to
replay when a settlement or cancellation is resumed.
"""
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from orderpay.config import LoyaltyConfig
from orderpay.errors import (
    ERROR_USER_NOT_FOUND,
    AlreadySignedInToday,
    InsufficientPoints,
    NotFoundError,
    ValidationError,
)
from orderpay.logging import get_logger, sanitize_id_for_logging
from orderpay.payments.constants import (
    LEVEL_THRESHOLDS,
    REASON_ORDER_CANCELLED,
    REASON_SIGN_IN,
    PointType,
    UserLevel,
)
from orderpay.services.models import PointRecord, User
from orderpay.services.money import to_decimal
from orderpay.services.repositories import PointRecordRepository, UserRepository
from orderpay.services.repositories.user_repo import (
    LEDGER_DUPLICATE,
    LEDGER_INSUFFICIENT,
    LEDGER_NOT_FOUND,
    LedgerChange,
)

logger = get_logger(__name__)


def calculate_user_level(total_spent) -> UserLevel:
    """Level from lifetime spend: >=5000 platinum, >=1000 gold, >=500 silver."""
    spent = to_decimal(total_spent)
    for threshold, level in LEVEL_THRESHOLDS:
        if spent >= threshold:
            return level
    return UserLevel.BRONZE


def order_key(kind: str, order_no: Optional[str]) -> Optional[str]:
    return f"{kind}:{order_no}" if order_no else None


def _utc_date(value: datetime):
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).date()


def next_streak(user: User, now: datetime) -> int:
    """
    Streak after signing in at `now`.

    Raises:
        AlreadySignedInToday: If the last sign-in falls on the same UTC date
    """
    today = _utc_date(now)
    if user.last_sign_in_at is None:
        return 1
    last = _utc_date(user.last_sign_in_at)
    if last == today:
        raise AlreadySignedInToday()
    if last == today - timedelta(days=1):
        return user.sign_in_count + 1
    return 1


class PointsLedger:
    """Loyalty points, sign-in streaks and lifetime spend."""

    def __init__(
        self,
        users: UserRepository,
        records: PointRecordRepository,
        loyalty: Optional[LoyaltyConfig] = None,
    ):
        self.users = users
        self.point_records = records
        self.loyalty = loyalty or LoyaltyConfig()

    async def _load_user(self, user_id: str) -> User:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError(ERROR_USER_NOT_FOUND)
        return user

    async def _apply(self, user_id: str, **change) -> LedgerChange:
        result = await self.users.apply_ledger_change(user_id, **change)
        if result.status == LEDGER_NOT_FOUND:
            raise NotFoundError(ERROR_USER_NOT_FOUND)
        if result.status == LEDGER_INSUFFICIENT:
            raise InsufficientPoints(user_id, -change["points_delta"], result.user.points)
        if result.status == LEDGER_DUPLICATE:
            logger.info("Ledger change %s already applied", change.get("idempotency_key"))
        return result

    async def earn(self, user_id: str, points: int, reason: str, order_no: Optional[str] = None) -> PointRecord:
        """Credit points and count them as lifetime earnings. One reward per order."""
        if points <= 0:
            raise ValidationError("points to earn must be positive")
        result = await self._apply(
            user_id,
            points_delta=points,
            point_type=PointType.EARN,
            reason=reason,
            order_no=order_no,
            counts_lifetime=True,
            idempotency_key=order_key("earn", order_no),
        )
        if result.status != LEDGER_DUPLICATE:
            logger.info(
                "User %s earned %s points (%s), balance %s",
                sanitize_id_for_logging(user_id),
                points,
                reason,
                result.user.points,
            )
        return result.record

    async def spend(self, user_id: str, points: int, reason: str, order_no: Optional[str] = None) -> PointRecord:
        """
        Debit points.

        Raises:
            InsufficientPoints: If the balance is below `points`
        """
        if points <= 0:
            raise ValidationError("points to spend must be positive")
        result = await self._apply(
            user_id,
            points_delta=-points,
            point_type=PointType.SPEND,
            reason=reason,
            order_no=order_no,
            idempotency_key=order_key("spend", order_no),
        )
        return result.record

    async def return_points(
        self,
        user_id: str,
        points: int,
        order_no: Optional[str] = None,
        reason: str = REASON_ORDER_CANCELLED,
    ) -> PointRecord:
        """Credit back points spent on a cancelled order (not lifetime earnings)."""
        if points <= 0:
            raise ValidationError("points to return must be positive")
        result = await self._apply(
            user_id,
            points_delta=points,
            point_type=PointType.EARN,
            reason=reason,
            order_no=order_no,
            idempotency_key=order_key("return", order_no),
        )
        return result.record

    async def sign_in(self, user_id: str, now: Optional[datetime] = None) -> dict:
        """
        Daily sign-in.

        Returns:
            {"points_awarded": int, "streak": int}

        Raises:
            AlreadySignedInToday: If the user already signed in on this UTC date
        """
        now = now or datetime.now(UTC)
        points = self.loyalty.sign_in_points
        streak = next_streak(await self._load_user(user_id), now)

        # One key per user and UTC day; a concurrent sign-in loses on the key
        result = await self._apply(
            user_id,
            points_delta=points,
            point_type=PointType.EARN,
            reason=REASON_SIGN_IN,
            counts_lifetime=True,
            idempotency_key=f"sign-in:{user_id}:{_utc_date(now).isoformat()}",
            signed_in_at=now,
            sign_in_count=streak,
        )
        if result.status == LEDGER_DUPLICATE:
            raise AlreadySignedInToday()

        logger.info("User %s signed in, streak %s", sanitize_id_for_logging(user_id), streak)
        return {"points_awarded": points, "streak": streak}

    async def add_spent(self, user_id: str, amount: Decimal, order_no: Optional[str] = None) -> User:
        """Add a paid amount to lifetime spend; the level is re-derived in the same write."""
        amount = to_decimal(amount)
        if amount < 0:
            raise ValidationError("spent amount must not be negative")
        before = await self._load_user(user_id)
        result = await self._apply(
            user_id, spent_delta=amount, idempotency_key=order_key("spent", order_no)
        )
        if result.user.level != before.level:
            logger.info(
                "User %s level %s -> %s",
                sanitize_id_for_logging(user_id),
                UserLevel(before.level).value,
                UserLevel(result.user.level).value,
            )
        return result.user

    async def balance(self, user_id: str) -> int:
        return (await self._load_user(user_id)).points

    async def records(self, user_id: str, limit: int = 20, offset: int = 0) -> List[PointRecord]:
        """Journal page, newest first."""
        return await self.point_records.list_for_user(user_id, limit=limit, offset=offset)

"""
Payment Reconciler - keeps orders in step with the payment gateway.

Payment confirmation may arrive through the gateway callback or through an
active status query; both funnel into `settle()`, which is idempotent:
only the writer that wins the conditional `unpaid -> paid` update applies
spend and reward points. A later trigger that finds the order paid but its
ledger writes unfinished resumes them; otherwise it returns the settled
order.

Callback handlers always answer with the fixed XML acknowledgment and
report every failure through the FailureReporter.
"""
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from orderpay.config import LoyaltyConfig
from orderpay.errors import (
    ERROR_NOTHING_TO_PAY,
    ERROR_ORDER_ACCESS_DENIED,
    ERROR_ORDER_NOT_FOUND,
    ERROR_ORDER_NOT_PAYABLE,
    ERROR_PROCESSING_FAILED,
    AmountMismatch,
    ConcurrentUpdateError,
    GatewayError,
    NotFoundError,
    OrderPayError,
    SettlementIncomplete,
    SignatureMismatch,
    ValidationError,
    refund_amount_error,
)
from orderpay.logging import get_logger, sanitize_id_for_logging
from orderpay.orders.numbering import generate_refund_no
from orderpay.orders.service import apply_commands
from orderpay.orders.state_machine import OrderStateMachine, settlement_commands
from orderpay.payments.constants import (
    GATEWAY_SUCCESS,
    OrderStatus,
    PayMethod,
    PayStatus,
    TradeState,
)
from orderpay.payments.dedup import CallbackDeduplicator
from orderpay.payments.gateway import PaymentGateway, is_success
from orderpay.payments.signing import ack_xml, decrypt_req_info, parse_xml, verify_signature
from orderpay.services.alerts import AlertSeverity, FailureReporter
from orderpay.services.database import Database
from orderpay.services.domains import PointsLedger, StockLedger
from orderpay.services.models import Order
from orderpay.services.money import from_minor_units, money_str, to_minor_units

logger = get_logger(__name__)

MAX_SETTLE_ATTEMPTS = 3
DEFAULT_REFUND_REASON = "Refund confirmed by gateway"


@dataclass(frozen=True)
class SettlementResult:
    order: Order
    newly_settled: bool  # False when another trigger had already settled it


def parse_fee(value: Optional[str], field: str = "total_fee") -> Optional[int]:
    """Minor-unit amount from a gateway field; None when absent."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ValidationError(f"Invalid {field}: {value!r}") from e


class PaymentReconciler:
    """Drives order settlement and refunds from gateway signals."""

    def __init__(
        self,
        db: Database,
        gateway: PaymentGateway,
        stock: StockLedger,
        points: PointsLedger,
        dedup: CallbackDeduplicator,
        reporter: FailureReporter,
        loyalty: Optional[LoyaltyConfig] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.stock = stock
        self.points = points
        self.dedup = dedup
        self.reporter = reporter
        self.loyalty = loyalty or LoyaltyConfig()

    @property
    def pay_key(self) -> str:
        return self.gateway.config.pay_key

    async def _order_by_no(self, order_no: str) -> Order:
        order = await self.db.orders.get_by_order_no(order_no)
        if order is None:
            raise NotFoundError(f"{ERROR_ORDER_NOT_FOUND}: {order_no}")
        return order

    # ==================== BEGIN PAYMENT ====================

    async def begin_payment(self, order_id: str, openid: str, user_id: Optional[str] = None) -> dict[str, str]:
        """
        Create the gateway payment intent and return mini-program pay params.

        Raises:
            NotFoundError, ValidationError, GatewayUnavailable, GatewayRejected
        """
        if not openid:
            raise ValidationError("openid is required")
        order = await self.db.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError(ERROR_ORDER_NOT_FOUND)
        if user_id is not None and order.user_id != user_id:
            raise NotFoundError(ERROR_ORDER_ACCESS_DENIED)
        if OrderStatus(order.status) != OrderStatus.PENDING or PayStatus(order.pay_status) != PayStatus.UNPAID:
            raise ValidationError(ERROR_ORDER_NOT_PAYABLE)
        if order.pay_amount <= 0:
            raise ValidationError(ERROR_NOTHING_TO_PAY)

        intent = await self.gateway.create_unified_order(
            order.order_no, order.pay_amount, openid, attach=order.id or ""
        )
        logger.info("Payment started for order %s", order.order_no)
        return self.gateway.mini_program_pay_params(intent["prepay_id"])

    # ==================== SETTLEMENT ====================

    async def settle(
        self,
        order_no: str,
        transaction_id: Optional[str] = None,
        total_fee: Optional[int] = None,
        pay_method: str = PayMethod.WECHAT.value,
    ) -> SettlementResult:
        """
        Mark an order paid exactly once.

        Raises:
            NotFoundError: Unknown order number
            AmountMismatch: Reported amount differs from the order's pay_amount
            InvalidStateTransition: Order left `pending` (e.g. cancelled) before paying
        """
        for _ in range(MAX_SETTLE_ATTEMPTS):
            order = await self._order_by_no(order_no)
            if PayStatus(order.pay_status) != PayStatus.UNPAID:
                if not order.settlement_applied:
                    logger.warning("Order %s paid but ledger not settled, resuming", order_no)
                    order = await self._finish_settlement(order)
                else:
                    logger.info("Order %s already settled (%s)", order_no, PayStatus(order.pay_status).value)
                return SettlementResult(order, newly_settled=False)

            expected_fee = to_minor_units(order.pay_amount)
            if total_fee is not None and total_fee != expected_fee:
                raise AmountMismatch(order_no, expected_fee, total_fee)

            transition = OrderStateMachine.settle_payment(
                order,
                transaction_id=transaction_id,
                points_rate=self.loyalty.points_rate,
                pay_method=pay_method,
            )
            saved = await self.db.orders.save_transition(order, transition.order)
            if saved is None:
                # Another trigger moved the order; re-read decides
                continue

            logger.info(
                "Order %s settled: transaction=%s points_earned=%s",
                order_no,
                sanitize_id_for_logging(transaction_id or "", max_length=32),
                saved.points_earned,
            )
            saved = await self._finish_settlement(saved)
            return SettlementResult(saved, newly_settled=True)
        raise ConcurrentUpdateError("orders", order_no)

    async def _finish_settlement(self, order: Order) -> Order:
        """
        Write the spend and reward of a paid order to the user ledger.

        Each ledger write is keyed by order number, so running this again
        after a partial failure only applies what is missing.

        Raises:
            SettlementIncomplete: A ledger write failed; the order stays unapplied
        """
        failures = await apply_commands(settlement_commands(order), self.stock, self.points)
        if failures:
            raise SettlementIncomplete(order.order_no, len(failures)) from failures[0][1]
        await self.db.orders.mark_settlement_applied(order.id)
        return order.model_copy(update={"settlement_applied": True})

    async def confirm_payment(self, xml_body: str | bytes) -> str:
        """
        Handle the gateway payment callback.

        Returns:
            Acknowledgment XML (SUCCESS on accept or duplicate, FAIL otherwise)
        """
        try:
            data = parse_xml(xml_body)
        except ValueError as e:
            await self.reporter.report("Payment callback unreadable", e, AlertSeverity.WARNING)
            return ack_xml(False, "Invalid XML")

        if not verify_signature(data, self.pay_key):
            await self.reporter.report(
                "Payment callback signature mismatch",
                SignatureMismatch(),
                AlertSeverity.WARNING,
                {"out_trade_no": sanitize_id_for_logging(data.get("out_trade_no", ""), 32)},
            )
            return ack_xml(False, SignatureMismatch.default_message)

        order_no = data.get("out_trade_no", "")
        if not is_success(data):
            logger.warning(
                "Payment callback for %s reports failure: %s",
                sanitize_id_for_logging(order_no, 32),
                data.get("err_code_des") or data.get("return_msg"),
            )
            return ack_xml(True)
        if not order_no:
            await self.reporter.report("Payment callback without out_trade_no", severity=AlertSeverity.WARNING)
            return ack_xml(False, "Missing out_trade_no")

        if not await self._claim(order_no):
            logger.info("Duplicate payment callback for %s ignored", order_no)
            return ack_xml(True)

        try:
            await self.settle(
                order_no,
                transaction_id=data.get("transaction_id"),
                total_fee=parse_fee(data.get("total_fee")),
            )
        except AmountMismatch as e:
            await self.reporter.report(
                "Payment amount mismatch", e, AlertSeverity.CRITICAL, {"order_no": order_no}
            )
            return ack_xml(False, e.message)
        except OrderPayError as e:
            await self.dedup.release(order_no)
            await self.reporter.report("Payment settlement failed", e, metadata={"order_no": order_no})
            return ack_xml(False, e.message)
        except Exception as e:
            await self.dedup.release(order_no)
            await self.reporter.report(
                "Payment settlement crashed", e, AlertSeverity.CRITICAL, {"order_no": order_no}
            )
            return ack_xml(False, ERROR_PROCESSING_FAILED)

        return ack_xml(True)

    async def _claim(self, order_no: str) -> bool:
        try:
            return await self.dedup.claim(order_no)
        except Exception:
            # pay_status still guards settlement without the window
            logger.warning("Dedup window unavailable for %s", order_no, exc_info=True)
            return True

    # ==================== QUERY ====================

    async def query_payment_status(self, order_no: str) -> dict[str, Any]:
        """
        Poll the gateway for an unpaid order and settle it when paid.

        Returns:
            {"order_no", "status", "pay_status", "trade_state"}
        """
        order = await self._order_by_no(order_no)
        trade_state = None

        if PayStatus(order.pay_status) == PayStatus.UNPAID:
            result = await self.gateway.query_order(order_no)
            if result.get("sign") and not verify_signature(result, self.pay_key):
                raise SignatureMismatch()
            if result.get("return_code") == GATEWAY_SUCCESS:
                trade_state = result.get("trade_state")
            if is_success(result) and trade_state == TradeState.SUCCESS.value:
                settlement = await self.settle(
                    order_no,
                    transaction_id=result.get("transaction_id"),
                    total_fee=parse_fee(result.get("total_fee")),
                )
                order = settlement.order

        return {
            "order_no": order.order_no,
            "status": OrderStatus(order.status).value,
            "pay_status": PayStatus(order.pay_status).value,
            "trade_state": trade_state,
        }

    async def poll_pending(self, within_minutes: int = 120, limit: int = 50) -> dict[str, int]:
        """
        Query every recent unpaid order (cron channel), then finish any paid
        order whose ledger writes are still outstanding.

        Per-order failures are reported and do not stop the sweep.
        """
        cutoff = datetime.now(UTC) - timedelta(minutes=within_minutes)
        orders = await self.db.orders.list_unpaid_since(cutoff, limit=limit)
        summary = {"checked": 0, "settled": 0, "failed": 0, "resumed": 0}

        for order in orders:
            summary["checked"] += 1
            try:
                status = await self.query_payment_status(order.order_no)
            except GatewayError as e:
                summary["failed"] += 1
                logger.warning("Status poll for %s failed: %s", order.order_no, e.message)
                continue
            except OrderPayError as e:
                summary["failed"] += 1
                await self.reporter.report("Status poll settlement failed", e, metadata={"order_no": order.order_no})
                continue
            if status["pay_status"] == PayStatus.PAID.value:
                summary["settled"] += 1

        for order in await self.db.orders.list_unapplied_settlements(limit=limit):
            try:
                await self._finish_settlement(order)
            except Exception as e:
                summary["failed"] += 1
                await self.reporter.report("Settlement resume failed", e, metadata={"order_no": order.order_no})
                continue
            summary["resumed"] += 1

        if summary["checked"] or summary["resumed"]:
            logger.info("Pending payment sweep: %s", summary)
        return summary

    # ==================== REFUND ====================

    async def _apply_refund(self, order: Order, amount: Decimal, reason: str, refund_no: str) -> Order:
        """Persist the refunded state; tolerates the other channel having applied it."""
        for _ in range(MAX_SETTLE_ATTEMPTS):
            if OrderStatus(order.status) == OrderStatus.REFUNDED:
                return order
            transition = OrderStateMachine.refund(order, amount, reason, refund_no=refund_no)
            saved = await self.db.orders.save_transition(order, transition.order)
            if saved is not None:
                logger.info("Order %s refunded %s (%s)", order.order_no, money_str(amount), refund_no)
                return saved
            order = await self._order_by_no(order.order_no)
        raise ConcurrentUpdateError("orders", order.order_no)

    async def request_refund(self, order_id: str, amount: Decimal, reason: str) -> str:
        """
        Refund a completed, paid order.

        Amount and state are validated before the gateway is called.

        Returns:
            The refund number

        Raises:
            NotFoundError, ValidationError, InvalidStateTransition,
            GatewayUnavailable, GatewayRejected
        """
        order = await self.db.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError(ERROR_ORDER_NOT_FOUND)
        OrderStateMachine.validate_refund(order, amount)

        refund_no = generate_refund_no()
        await self.gateway.refund(order.order_no, refund_no, order.pay_amount, amount, reason)
        await self._apply_refund(order, amount, reason, refund_no)
        return refund_no

    async def handle_refund_notify(self, xml_body: str | bytes) -> str:
        """
        Handle the gateway refund-outcome callback.

        Returns:
            Acknowledgment XML
        """
        try:
            data = parse_xml(xml_body)
        except ValueError as e:
            await self.reporter.report("Refund callback unreadable", e, AlertSeverity.WARNING)
            return ack_xml(False, "Invalid XML")

        if data.get("return_code") != GATEWAY_SUCCESS:
            logger.warning("Refund callback reports failure: %s", data.get("return_msg"))
            return ack_xml(True)

        try:
            info = decrypt_req_info(data.get("req_info", ""), self.pay_key)
        except SignatureMismatch as e:
            await self.reporter.report("Refund callback decryption failed", e, AlertSeverity.WARNING)
            return ack_xml(False, e.message)

        order_no = info.get("out_trade_no", "")
        refund_no = info.get("out_refund_no", "")
        if info.get("refund_status") != GATEWAY_SUCCESS:
            await self.reporter.report(
                "Refund not successful",
                severity=AlertSeverity.WARNING,
                metadata={
                    "order_no": order_no,
                    "refund_no": refund_no,
                    "refund_status": info.get("refund_status"),
                },
            )
            return ack_xml(True)

        try:
            await self._record_refund(order_no, refund_no, parse_fee(info.get("refund_fee"), "refund_fee"))
        except OrderPayError as e:
            await self.reporter.report("Refund callback failed", e, metadata={"order_no": order_no})
            return ack_xml(False, e.message)
        except Exception as e:
            await self.reporter.report(
                "Refund callback crashed", e, AlertSeverity.CRITICAL, {"order_no": order_no}
            )
            return ack_xml(False, ERROR_PROCESSING_FAILED)

        return ack_xml(True)

    async def _record_refund(self, order_no: str, refund_no: str, refund_fee: Optional[int]) -> Order:
        if refund_fee is None:
            raise ValidationError("Refund callback without refund_fee")
        order = await self._order_by_no(order_no)
        amount = from_minor_units(refund_fee)
        if amount <= 0 or amount > order.pay_amount:
            raise refund_amount_error(amount, order.pay_amount)

        if OrderStatus(order.status) != OrderStatus.REFUNDED:
            return await self._apply_refund(
                order, amount, order.refund_reason or DEFAULT_REFUND_REASON, refund_no
            )

        if order.refund_amount != amount:
            updated = await self.db.orders.update_if(
                order.id,
                {"refund_amount": money_str(amount), "updated_at": datetime.now(UTC).isoformat()},
                {"status": OrderStatus.REFUNDED.value},
            )
            logger.info("Order %s refund amount confirmed as %s", order_no, money_str(amount))
            return updated or order

        logger.info("Refund %s for order %s already recorded", refund_no, order_no)
        return order

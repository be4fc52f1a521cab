"""Payment Gateway Client - signed XML API (unified order, query, refund).

All methods use async/await over a shared httpx client. Every call is bounded
by the configured timeout and never retried here; retry policy belongs to
the caller.
"""
import time
from decimal import Decimal
from typing import Any

import httpx

from orderpay.config import GatewayConfig
from orderpay.errors import GatewayRejected, GatewayUnavailable
from orderpay.logging import get_logger, sanitize_string_for_logging
from orderpay.payments.constants import GATEWAY_SUCCESS
from orderpay.payments.signing import build_xml, generate_nonce, parse_xml, sign_params
from orderpay.services.money import to_minor_units

logger = get_logger(__name__)

UNIFIED_ORDER_PATH = "/pay/unifiedorder"
ORDER_QUERY_PATH = "/pay/orderquery"
REFUND_PATH = "/secapi/pay/refund"


def is_success(result: dict[str, Any]) -> bool:
    """Both the transport-level and the business-level codes report success."""
    return (
        result.get("return_code") == GATEWAY_SUCCESS
        and result.get("result_code") == GATEWAY_SUCCESS
    )


def error_message(result: dict[str, Any], default: str) -> str:
    return result.get("err_code_des") or result.get("return_msg") or default


class PaymentGateway:
    """Client for the payment gateway, built from an immutable GatewayConfig."""

    def __init__(self, config: GatewayConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        # HTTP client (lazy init unless injected)
        self._http_client = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy creation of shared httpx client with timeouts."""
        if self._http_client is None:
            timeout = self.config.timeout_seconds
            self._http_client = httpx.AsyncClient(
                base_url=self.config.api_url.rstrip("/"),
                timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._http_client

    def _base_params(self) -> dict[str, Any]:
        return {
            "appid": self.config.app_id,
            "mch_id": self.config.mch_id,
            "nonce_str": generate_nonce(),
        }

    def sign(self, params: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of params with the `sign` field attached."""
        signed = dict(params)
        signed["sign"] = sign_params(signed, self.config.pay_key)
        return signed

    async def _post(self, path: str, params: dict[str, Any], action: str) -> dict[str, str]:
        """
        Sign, send and parse one gateway request.

        Raises:
            GatewayUnavailable: On timeout, network failure, HTTP error or unreadable body
        """
        self.config.ensure_configured()
        body = build_xml(self.sign(params))
        client = await self._get_http_client()
        try:
            response = await client.post(
                path,
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/xml"},
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error("Gateway %s timed out", action)
            raise GatewayUnavailable(f"Gateway {action} timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error("Gateway %s HTTP error %s", action, e.response.status_code)
            raise GatewayUnavailable(
                f"Gateway {action} failed with HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            logger.exception("Gateway %s network error", action)
            raise GatewayUnavailable(f"Failed to connect to gateway: {e!s}") from e

        try:
            return parse_xml(response.text)
        except ValueError as e:
            logger.error("Gateway %s returned unreadable body", action)
            raise GatewayUnavailable(f"Gateway {action} returned malformed response") from e

    # ==================== UNIFIED ORDER ====================

    async def create_unified_order(
        self,
        order_no: str,
        amount: Decimal,
        openid: str,
        attach: str = "",
        body: str | None = None,
    ) -> dict[str, str]:
        """
        Create a payment intent.

        Returns:
            Dict with prepay_id and nonce_str

        Raises:
            GatewayUnavailable, GatewayRejected
        """
        params = self._base_params()
        params.update(
            {
                "body": body or self.config.order_body,
                "out_trade_no": order_no,
                "total_fee": to_minor_units(amount),
                "spbill_create_ip": self.config.spbill_create_ip,
                "notify_url": self.config.notify_url,
                "trade_type": self.config.trade_type,
                "openid": openid,
                "attach": attach,
            }
        )

        logger.info("Gateway unified order for %s: total_fee=%s", order_no, params["total_fee"])
        result = await self._post(UNIFIED_ORDER_PATH, params, "unified order")

        if not is_success(result):
            message = error_message(result, "Unified order failed")
            logger.error(
                "Gateway unified order rejected for %s: %s",
                order_no,
                sanitize_string_for_logging(message),
            )
            raise GatewayRejected(message, code=result.get("err_code"))

        prepay_id = result.get("prepay_id")
        if not prepay_id:
            raise GatewayRejected("prepay_id not found in gateway response")

        return {"prepay_id": prepay_id, "nonce_str": result.get("nonce_str", "")}

    def mini_program_pay_params(self, prepay_id: str) -> dict[str, str]:
        """Parameters the mini-program passes to its requestPayment call."""
        params = {
            "appId": self.config.app_id,
            "timeStamp": str(int(time.time())),
            "nonceStr": generate_nonce(),
            "package": f"prepay_id={prepay_id}",
            "signType": "MD5",
        }
        params["paySign"] = sign_params(params, self.config.pay_key)
        return params

    # ==================== QUERY ====================

    async def query_order(self, order_no: str) -> dict[str, str]:
        """
        Query the gateway for the trade state of an order.

        The raw parsed response is returned; callers inspect `trade_state`.
        """
        params = self._base_params()
        params["out_trade_no"] = order_no
        result = await self._post(ORDER_QUERY_PATH, params, "order query")
        logger.info(
            "Gateway query for %s: return_code=%s trade_state=%s",
            order_no,
            result.get("return_code"),
            result.get("trade_state"),
        )
        return result

    # ==================== REFUND ====================

    async def refund(
        self,
        order_no: str,
        refund_no: str,
        total_amount: Decimal,
        refund_amount: Decimal,
        reason: str = "",
    ) -> dict[str, str]:
        """
        Request a refund.

        Raises:
            GatewayUnavailable, GatewayRejected
        """
        params = self._base_params()
        params.update(
            {
                "out_trade_no": order_no,
                "out_refund_no": refund_no,
                "total_fee": to_minor_units(total_amount),
                "refund_fee": to_minor_units(refund_amount),
                "refund_desc": reason,
                "notify_url": self.config.refund_notify_url,
            }
        )

        result = await self._post(REFUND_PATH, params, "refund")
        logger.info(
            "Gateway refund for %s (%s): return_code=%s result_code=%s",
            order_no,
            refund_no,
            result.get("return_code"),
            result.get("result_code"),
        )

        if not is_success(result):
            message = error_message(result, "Refund failed")
            raise GatewayRejected(message, code=result.get("err_code"))

        return result

    async def aclose(self) -> None:
        """Close http client if created."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

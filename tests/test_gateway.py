"""Tests for the payment gateway client over httpx.MockTransport."""
from decimal import Decimal

import httpx
import pytest

from orderpay.config import GatewayConfig
from orderpay.errors import GatewayRejected, GatewayUnavailable
from orderpay.payments.gateway import ORDER_QUERY_PATH, REFUND_PATH, UNIFIED_ORDER_PATH, PaymentGateway
from orderpay.payments.signing import sign_params, verify_signature

GATEWAY_BASE_URL = "https://gateway.test"
SUCCESS = {"return_code": "SUCCESS", "result_code": "SUCCESS"}


@pytest.mark.asyncio
async def test_unified_order_sends_signed_request(gateway, gateway_server, gateway_config):
    gateway_server.respond(UNIFIED_ORDER_PATH, dict(SUCCESS, prepay_id="wx-prepay-1", nonce_str="n"))

    result = await gateway.create_unified_order("202410190001", Decimal("93.00"), "openid-1", attach="order-1")

    assert result == {"prepay_id": "wx-prepay-1", "nonce_str": "n"}
    path, params = gateway_server.requests[0]
    assert path == UNIFIED_ORDER_PATH
    assert params["total_fee"] == "9300"
    assert params["appid"] == "wx-test-app"
    assert params["mch_id"] == "1900000001"
    assert params["trade_type"] == "JSAPI"
    assert params["spbill_create_ip"] == "127.0.0.1"
    assert params["notify_url"] == "https://shop.test/api/payment/notify"
    assert len(params["nonce_str"]) == 32
    assert verify_signature(params, gateway_config.pay_key)


@pytest.mark.asyncio
async def test_unified_order_business_failure(gateway, gateway_server):
    gateway_server.respond(
        UNIFIED_ORDER_PATH,
        {"return_code": "SUCCESS", "result_code": "FAIL", "err_code": "ORDERPAID", "err_code_des": "order paid"},
    )

    with pytest.raises(GatewayRejected) as exc_info:
        await gateway.create_unified_order("202410190001", Decimal("1"), "openid-1")

    assert exc_info.value.code == "ORDERPAID"
    assert exc_info.value.message == "order paid"


@pytest.mark.asyncio
async def test_unified_order_without_prepay_id(gateway, gateway_server):
    gateway_server.respond(UNIFIED_ORDER_PATH, SUCCESS)
    with pytest.raises(GatewayRejected):
        await gateway.create_unified_order("202410190001", Decimal("1"), "openid-1")


def test_mini_program_params_are_signed(gateway, gateway_config):
    params = gateway.mini_program_pay_params("wx-prepay-1")

    assert params["appId"] == "wx-test-app"
    assert params["package"] == "prepay_id=wx-prepay-1"
    assert params["signType"] == "MD5"
    assert params["timeStamp"].isdigit()
    unsigned = {k: v for k, v in params.items() if k != "paySign"}
    assert params["paySign"] == sign_params(unsigned, gateway_config.pay_key)


@pytest.mark.asyncio
async def test_query_returns_raw_fields(gateway, gateway_server):
    gateway_server.respond(ORDER_QUERY_PATH, dict(SUCCESS, trade_state="NOTPAY"))

    result = await gateway.query_order("202410190001")

    assert result["trade_state"] == "NOTPAY"
    assert gateway_server.requests[0][1]["out_trade_no"] == "202410190001"


@pytest.mark.asyncio
async def test_refund_request_fields(gateway, gateway_server):
    gateway_server.respond(REFUND_PATH, dict(SUCCESS, refund_id="r-1"))

    await gateway.refund("202410190001", "RF202410190001", Decimal("93"), Decimal("20.5"), "cold")

    params = gateway_server.requests[0][1]
    assert params["total_fee"] == "9300"
    assert params["refund_fee"] == "2050"
    assert params["out_refund_no"] == "RF202410190001"
    assert params["notify_url"] == "https://shop.test/api/payment/refund-notify"


@pytest.mark.asyncio
async def test_refund_rejected(gateway, gateway_server):
    gateway_server.respond(REFUND_PATH, {"return_code": "FAIL", "return_msg": "cert error"})
    with pytest.raises(GatewayRejected, match="cert error"):
        await gateway.refund("202410190001", "RF1", Decimal("93"), Decimal("1"))


@pytest.mark.asyncio
async def test_http_error_is_unavailable(gateway, gateway_server):
    gateway_server.respond(ORDER_QUERY_PATH, httpx.Response(502, text="bad gateway"))
    with pytest.raises(GatewayUnavailable):
        await gateway.query_order("202410190001")


@pytest.mark.asyncio
async def test_malformed_body_is_unavailable(gateway, gateway_server):
    gateway_server.respond(ORDER_QUERY_PATH, httpx.Response(200, text="<html>oops"))
    with pytest.raises(GatewayUnavailable):
        await gateway.query_order("202410190001")


@pytest.mark.asyncio
async def test_timeout_is_unavailable(gateway_config):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=GATEWAY_BASE_URL)
    gateway = PaymentGateway(gateway_config, http_client=client)

    with pytest.raises(GatewayUnavailable, match="timed out"):
        await gateway.query_order("202410190001")


@pytest.mark.asyncio
async def test_unconfigured_gateway_refuses_to_call():
    gateway = PaymentGateway(GatewayConfig())
    with pytest.raises(ValueError, match="WX_APPID"):
        await gateway.query_order("202410190001")
    assert GatewayConfig().missing() == ("WX_APPID", "WX_MCH_ID", "WX_PAY_KEY", "WX_NOTIFY_URL")

"""Runtime configuration.

Environment variables are read once by ``load_settings()`` into frozen
models. Components receive the resulting value explicitly instead of
reading the environment themselves.
"""
import os
from decimal import Decimal
from typing import Dict, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from orderpay.logging import get_logger
from orderpay.services.money import to_decimal

logger = get_logger(__name__)

DEFAULT_GATEWAY_URL = "https://api.mch.weixin.qq.com"

# Config field -> env var, used for error messages
GATEWAY_ENV_REQUIREMENTS: Dict[str, str] = {
    "app_id": "WX_APPID",
    "mch_id": "WX_MCH_ID",
    "pay_key": "WX_PAY_KEY",
    "notify_url": "WX_NOTIFY_URL",
}


class GatewayConfig(BaseModel):
    """Credentials and endpoints of the payment gateway."""

    model_config = ConfigDict(frozen=True)

    app_id: str = ""
    mch_id: str = ""
    pay_key: str = ""
    notify_url: str = ""
    refund_notify_url: str = ""
    api_url: str = DEFAULT_GATEWAY_URL
    timeout_seconds: float = 10.0
    spbill_create_ip: str = "127.0.0.1"
    trade_type: str = "JSAPI"
    order_body: str = "Neighborhood order"

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        return cls(
            app_id=os.environ.get("WX_APPID", ""),
            mch_id=os.environ.get("WX_MCH_ID", ""),
            pay_key=os.environ.get("WX_PAY_KEY", ""),
            notify_url=os.environ.get("WX_NOTIFY_URL", ""),
            refund_notify_url=os.environ.get("WX_REFUND_NOTIFY_URL", ""),
            api_url=os.environ.get("WX_API_URL", DEFAULT_GATEWAY_URL),
            timeout_seconds=float(os.environ.get("WX_TIMEOUT", "10")),
        )

    def missing(self) -> Tuple[str, ...]:
        """Env vars that are required but empty."""
        return tuple(
            env_var for field, env_var in GATEWAY_ENV_REQUIREMENTS.items() if not getattr(self, field)
        )

    def ensure_configured(self) -> "GatewayConfig":
        """
        Ensure the gateway can be called.

        Raises:
            ValueError: If a required credential is not configured
        """
        missing = self.missing()
        if missing:
            logger.error("Payment gateway not configured. Missing: %s", missing)
            raise ValueError(f"Payment gateway not configured. Set: {', '.join(missing)}")
        return self

    @property
    def is_configured(self) -> bool:
        return not self.missing()


class LoyaltyConfig(BaseModel):
    """Points economy parameters."""

    model_config = ConfigDict(frozen=True)

    points_rate: Decimal = Decimal("0.05")  # points earned per currency unit paid
    sign_in_points: int = 5
    points_to_currency_rate: Decimal = Decimal("0.01")  # 1 point = 0.01

    @field_validator("points_rate", "points_to_currency_rate", mode="before")
    @classmethod
    def convert_to_decimal(cls, v):
        return to_decimal(v)

    @classmethod
    def from_env(cls) -> "LoyaltyConfig":
        return cls(
            points_rate=os.environ.get("POINTS_RATE") or "0.05",
            sign_in_points=int(os.environ.get("SIGN_IN_POINTS") or 5),
            points_to_currency_rate=os.environ.get("POINTS_CURRENCY_RATE") or "0.01",
        )


class Settings(BaseModel):
    """Top-level settings value passed to the application wiring."""

    model_config = ConfigDict(frozen=True)

    gateway: GatewayConfig = GatewayConfig()
    loyalty: LoyaltyConfig = LoyaltyConfig()
    dedup_window_seconds: int = 300
    pending_poll_minutes: int = 120
    cron_secret: str = ""
    supabase_url: str = ""
    supabase_key: str = ""
    redis_url: str = ""
    redis_token: str = ""
    telegram_token: str = ""
    admin_chat_ids: Tuple[int, ...] = ()

    @field_validator("admin_chat_ids", mode="before")
    @classmethod
    def parse_chat_ids(cls, v):
        if isinstance(v, str):
            return tuple(int(part) for part in v.split(",") if part.strip())
        return v


def load_settings() -> Settings:
    """Read all settings from the environment."""
    return Settings(
        gateway=GatewayConfig.from_env(),
        loyalty=LoyaltyConfig.from_env(),
        dedup_window_seconds=int(os.environ.get("PAYMENT_DEDUP_SECONDS", "300")),
        pending_poll_minutes=int(os.environ.get("PENDING_POLL_MINUTES", "120")),
        cron_secret=os.environ.get("CRON_SECRET", ""),
        supabase_url=os.environ.get("SUPABASE_URL", ""),
        supabase_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY", ""),
        redis_url=os.environ.get("UPSTASH_REDIS_REST_URL", ""),
        redis_token=os.environ.get("UPSTASH_REDIS_REST_TOKEN", ""),
        telegram_token=os.environ.get("TELEGRAM_TOKEN", ""),
        admin_chat_ids=os.environ.get("ADMIN_CHAT_IDS", ""),
    )

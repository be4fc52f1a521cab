"""Failure Reporter - surfaces reconciliation failures to operators.

Every report is logged. When a Telegram bot token and admin chat ids are
configured, an HTML alert is also sent through aiogram. Delivery problems
are logged and never propagate to the caller.
"""
import html
from datetime import UTC, datetime
from typing import Optional, Sequence

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from orderpay.logging import get_logger

logger = get_logger(__name__)


class AlertSeverity:
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


SEVERITY_ICONS = {
    AlertSeverity.INFO: "ℹ️",
    AlertSeverity.WARNING: "⚠️",
    AlertSeverity.ERROR: "🔴",
    AlertSeverity.CRITICAL: "🚨",
}


class FailureReporter:
    """Logs failures and alerts admins over Telegram."""

    def __init__(
        self,
        bot_token: str = "",
        admin_chat_ids: Sequence[int] = (),
        bot: Optional[Bot] = None,
    ) -> None:
        self.bot_token = bot_token
        self.admin_chat_ids = tuple(admin_chat_ids)
        self._bot = bot

    def _get_bot(self) -> Optional[Bot]:
        """Get or create bot instance."""
        if self._bot is None and self.bot_token:
            self._bot = Bot(
                token=self.bot_token,
                default=DefaultBotProperties(parse_mode=ParseMode.HTML),
            )
        return self._bot

    @staticmethod
    def format_alert(title: str, message: str, severity: str, metadata: Optional[dict]) -> str:
        icon = SEVERITY_ICONS.get(severity, "📢")
        text = f"{icon} <b>{html.escape(title)}</b>\n\n{html.escape(message)}\n"
        if metadata:
            text += "\n"
            for key, value in metadata.items():
                text += f"• <code>{html.escape(str(key))}</code>: {html.escape(str(value))}\n"
        text += f"\n<i>{datetime.now(UTC):%Y-%m-%d %H:%M UTC}</i>"
        return text

    async def report(
        self,
        title: str,
        error: Optional[BaseException] = None,
        severity: str = AlertSeverity.ERROR,
        metadata: Optional[dict] = None,
    ) -> int:
        """
        Record a failure.

        Returns:
            Number of admins notified
        """
        message = str(error) if error is not None else title
        logger.error(
            "%s: %s %s",
            title,
            message,
            metadata or "",
            exc_info=(type(error), error, error.__traceback__) if error is not None else None,
        )

        bot = self._get_bot()
        if bot is None or not self.admin_chat_ids:
            return 0

        text = self.format_alert(title, message, severity, metadata)
        sent_count = 0
        for chat_id in self.admin_chat_ids:
            try:
                await bot.send_message(chat_id=chat_id, text=text)
                sent_count += 1
            except Exception:
                logger.exception("Failed to send alert to admin %s", chat_id)
        return sent_count

    async def close(self) -> None:
        if self._bot is not None:
            await self._bot.session.close()
            self._bot = None

"""Operational alerts to a Telegram chat. Best effort: never raises."""

from typing import Optional

import httpx

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = settings.alert_bot_token
ALERT_CHAT_ID = settings.alert_chat_id

LEVEL_MARKS = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_MARKS.get(level, '📢')} *{level}* clinic-inbox\n\n{message}"
    if context:
        context_str = "\n".join(f"  {k}: {v}" for k, v in context.items() if v is not None)
        text += f"\n\n```\n{context_str}\n```"
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send alert to Telegram. Returns True if the bot API accepted it."""
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(f"Alert not configured: {level} - {message}")
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"https://api.telegram.org/bot{ALERT_BOT_TOKEN}/sendMessage",
                json={"chat_id": ALERT_CHAT_ID, "text": format_alert(level, message, context), "parse_mode": "Markdown"},
            )
            return response.status_code == 200
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_ingest_failure(stage: str, reason: str, context: Optional[dict] = None) -> bool:
    """A webhook delivery aborted and was parked in the dead-letter table."""
    return send_alert("CRITICAL", f"Ingest failed at stage `{stage}`: {reason}", context)


def alert_dead_letter_exhausted(failure_id: str, attempts: int, last_error: str | None) -> bool:
    return send_alert(
        "ERROR",
        "Dead-letter replay gave up",
        {"failure_id": failure_id, "attempts": attempts, "last_error": last_error},
    )

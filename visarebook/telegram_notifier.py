from __future__ import annotations

import logging
from typing import Iterable

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


def send_telegram_message(*, bot_token: str, chat_id: str, text: str, timeout_seconds: float = 20.0) -> None:
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": True,
    }

    with httpx.Client(base_url=TELEGRAM_API_URL, timeout=timeout_seconds) as client:
        r = client.post(f"/bot{bot_token}/sendMessage", json=payload)
        r.raise_for_status()
        data = r.json()
        if not data.get("ok", False):
            raise RuntimeError(f"Telegram API error: {data}")


def broadcast_telegram(*, bot_token: str, chat_ids: Iterable[str], text: str) -> None:
    failed: list[str] = []

    for chat_id in chat_ids:
        try:
            send_telegram_message(bot_token=bot_token, chat_id=chat_id, text=text)
        except Exception as e:
            # Keep sending to the remaining chats, report once at the end.
            logger.warning("Failed to send telegram message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
            failed.append(chat_id)

    if failed:
        raise RuntimeError(f"Failed to send telegram message to some recipients: {', '.join(failed)}")

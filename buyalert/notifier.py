"""Delivery of rendered alerts to Telegram."""

from __future__ import annotations

import html
import re
from typing import Protocol

from telegram import LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError

from buyalert.models import MediaType, NotificationPayload
from buyalert.utils.logging import get_logger

logger = get_logger(__name__)

# Telegram caps photo/video captions well below message length.
MAX_CAPTION_CHARS = 1024
NO_PREVIEW = LinkPreviewOptions(is_disabled=True)
_TAG_RE = re.compile(r"<[^>]+>")


class Dispatcher(Protocol):
    """Anything able to deliver a payload; failures are reported, not raised."""

    async def dispatch(self, payload: NotificationPayload) -> bool:
        ...

    async def notify_text(self, chat_id: int, text: str) -> bool:
        ...


def strip_html(text: str) -> str:
    return html.unescape(_TAG_RE.sub("", text))


class TelegramDispatcher:
    """Send payloads through a python-telegram-bot ``Bot``."""

    def __init__(self, bot) -> None:
        self.bot = bot

    async def dispatch(self, payload: NotificationPayload) -> bool:
        try:
            await self._send(payload, ParseMode.HTML)
            return True
        except BadRequest as exc:
            logger.warning(
                "telegram_html_failed", chat_id=payload.chat_id, error=str(exc)
            )
        except TelegramError as exc:
            logger.error(
                "notification_delivery_failed",
                chat_id=payload.chat_id,
                media=payload.media_kind.value,
                error=str(exc),
            )
            return False

        plain = NotificationPayload(
            chat_id=payload.chat_id,
            text=strip_html(payload.text),
            media_kind=payload.media_kind,
            media_ref=payload.media_ref,
        )
        try:
            await self._send(plain, None)
            return True
        except TelegramError as exc:
            logger.error(
                "notification_delivery_failed",
                chat_id=payload.chat_id,
                media=payload.media_kind.value,
                error=str(exc),
            )
            return False

    async def notify_text(self, chat_id: int, text: str) -> bool:
        try:
            await self.bot.send_message(chat_id=chat_id, text=text)
            return True
        except TelegramError as exc:
            logger.warning("notice_delivery_failed", chat_id=chat_id, error=str(exc))
            return False

    async def _send(self, payload: NotificationPayload, parse_mode) -> None:
        if payload.media_kind is MediaType.PHOTO and payload.media_ref:
            await self.bot.send_photo(
                chat_id=payload.chat_id,
                photo=payload.media_ref,
                caption=payload.text[:MAX_CAPTION_CHARS],
                parse_mode=parse_mode,
            )
        elif payload.media_kind is MediaType.VIDEO and payload.media_ref:
            await self.bot.send_video(
                chat_id=payload.chat_id,
                video=payload.media_ref,
                caption=payload.text[:MAX_CAPTION_CHARS],
                parse_mode=parse_mode,
            )
        else:
            await self.bot.send_message(
                chat_id=payload.chat_id,
                text=payload.text,
                parse_mode=parse_mode,
                link_preview_options=NO_PREVIEW,
            )


__all__ = ["Dispatcher", "TelegramDispatcher", "strip_html"]

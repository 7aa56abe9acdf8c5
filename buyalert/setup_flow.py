"""Draft/confirm workflow sitting between chat commands and the engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from buyalert.errors import NotFoundError, ValidationError
from buyalert.jobs.watchers import WatcherManager, WatchSession
from buyalert.models import MediaType, SettingOpts, settings_key
from buyalert.store.settings import SettingsStore
from buyalert.utils import validators
from buyalert.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ValidationOutcome:
    """Result of applying one field; failures carry a user-facing message."""

    ok: bool
    field: str
    message: str = ""
    value: Any = None


def _check(predicate: Callable[[str], bool], message: str) -> Callable[[str, str], str]:
    def parse(field: str, raw: str) -> str:
        value = (raw or "").strip()
        if not predicate(value):
            raise ValidationError(field, message)
        return value

    return parse


def _link(predicate: Callable[[str], bool], message: str) -> Callable[[str, str], str]:
    """Like ``_check`` but ``-`` / ``none`` clears the link."""
    check = _check(predicate, message)

    def parse(field: str, raw: str) -> str:
        if (raw or "").strip().lower() in {"-", "none", "clear"}:
            return ""
        return check(field, raw)

    return parse


FIELD_PARSERS: Dict[str, Callable[[str, str], Any]] = {
    "token_address": _check(
        validators.is_token_address,
        "That is not a token address. Send 0x followed by 40 hex characters.",
    ),
    "min_buy_amount": validators.parse_amount,
    "buy_step": validators.parse_step,
    "emoji": _check(validators.is_emoji, "Please send exactly one emoji."),
    "media_toggle": validators.parse_bool,
    "media_type": validators.parse_media_type,
    "tg_link": _link(
        validators.is_tg_link, "Telegram links look like https://t.me/yourgroup."
    ),
    "twitter_link": _link(
        validators.is_twitter_link, "X links look like https://x.com/yourhandle."
    ),
    "website_link": _link(
        validators.is_website_link, "Websites look like https://example.com."
    ),
}

FIELD_ALIASES = {
    "token": "token_address",
    "address": "token_address",
    "min": "min_buy_amount",
    "min_buy": "min_buy_amount",
    "step": "buy_step",
    "media": "media_toggle",
    "tg": "tg_link",
    "telegram": "tg_link",
    "twitter": "twitter_link",
    "x": "twitter_link",
    "website": "website_link",
    "web": "website_link",
}


def resolve_field(name: str) -> Optional[str]:
    normalized = (name or "").strip().lower().replace("-", "_")
    normalized = FIELD_ALIASES.get(normalized, normalized)
    return normalized if normalized in FIELD_PARSERS else None


class SetupFlow:
    """Drive one draft per user from creation to a running watcher."""

    def __init__(self, store: SettingsStore, watchers: WatcherManager) -> None:
        self.store = store
        self.watchers = watchers

    async def begin_draft(
        self, user_id: int, group_chat_id: int = 0, token_address: str = ""
    ) -> SettingOpts:
        """Open a draft, starting from the stored record when one exists."""
        if token_address and not validators.is_token_address(token_address):
            raise ValidationError(
                "token_address",
                "That is not a token address. Send 0x followed by 40 hex characters.",
            )
        draft = await self.store.find(user_id, token_address)
        if group_chat_id:
            draft.group_chat_id = group_chat_id
        await self.store.set_selected(user_id, draft)
        logger.info("draft_started", user_id=user_id, token=token_address)
        return draft

    async def current_draft(self, user_id: int) -> Optional[SettingOpts]:
        return await self.store.get_selected(user_id)

    async def apply_field(
        self, user_id: int, field_name: str, raw_text: str
    ) -> ValidationOutcome:
        """Validate ``raw_text`` and write it into the user's draft."""
        field = resolve_field(field_name)
        if field is None:
            known = ", ".join(sorted(FIELD_PARSERS))
            return ValidationOutcome(
                ok=False,
                field=field_name,
                message=f"Unknown setting {field_name!r}. Try one of: {known}.",
            )

        draft = await self.store.get_selected(user_id)
        if draft is None:
            draft = await self.begin_draft(user_id)

        try:
            value = FIELD_PARSERS[field](field, raw_text)
        except ValidationError as exc:
            return ValidationOutcome(ok=False, field=field, message=exc.message)

        setattr(draft, field, value)
        await self.store.set_selected(user_id, draft)
        return ValidationOutcome(ok=True, field=field, message="Saved.", value=value)

    async def attach_media(
        self, user_id: int, media_type: MediaType, file_id: str
    ) -> SettingOpts:
        """Store an uploaded photo/video on the draft and switch media on."""
        draft = await self.store.get_selected(user_id)
        if draft is None:
            raise NotFoundError("No draft in progress; start one with /setup.")
        draft.media_type = media_type
        draft.media_file_id = file_id
        draft.media_toggle = True
        await self.store.set_selected(user_id, draft)
        return draft

    async def confirm(self, user_id: int) -> WatchSession:
        """Save the draft and (re)start its watcher from a fresh snapshot."""
        draft = await self.store.get_selected(user_id)
        if draft is None:
            raise NotFoundError("No draft in progress; start one with /setup.")
        if not draft.token_address:
            raise ValidationError("token_address", "Set a token address first.")

        replaced = await self.store.upsert(draft)
        await self.store.clear_selected(user_id)
        session = await self.watchers.start(draft)
        logger.info(
            "draft_confirmed",
            user_id=user_id,
            token=draft.token_address,
            replaced=replaced,
        )
        return session

    async def delete(self, user_id: int, token_address: str) -> bool:
        """Remove the record and stop its watcher; False if nothing matched."""
        removed = await self.store.delete(user_id, token_address)
        stopped = await self.watchers.stop(user_id, token_address)
        draft = await self.store.get_selected(user_id)
        if draft and draft.key == settings_key(user_id, token_address):
            await self.store.clear_selected(user_id)
        logger.info(
            "settings_delete_requested",
            user_id=user_id,
            token=token_address,
            removed=removed,
            stopped=stopped,
        )
        return removed

    async def quick_watch(
        self, user_id: int, chat_id: int, token_address: str
    ) -> WatchSession:
        """Watch ``token_address`` with default settings in one step."""
        await self.begin_draft(user_id, group_chat_id=chat_id, token_address=token_address)
        return await self.confirm(user_id)


__all__ = [
    "FIELD_PARSERS",
    "SetupFlow",
    "ValidationOutcome",
    "resolve_field",
]

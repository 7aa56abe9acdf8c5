"""Domain types for watched tokens and outgoing alerts."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_BUY_STEP = 30
DEFAULT_EMOJI = "💎"


class MediaType(str, Enum):
    NONE = "none"
    PHOTO = "photo"
    VIDEO = "video"


class SettingOpts(BaseModel):
    """Alert configuration for one (user, token) pair."""

    model_config = ConfigDict(validate_assignment=True)

    user_id: int
    group_chat_id: int = 0
    token_address: str = ""
    min_buy_amount: float = Field(default=0.0, ge=0)
    buy_step: int = Field(default=DEFAULT_BUY_STEP, gt=0)
    emoji: str = DEFAULT_EMOJI
    media_toggle: bool = True
    media_type: MediaType = MediaType.NONE
    media_file_id: Optional[str] = None
    tg_link: str = ""
    twitter_link: str = ""
    website_link: str = ""

    @property
    def key(self) -> Tuple[int, str]:
        return settings_key(self.user_id, self.token_address)

    @property
    def has_media(self) -> bool:
        return (
            self.media_toggle
            and self.media_type is not MediaType.NONE
            and bool(self.media_file_id)
        )

    @classmethod
    def default(cls, user_id: int, token_address: str = "") -> "SettingOpts":
        return cls(user_id=user_id, token_address=token_address)


def settings_key(user_id: int, token_address: str) -> Tuple[int, str]:
    """Composite key; addresses compare case-insensitively."""
    return (int(user_id), (token_address or "").strip().lower())


@dataclass(frozen=True)
class NotificationPayload:
    """Rendered alert ready for delivery."""

    chat_id: int
    text: str
    media_kind: MediaType = MediaType.NONE
    media_ref: Optional[str] = None


__all__ = [
    "DEFAULT_BUY_STEP",
    "DEFAULT_EMOJI",
    "MediaType",
    "SettingOpts",
    "NotificationPayload",
    "settings_key",
]

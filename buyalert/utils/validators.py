"""Format checks for user-supplied alert settings."""

from __future__ import annotations

import math
import re
import unicodedata

from buyalert.errors import ValidationError
from buyalert.models import MediaType

TOKEN_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
TG_LINK_RE = re.compile(r"^https://t\.me/[a-zA-Z0-9_]+$")
TWITTER_LINK_RE = re.compile(r"^https://x\.com/[a-zA-Z0-9_]+$")
WEBSITE_LINK_RE = re.compile(r"^https://[a-zA-Z0-9_.]+$")

ZWJ = "\u200d"
VARIATION_SELECTORS = {"\ufe0e", "\ufe0f"}
KEYCAP = "\u20e3"
SKIN_TONES = range(0x1F3FB, 0x1F400)
TAG_CHARS = range(0xE0020, 0xE0080)
REGIONAL_INDICATORS = range(0x1F1E6, 0x1F200)

# Blocks whose symbols render as emoji pictographs.
EMOJI_RANGES = (
    range(0x1F300, 0x1F600),
    range(0x1F600, 0x1F650),
    range(0x1F680, 0x1F700),
    range(0x1F900, 0x1FA00),
    range(0x1FA70, 0x1FB00),
    range(0x2600, 0x27C0),
    range(0x2B00, 0x2C00),
    range(0x2190, 0x2200),
    range(0x2300, 0x2400),
    range(0x1F000, 0x1F100),
    range(0x1F170, 0x1F1E6),
    range(0x3030, 0x3031),
    range(0x303D, 0x303E),
    range(0x3297, 0x329A),
)
KEYCAP_BASES = set("0123456789#*")


def is_token_address(text: str) -> bool:
    return bool(TOKEN_ADDRESS_RE.match(text or ""))


def is_tg_link(text: str) -> bool:
    return bool(TG_LINK_RE.match(text or ""))


def is_twitter_link(text: str) -> bool:
    return bool(TWITTER_LINK_RE.match(text or ""))


def is_website_link(text: str) -> bool:
    return bool(WEBSITE_LINK_RE.match(text or ""))


def _is_pictograph(char: str) -> bool:
    code = ord(char)
    if any(code in block for block in EMOJI_RANGES):
        return unicodedata.category(char) in {"So", "Sm", "Sk"} or code >= 0x1F000
    return char in {"©", "®", "‼", "⁉", "™", "ℹ"}


def is_emoji(text: str) -> bool:
    """Accept exactly one emoji grapheme (ZWJ sequences, flags, keycaps)."""
    if not text or text != text.strip():
        return False

    chars = list(text)
    if len(chars) == 2 and all(ord(c) in REGIONAL_INDICATORS for c in chars):
        return True
    if chars[0] in KEYCAP_BASES:
        rest = [c for c in chars[1:] if c not in VARIATION_SELECTORS]
        return rest == [KEYCAP]

    expect_base = True
    for char in chars:
        code = ord(char)
        if expect_base:
            if not _is_pictograph(char):
                return False
            expect_base = False
        elif char == ZWJ:
            expect_base = True
        elif (
            char in VARIATION_SELECTORS
            or code in SKIN_TONES
            or code in TAG_CHARS
        ):
            continue
        else:
            return False
    return not expect_base


def parse_amount(field: str, raw: str) -> float:
    """Parse a non-negative USD amount (``$`` and ``,`` tolerated)."""
    cleaned = (raw or "").strip().lstrip("$").replace(",", "")
    try:
        value = float(cleaned)
    except ValueError:
        raise ValidationError(field, "Please send a number, e.g. 50 or 12.5.") from None
    if not math.isfinite(value) or value < 0:
        raise ValidationError(field, "The amount must be zero or more.")
    return value


def parse_step(field: str, raw: str) -> int:
    cleaned = (raw or "").strip().lstrip("$").replace(",", "")
    try:
        value = int(cleaned)
    except ValueError:
        raise ValidationError(field, "Please send a whole number, e.g. 30.") from None
    if value <= 0:
        raise ValidationError(field, "The step must be greater than zero.")
    return value


def parse_bool(field: str, raw: str) -> bool:
    lowered = (raw or "").strip().lower()
    if lowered in {"on", "true", "yes", "1", "enable", "enabled"}:
        return True
    if lowered in {"off", "false", "no", "0", "disable", "disabled"}:
        return False
    raise ValidationError(field, "Please answer on or off.")


def parse_media_type(field: str, raw: str) -> MediaType:
    lowered = (raw or "").strip().lower()
    aliases = {"image": "photo", "picture": "photo", "gif": "video", "": "none"}
    lowered = aliases.get(lowered, lowered)
    try:
        return MediaType(lowered)
    except ValueError:
        raise ValidationError(field, "Media type must be none, photo or video.") from None


__all__ = [
    "is_token_address",
    "is_tg_link",
    "is_twitter_link",
    "is_website_link",
    "is_emoji",
    "parse_amount",
    "parse_step",
    "parse_bool",
    "parse_media_type",
]

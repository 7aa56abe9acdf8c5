"""Helpers for Telegram-safe HTML alert formatting."""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import List

from buyalert.ledger import TransferItem, TxInfo
from buyalert.models import MediaType, NotificationPayload, SettingOpts
from buyalert.utils import metrics

DEXSCREENER_URL = "https://dexscreener.com/apechain/{address}"
EXPLORER_TX_URL = "https://apechain.calderaexplorer.xyz/tx/{tx_hash}"
PRICE_DIGITS = 5
AMOUNT_DIGITS = 5


@dataclass(frozen=True)
class BuyMetrics:
    """Derived figures for one transfer."""

    amount: float
    fee: float
    price: float
    spend_usd: float
    total_usd: float
    market_cap: float
    emoji_count: int


def compute_metrics(
    item: TransferItem, tx_info: TxInfo, price: float, buy_step: int
) -> BuyMetrics:
    """Apply the metrics helpers to a transfer and its transaction detail."""
    total = metrics.scale(item.total.value, item.total.decimals)
    # Fees are quoted in the token's base units, like the transfer total.
    fee = metrics.scale(tx_info.fee.value, item.token.decimals)
    supply = metrics.scale(item.token.total_supply, item.token.decimals)
    spend = metrics.tx_spend_usd(total, fee, price)
    return BuyMetrics(
        amount=total - fee,
        fee=fee,
        price=price,
        spend_usd=spend,
        total_usd=metrics.tx_total_usd(total, price),
        market_cap=metrics.market_cap(supply, price),
        emoji_count=metrics.emoji_repeat_count(spend, buy_step),
    )


def _link(url: str, label: str) -> str:
    return f'<a href="{escape(url, quote=True)}">{escape(label)}</a>'


def render_buy_alert(
    settings: SettingOpts, item: TransferItem, figures: BuyMetrics
) -> str:
    """HTML body for a buy alert."""
    address = item.token.address or settings.token_address
    chart_url = DEXSCREENER_URL.format(address=address)
    name = escape(item.token.name or item.token.symbol or "Token")
    symbol = escape(item.token.symbol or "")

    lines: List[str] = [
        f"{_link(chart_url, '🚀')} <b>{name} Buy!</b>",
        f"<code>{escape(address)}</code>",
        "",
        settings.emoji * figures.emoji_count,
        "",
        f"💲 Spent: ${metrics.format_compact(figures.spend_usd)}"
        f" (${metrics.format_compact(figures.total_usd)})",
        f"💰 Got: {metrics.round_to(figures.amount, AMOUNT_DIGITS)} {symbol}",
        f"💸 Fee: {metrics.format_compact(figures.fee)}",
        f"🏷️ Price: ${metrics.round_to(figures.price, PRICE_DIGITS)}",
        f"📊 Marketcap: ${metrics.format_compact(figures.market_cap)}",
        "",
    ]

    links = [
        _link(EXPLORER_TX_URL.format(tx_hash=item.tx_hash), "TX"),
        _link(chart_url, "Chart"),
    ]
    if settings.tg_link:
        links.append(_link(settings.tg_link, "TG"))
    if settings.twitter_link:
        links.append(_link(settings.twitter_link, "X"))
    if settings.website_link:
        links.append(_link(settings.website_link, "Website"))
    lines.append(" | ".join(links))
    return "\n".join(lines)


def build_payload(settings: SettingOpts, text: str) -> NotificationPayload:
    """Attach the configured media when it is switched on and uploaded."""
    if settings.has_media:
        return NotificationPayload(
            chat_id=settings.group_chat_id or settings.user_id,
            text=text,
            media_kind=settings.media_type,
            media_ref=settings.media_file_id,
        )
    return NotificationPayload(
        chat_id=settings.group_chat_id or settings.user_id,
        text=text,
        media_kind=MediaType.NONE,
    )


def describe_settings(settings: SettingOpts) -> str:
    """Plain-text summary shown while editing a draft."""
    media = settings.media_type.value if settings.media_file_id else "not uploaded"
    return "\n".join(
        [
            f"Token: {settings.token_address or '(not set)'}",
            f"Min buy: ${settings.min_buy_amount:g}",
            f"Buy step: ${settings.buy_step}",
            f"Emoji: {settings.emoji}",
            f"Media: {'on' if settings.media_toggle else 'off'} ({media})",
            f"Telegram: {settings.tg_link or '-'}",
            f"X: {settings.twitter_link or '-'}",
            f"Website: {settings.website_link or '-'}",
        ]
    )

import pytest

from buyalert.ledger import TransferItem, TxInfo
from buyalert.models import MediaType, SettingOpts
from buyalert.utils.formatting import (
    build_payload,
    compute_metrics,
    describe_settings,
    render_buy_alert,
)

TOKEN = "0x48b62137EdfA95a428D35C09E44256a739F6B557"


def _item(value="186942772000000000000", decimals="18") -> TransferItem:
    return TransferItem.model_validate(
        {
            "tx_hash": "0xabc",
            "to": {"name": "Pool"},
            "token": {
                "address": TOKEN,
                "name": "Wrapped <Ape>",
                "symbol": "WAPE",
                "decimals": "18",
                "total_supply": "11430907751224090057358708",
            },
            "total": {"value": value, "decimals": decimals},
        }
    )


def _fee(value="1000000000000000000") -> TxInfo:
    return TxInfo.model_validate({"fee": {"value": value}})


def test_compute_metrics_scales_and_nets_fee():
    figures = compute_metrics(_item(), _fee(), price=2.0, buy_step=30)

    assert figures.fee == pytest.approx(1.0)
    assert figures.amount == pytest.approx(185.942772)
    assert figures.spend_usd == pytest.approx(371.885544)
    assert figures.total_usd == pytest.approx(373.885544)
    assert figures.market_cap == pytest.approx(22861815.50244818)
    assert figures.emoji_count == 13


def test_render_buy_alert_contains_figures_and_links():
    settings = SettingOpts(
        user_id=1,
        token_address=TOKEN,
        emoji="🦍",
        tg_link="https://t.me/apes",
        website_link="https://apes.io",
    )
    figures = compute_metrics(_item(), _fee(), price=2.0, buy_step=30)

    text = render_buy_alert(settings, _item(), figures)
    lines = text.splitlines()

    assert "Wrapped &lt;Ape&gt; Buy!" in lines[0]
    assert "🦍" * 13 in lines
    assert "💲 Spent: $371.886 ($373.886)" in lines
    assert "📊 Marketcap: $22.9M" in lines
    assert "🏷️ Price: $2.0" in lines
    assert 'href="https://t.me/apes">TG</a>' in text
    assert 'href="https://apes.io">Website</a>' in text
    assert ">X</a>" not in text
    assert "/tx/0xabc" in text


def test_build_payload_routes_to_group_and_media():
    settings = SettingOpts(
        user_id=1,
        group_chat_id=-200,
        token_address=TOKEN,
        media_type=MediaType.VIDEO,
        media_file_id="vid",
    )

    payload = build_payload(settings, "hello")

    assert payload.chat_id == -200
    assert payload.media_kind is MediaType.VIDEO
    assert payload.media_ref == "vid"


def test_build_payload_without_media_when_toggled_off():
    settings = SettingOpts(
        user_id=1,
        token_address=TOKEN,
        media_toggle=False,
        media_type=MediaType.PHOTO,
        media_file_id="photo",
    )

    payload = build_payload(settings, "hello")

    assert payload.chat_id == 1
    assert payload.media_kind is MediaType.NONE
    assert payload.media_ref is None


def test_describe_settings_lists_every_field():
    text = describe_settings(SettingOpts(user_id=1, min_buy_amount=12.5))

    assert "Token: (not set)" in text
    assert "Min buy: $12.5" in text
    assert "Buy step: $30" in text
    assert "Media: on (not uploaded)" in text

import asyncio

import pytest

from buyalert.errors import DecodeError, NetworkError, ValidationError
from buyalert.jobs.watchers import (
    NO_TRANSFER_NOTICE,
    ErrorPolicy,
    SessionState,
    WatcherManager,
    WatchSession,
)
from buyalert.ledger import TokenOverview, TokenTransferPage, TransferItem, TxInfo
from buyalert.models import MediaType, SettingOpts
from buyalert.store.settings import SettingsStore

TOKEN = "0x" + "12" * 20
CHAT_ID = -100500


def _transfer(tx_hash: str, value: str = "150", decimals: str = "0", to_name="Pool"):
    return TransferItem.model_validate(
        {
            "tx_hash": tx_hash,
            "from": {"hash": "0xfrom", "name": "Router"},
            "to": {"hash": "0xto", "name": to_name},
            "token": {
                "address": TOKEN,
                "name": "Test Token",
                "symbol": "TST",
                "decimals": "0",
                "total_supply": "1000000",
            },
            "total": {"value": value, "decimals": decimals},
        }
    )


class DummyLedger:
    """Serves scripted transfer pages; a scripted exception is raised."""

    def __init__(self, pages=None, price: float = 1.0) -> None:
        self.pages = list(pages or [])
        self.price = price
        self.fee = "0"
        self.overview_error = None
        self.transfer_calls = 0
        self.detail_calls = []

    async def latest_transfers(self, token_address: str) -> TokenTransferPage:
        self.transfer_calls += 1
        if len(self.pages) > 1:
            entry = self.pages.pop(0)
        elif self.pages:
            entry = self.pages[0]
        else:
            entry = []
        if isinstance(entry, Exception):
            raise entry
        return TokenTransferPage(items=entry)

    async def transaction_detail(self, tx_hash: str) -> TxInfo:
        self.detail_calls.append(tx_hash)
        return TxInfo.model_validate({"fee": {"value": self.fee}})

    async def token_overview(self, api_key: str, token_address: str) -> TokenOverview:
        if self.overview_error is not None:
            raise self.overview_error
        return TokenOverview(id=token_address, symbol="TST", price=self.price)


class DummyDispatcher:
    def __init__(self) -> None:
        self.payloads = []
        self.notices = []
        self.delivered = asyncio.Event()

    async def dispatch(self, payload) -> bool:
        self.payloads.append(payload)
        self.delivered.set()
        return True

    async def notify_text(self, chat_id: int, text: str) -> bool:
        self.notices.append((chat_id, text))
        return True


def _opts(**overrides) -> SettingOpts:
    values = dict(
        user_id=7,
        group_chat_id=CHAT_ID,
        token_address=TOKEN,
        min_buy_amount=100,
        buy_step=30,
        emoji="🟢",
        media_toggle=False,
    )
    values.update(overrides)
    return SettingOpts(**values)


def _manager(ledger, dispatcher, store=None, **kwargs) -> WatcherManager:
    return WatcherManager(
        store=store or SettingsStore(),
        ledger=ledger,
        dispatcher=dispatcher,
        price_api_key="key",
        interval_seconds=kwargs.pop("interval_seconds", 0.01),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_same_transfer_notifies_once() -> None:
    ledger = DummyLedger(pages=[[_transfer("0xaaa")]])
    dispatcher = DummyDispatcher()
    manager = _manager(ledger, dispatcher)
    session = WatchSession(settings=_opts())

    for _ in range(3):
        assert await manager.poll_once(session) is True

    assert len(dispatcher.payloads) == 1
    assert ledger.detail_calls == ["0xaaa"]
    assert session.last_seen_tx_hash == "0xaaa"
    assert session.notifications == 1


@pytest.mark.asyncio
async def test_new_hash_after_seen_one_notifies_again() -> None:
    ledger = DummyLedger(pages=[[_transfer("0xaaa")], [_transfer("0xbbb")]])
    dispatcher = DummyDispatcher()
    manager = _manager(ledger, dispatcher)
    session = WatchSession(settings=_opts())

    await manager.poll_once(session)
    await manager.poll_once(session)

    assert len(dispatcher.payloads) == 2


@pytest.mark.asyncio
async def test_transfer_without_recipient_name_is_skipped() -> None:
    ledger = DummyLedger(pages=[[_transfer("0xaaa", to_name=None)]])
    dispatcher = DummyDispatcher()
    manager = _manager(ledger, dispatcher)
    session = WatchSession(settings=_opts())

    await manager.poll_once(session)

    assert dispatcher.payloads == []
    assert ledger.detail_calls == []
    assert session.last_seen_tx_hash == ""


@pytest.mark.asyncio
async def test_threshold_is_strictly_greater_than() -> None:
    dispatcher = DummyDispatcher()
    ledger = DummyLedger(
        pages=[
            [_transfer("0xequal", value="150")],
            [_transfer("0xabove", value="15001", decimals="2")],
        ]
    )
    manager = _manager(ledger, dispatcher)
    session = WatchSession(settings=_opts(min_buy_amount=150))

    await manager.poll_once(session)
    assert dispatcher.payloads == []
    assert session.last_seen_tx_hash == "0xequal"

    await manager.poll_once(session)
    assert len(dispatcher.payloads) == 1


@pytest.mark.asyncio
async def test_alert_carries_emoji_line_and_chat() -> None:
    ledger = DummyLedger(pages=[[_transfer("0xaaa", value="150")]])
    dispatcher = DummyDispatcher()
    manager = _manager(ledger, dispatcher)

    await manager.poll_once(WatchSession(settings=_opts()))

    payload = dispatcher.payloads[0]
    assert payload.chat_id == CHAT_ID
    assert payload.media_kind is MediaType.NONE
    assert "🟢" * 6 in payload.text.splitlines()
    assert "🟢" * 7 not in payload.text


@pytest.mark.asyncio
async def test_alert_goes_to_user_when_no_group() -> None:
    ledger = DummyLedger(pages=[[_transfer("0xaaa")]])
    dispatcher = DummyDispatcher()
    manager = _manager(ledger, dispatcher)

    await manager.poll_once(WatchSession(settings=_opts(group_chat_id=0)))

    assert dispatcher.payloads[0].chat_id == 7


@pytest.mark.asyncio
async def test_photo_media_is_attached_when_enabled() -> None:
    ledger = DummyLedger(pages=[[_transfer("0xaaa")]])
    dispatcher = DummyDispatcher()
    manager = _manager(ledger, dispatcher)
    settings = _opts(
        media_toggle=True, media_type=MediaType.PHOTO, media_file_id="photo-1"
    )

    await manager.poll_once(WatchSession(settings=settings))

    payload = dispatcher.payloads[0]
    assert payload.media_kind is MediaType.PHOTO
    assert payload.media_ref == "photo-1"


@pytest.mark.asyncio
async def test_empty_page_notice_sent_once_per_streak() -> None:
    ledger = DummyLedger(pages=[[], [], [_transfer("0xaaa")], [], []])
    dispatcher = DummyDispatcher()
    manager = _manager(ledger, dispatcher)
    session = WatchSession(settings=_opts())

    for _ in range(5):
        await manager.poll_once(session)

    assert dispatcher.notices == [
        (CHAT_ID, NO_TRANSFER_NOTICE),
        (CHAT_ID, NO_TRANSFER_NOTICE),
    ]
    assert len(dispatcher.payloads) == 1


@pytest.mark.asyncio
async def test_empty_notice_can_be_disabled() -> None:
    dispatcher = DummyDispatcher()
    manager = _manager(DummyLedger(pages=[[]]), dispatcher, notify_empty=False)

    await manager.poll_once(WatchSession(settings=_opts()))

    assert dispatcher.notices == []


@pytest.mark.asyncio
async def test_continue_policy_keeps_polling_and_notices_once() -> None:
    error = NetworkError("boom", url="https://explorer.test", status_code=404)
    ledger = DummyLedger(pages=[error, error, [_transfer("0xaaa")]])
    dispatcher = DummyDispatcher()
    manager = _manager(ledger, dispatcher, error_policy=ErrorPolicy.CONTINUE)
    session = WatchSession(settings=_opts())

    assert await manager.poll_once(session) is True
    assert await manager.poll_once(session) is True
    assert session.error_streak == 2
    assert len(dispatcher.notices) == 1

    assert await manager.poll_once(session) is True
    assert session.error_streak == 0
    assert len(dispatcher.payloads) == 1


@pytest.mark.asyncio
async def test_terminate_policy_stops_on_any_fetch_error() -> None:
    error = NetworkError("timeout", url="https://explorer.test")
    dispatcher = DummyDispatcher()
    manager = _manager(
        DummyLedger(pages=[error]), dispatcher, error_policy=ErrorPolicy.TERMINATE
    )

    assert await manager.poll_once(WatchSession(settings=_opts())) is False
    assert "stopped watching" in dispatcher.notices[0][1]


def test_severity_policy_separates_transient_from_permanent() -> None:
    manager = _manager(DummyLedger(), DummyDispatcher())

    transient = NetworkError("503", url="u", status_code=503)
    no_status = NetworkError("reset", url="u")
    permanent = NetworkError("404", url="u", status_code=404)
    garbled = DecodeError("bad json", url="u", payload="<html>")

    assert manager._should_terminate(transient) is False
    assert manager._should_terminate(no_status) is False
    assert manager._should_terminate(permanent) is True
    assert manager._should_terminate(garbled) is True


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [408, 429])
async def test_rate_limited_fetch_keeps_session_alive(status_code) -> None:
    error = NetworkError("slow down", url="u", status_code=status_code)
    dispatcher = DummyDispatcher()
    ledger = DummyLedger(pages=[error, [_transfer("0xaaa")]])
    manager = _manager(ledger, dispatcher)
    session = WatchSession(settings=_opts())

    assert await manager.poll_once(session) is True
    assert "retrying" in dispatcher.notices[0][1]
    assert "stopped watching" not in dispatcher.notices[0][1]

    assert await manager.poll_once(session) is True
    assert len(dispatcher.payloads) == 1


@pytest.mark.asyncio
async def test_enrichment_failure_drops_transfer_but_marks_it_seen() -> None:
    ledger = DummyLedger(pages=[[_transfer("0xaaa")]])
    ledger.overview_error = NetworkError("price down", url="https://price.test")
    dispatcher = DummyDispatcher()
    manager = _manager(ledger, dispatcher)
    session = WatchSession(settings=_opts())

    assert await manager.poll_once(session) is True
    ledger.overview_error = None
    await manager.poll_once(session)

    assert dispatcher.payloads == []
    assert session.last_seen_tx_hash == "0xaaa"


@pytest.mark.asyncio
async def test_start_requires_token_address() -> None:
    manager = _manager(DummyLedger(), DummyDispatcher())

    with pytest.raises(ValidationError) as excinfo:
        await manager.start(_opts(token_address=""))

    assert excinfo.value.field == "token_address"


@pytest.mark.asyncio
async def test_stop_cancels_running_task() -> None:
    store = SettingsStore()
    await store.upsert(_opts())
    manager = _manager(DummyLedger(pages=[[]]), DummyDispatcher(), store=store)

    session = await manager.start(_opts())
    await asyncio.sleep(0.03)
    assert manager.is_active(7, TOKEN)

    assert await manager.stop(7, TOKEN) is True
    assert session.task.done()
    assert session.state is SessionState.TERMINATED
    assert manager.is_active(7, TOKEN) is False
    assert await manager.stop(7, TOKEN) is False


@pytest.mark.asyncio
async def test_deleting_settings_ends_the_loop() -> None:
    store = SettingsStore()
    await store.upsert(_opts())
    ledger = DummyLedger(pages=[[]])
    manager = _manager(ledger, DummyDispatcher(), store=store)

    session = await manager.start(_opts())
    await asyncio.sleep(0.03)
    await store.delete(7, TOKEN)
    await asyncio.wait_for(session.task, timeout=1)

    assert session.state is SessionState.TERMINATED
    assert manager.get(7, TOKEN) is None
    calls = ledger.transfer_calls
    await asyncio.sleep(0.03)
    assert ledger.transfer_calls == calls


@pytest.mark.asyncio
async def test_restart_replaces_previous_session() -> None:
    store = SettingsStore()
    await store.upsert(_opts())
    manager = _manager(DummyLedger(pages=[[]]), DummyDispatcher(), store=store)

    first = await manager.start(_opts())
    second = await manager.start(_opts(min_buy_amount=500))

    assert first.task.done()
    assert manager.get(7, TOKEN) is second
    assert second.settings.min_buy_amount == 500
    await manager.shutdown()
    assert manager.sessions() == []


@pytest.mark.asyncio
async def test_resume_all_starts_every_stored_token() -> None:
    store = SettingsStore()
    await store.upsert(_opts())
    await store.upsert(_opts(user_id=8))
    await store.upsert(_opts(user_id=9, token_address=""))
    manager = _manager(DummyLedger(pages=[[]]), DummyDispatcher(), store=store)

    assert await manager.resume_all() == 2
    assert manager.is_active(7, TOKEN)
    assert manager.is_active(8, TOKEN)

    await manager.shutdown()


@pytest.mark.asyncio
async def test_confirmed_settings_alert_once_end_to_end() -> None:
    store = SettingsStore()
    ledger = DummyLedger(pages=[[_transfer("0xfeed", value="150")]])
    dispatcher = DummyDispatcher()
    manager = _manager(ledger, dispatcher, store=store, interval_seconds=0.01)

    await store.upsert(_opts(min_buy_amount=100, buy_step=30))
    session = await manager.start(await store.find(7, TOKEN))
    await asyncio.wait_for(dispatcher.delivered.wait(), timeout=1)
    await asyncio.sleep(0.05)

    assert len(dispatcher.payloads) == 1
    lines = dispatcher.payloads[0].text.splitlines()
    assert "🟢" * 6 in lines
    assert await manager.poll_once(session) is True
    assert len(dispatcher.payloads) == 1

    await manager.shutdown()
    assert session.task.done()


def _running_watch_tasks():
    return [
        task
        for task in asyncio.all_tasks()
        if task.get_name().startswith("watch:") and not task.done()
    ]


@pytest.mark.asyncio
async def test_concurrent_starts_leave_one_task() -> None:
    store = SettingsStore()
    await store.upsert(_opts())
    manager = _manager(DummyLedger(pages=[[]]), DummyDispatcher(), store=store)
    await manager.start(_opts())
    await asyncio.sleep(0.02)

    await asyncio.gather(manager.start(_opts()), manager.start(_opts()))

    assert len(manager.sessions()) == 1
    assert _running_watch_tasks() == [manager.get(7, TOKEN).task]

    await manager.shutdown()
    assert _running_watch_tasks() == []


@pytest.mark.asyncio
async def test_failing_tick_is_logged_and_polling_continues() -> None:
    store = SettingsStore()
    await store.upsert(_opts())
    ledger = DummyLedger(pages=[RuntimeError("boom"), [_transfer("0xaaa")]])
    dispatcher = DummyDispatcher()
    manager = _manager(ledger, dispatcher, store=store)

    session = await manager.start(_opts())
    await asyncio.wait_for(dispatcher.delivered.wait(), timeout=1)

    assert ledger.transfer_calls >= 2
    assert len(dispatcher.payloads) == 1
    assert session.state is SessionState.ACTIVE

    await manager.shutdown()

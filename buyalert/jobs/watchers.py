"""Per-token polling tasks that turn new transfers into buy alerts."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import DefaultDict, Dict, List, Optional, Tuple

from buyalert.errors import DecodeError, LedgerError, NetworkError, ValidationError
from buyalert.ledger import LedgerClient, TransferItem
from buyalert.models import SettingOpts, settings_key
from buyalert.notifier import Dispatcher
from buyalert.store.settings import SettingsStore
from buyalert.utils.formatting import build_payload, compute_metrics, render_buy_alert
from buyalert.utils.logging import bind_context, get_logger

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 5.0
NO_TRANSFER_NOTICE = "Not found any new transfer"


class ErrorPolicy(str, Enum):
    """What a session does when the transfer fetch fails."""

    CONTINUE = "continue"
    TERMINATE = "terminate"
    # Keep polling through network blips, stop on client errors and bad payloads.
    SEVERITY = "severity"


class SessionState(str, Enum):
    ACTIVE = "active"
    TERMINATED = "terminated"


@dataclass
class WatchSession:
    """Runtime pairing of a settings snapshot with its dedup state."""

    settings: SettingOpts
    last_seen_tx_hash: str = ""
    empty_notice_sent: bool = False
    error_streak: int = 0
    notifications: int = 0
    state: SessionState = SessionState.ACTIVE
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None

    @property
    def key(self) -> Tuple[int, str]:
        return self.settings.key

    @property
    def chat_id(self) -> int:
        return self.settings.group_chat_id or self.settings.user_id


class WatcherManager:
    """Own one polling task per confirmed settings record."""

    def __init__(
        self,
        store: SettingsStore,
        ledger: LedgerClient,
        dispatcher: Dispatcher,
        price_api_key: str,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        error_policy: ErrorPolicy = ErrorPolicy.SEVERITY,
        notify_empty: bool = True,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.price_api_key = price_api_key
        self.interval_seconds = interval_seconds
        self.error_policy = ErrorPolicy(error_policy)
        self.notify_empty = notify_empty
        self._sessions: Dict[Tuple[int, str], WatchSession] = {}
        self._locks: DefaultDict[Tuple[int, str], asyncio.Lock] = defaultdict(
            asyncio.Lock
        )

    def is_active(self, user_id: int, token_address: str) -> bool:
        session = self._sessions.get(settings_key(user_id, token_address))
        return session is not None and session.state is SessionState.ACTIVE

    def get(self, user_id: int, token_address: str) -> Optional[WatchSession]:
        return self._sessions.get(settings_key(user_id, token_address))

    def sessions(self) -> List[WatchSession]:
        return list(self._sessions.values())

    async def start(self, opts: SettingOpts) -> WatchSession:
        """Start polling from a snapshot of ``opts``, restarting any old session."""
        if not opts.token_address:
            raise ValidationError("token_address", "Set a token address first.")

        key = settings_key(opts.user_id, opts.token_address)
        async with self._locks[key]:
            await self._stop_session(key)
            session = WatchSession(settings=opts.model_copy(deep=True))
            self._sessions[key] = session
            session.task = asyncio.create_task(
                self._run(session),
                name=f"watch:{opts.user_id}:{key[1]}",
            )
        logger.info(
            "watch_session_started",
            user_id=opts.user_id,
            token=opts.token_address,
            min_buy_amount=opts.min_buy_amount,
        )
        return session

    async def stop(self, user_id: int, token_address: str) -> bool:
        """Signal and cancel the session's task; True if one was running."""
        key = settings_key(user_id, token_address)
        async with self._locks[key]:
            return await self._stop_session(key)

    async def _stop_session(self, key: Tuple[int, str]) -> bool:
        # Caller holds the key's lock.
        session = self._sessions.pop(key, None)
        if session is None:
            return False

        session.stop_event.set()
        task = session.task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        session.state = SessionState.TERMINATED
        logger.info(
            "watch_session_stopped",
            user_id=session.settings.user_id,
            token=session.settings.token_address,
        )
        return True

    async def resume_all(self) -> int:
        """Start a session for every stored record that names a token."""
        started = 0
        for opts in await self.store.snapshot_all():
            if not opts.token_address:
                continue
            await self.start(opts)
            started += 1
        logger.info("watch_sessions_resumed", count=started)
        return started

    async def shutdown(self) -> None:
        for user_id, token_address in list(self._sessions):
            await self.stop(user_id, token_address)

    async def _run(self, session: WatchSession) -> None:
        settings = session.settings
        bind_context(user_id=settings.user_id, token=settings.token_address)
        try:
            while not session.stop_event.is_set():
                if not await self._still_configured(session):
                    logger.info("watch_settings_gone")
                    break
                try:
                    keep_polling = await self.poll_once(session)
                except Exception as exc:
                    logger.exception("watch_tick_failed", error=str(exc))
                    keep_polling = True
                if not keep_polling:
                    break
                try:
                    await asyncio.wait_for(
                        session.stop_event.wait(), timeout=self.interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            session.state = SessionState.TERMINATED
            if self._sessions.get(session.key) is session:
                del self._sessions[session.key]
            logger.info("watch_loop_exited", notifications=session.notifications)

    async def _still_configured(self, session: WatchSession) -> bool:
        settings = session.settings
        if not settings.token_address:
            return False
        return await self.store.exists(settings.user_id, settings.token_address)

    async def poll_once(self, session: WatchSession) -> bool:
        """Run one tick; returns False when the session should end."""
        settings = session.settings
        try:
            page = await self.ledger.latest_transfers(settings.token_address)
        except LedgerError as exc:
            return await self._handle_fetch_error(session, exc)
        session.error_streak = 0

        item = page.first
        if item is None:
            if self.notify_empty and not session.empty_notice_sent:
                session.empty_notice_sent = True
                await self.dispatcher.notify_text(session.chat_id, NO_TRANSFER_NOTICE)
            return True
        session.empty_notice_sent = False

        # No await between the dedup check and its write.
        tx_hash = item.tx_hash
        if tx_hash == session.last_seen_tx_hash or not item.to.display_name:
            return True
        session.last_seen_tx_hash = tx_hash

        await self._evaluate(session, item)
        return True

    async def _evaluate(self, session: WatchSession, item: TransferItem) -> None:
        settings = session.settings
        try:
            overview = await self.ledger.token_overview(
                self.price_api_key, settings.token_address
            )
            tx_info = await self.ledger.transaction_detail(item.tx_hash)
        except LedgerError as exc:
            logger.warning(
                "watch_enrich_failed",
                tx_hash=item.tx_hash,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return

        figures = compute_metrics(item, tx_info, overview.price, settings.buy_step)
        if figures.spend_usd <= settings.min_buy_amount:
            logger.debug(
                "watch_below_threshold",
                tx_hash=item.tx_hash,
                spend_usd=round(figures.spend_usd, 4),
                min_buy_amount=settings.min_buy_amount,
            )
            return

        text = render_buy_alert(settings, item, figures)
        delivered = await self.dispatcher.dispatch(build_payload(settings, text))
        if delivered:
            session.notifications += 1
        logger.info(
            "buy_alert_dispatched",
            tx_hash=item.tx_hash,
            spend_usd=round(figures.spend_usd, 4),
            delivered=delivered,
        )

    async def _handle_fetch_error(
        self, session: WatchSession, exc: LedgerError
    ) -> bool:
        session.error_streak += 1
        terminate = self._should_terminate(exc)
        logger.warning(
            "watch_fetch_failed",
            error=str(exc),
            error_type=type(exc).__name__,
            url=exc.url,
            streak=session.error_streak,
            terminate=terminate,
        )
        token = session.settings.token_address
        if terminate:
            await self.dispatcher.notify_text(
                session.chat_id,
                f"Invalid token address {token}, stopped watching it.",
            )
            return False
        if session.error_streak == 1:
            await self.dispatcher.notify_text(
                session.chat_id,
                f"Explorer unavailable for {token}, retrying.",
            )
        return True

    def _should_terminate(self, exc: LedgerError) -> bool:
        if self.error_policy is ErrorPolicy.TERMINATE:
            return True
        if self.error_policy is ErrorPolicy.CONTINUE:
            return False
        if isinstance(exc, DecodeError):
            return True
        return isinstance(exc, NetworkError) and exc.is_permanent


__all__ = [
    "ErrorPolicy",
    "SessionState",
    "WatchSession",
    "WatcherManager",
    "NO_TRANSFER_NOTICE",
]

"""High-level database operations."""

from __future__ import annotations

from datetime import datetime
from typing import List, Sequence

from sqlalchemy import delete, select

from buyalert.models import MediaType, SettingOpts

from .db import SettingRecord


class Repository:
    """CRUD utilities wrapping SQLModel sessions."""

    def __init__(self, session) -> None:
        self.session = session

    async def all_settings(self) -> List[SettingOpts]:
        result = await self.session.execute(
            select(SettingRecord).order_by(SettingRecord.position)
        )
        return [_to_opts(row) for row in result.scalars().all()]

    async def replace_settings(self, records: Sequence[SettingOpts]) -> None:
        """Swap the whole table for ``records`` in one transaction."""
        now = datetime.utcnow()
        try:
            await self.session.execute(delete(SettingRecord))
            for position, opts in enumerate(records):
                self.session.add(_to_row(opts, position, now))
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise


def _to_row(opts: SettingOpts, position: int, now: datetime) -> SettingRecord:
    return SettingRecord(
        user_id=opts.user_id,
        token_address=opts.token_address,
        position=position,
        group_chat_id=opts.group_chat_id,
        min_buy_amount=opts.min_buy_amount,
        buy_step=opts.buy_step,
        emoji=opts.emoji,
        media_toggle=opts.media_toggle,
        media_type=opts.media_type.value,
        media_file_id=opts.media_file_id,
        tg_link=opts.tg_link,
        twitter_link=opts.twitter_link,
        website_link=opts.website_link,
        updated_at=now,
    )


def _to_opts(row: SettingRecord) -> SettingOpts:
    return SettingOpts(
        user_id=row.user_id,
        token_address=row.token_address,
        group_chat_id=row.group_chat_id,
        min_buy_amount=row.min_buy_amount,
        buy_step=row.buy_step,
        emoji=row.emoji,
        media_toggle=row.media_toggle,
        media_type=MediaType(row.media_type or MediaType.NONE.value),
        media_file_id=row.media_file_id,
        tg_link=row.tg_link,
        twitter_link=row.twitter_link,
        website_link=row.website_link,
    )

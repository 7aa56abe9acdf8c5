"""Telegram command handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from telegram import Update
from telegram.ext import (
    Application,
    CallbackContext,
    CommandHandler,
    MessageHandler,
    filters,
)

from buyalert.errors import NotFoundError, ValidationError
from buyalert.jobs.watchers import WatcherManager
from buyalert.models import MediaType
from buyalert.setup_flow import FIELD_PARSERS, SetupFlow
from buyalert.store.settings import SettingsStore
from buyalert.utils.formatting import describe_settings
from buyalert.utils.logging import get_logger

logger = get_logger(__name__)

HELP_TEXT = (
    "I post buy alerts for the tokens you configure.\n\n"
    "/s <address> - watch a token with default settings\n"
    "/setup <address> - start editing a token's alert settings\n"
    "/set <field> <value> - change a setting on the draft\n"
    "/draft - show the draft\n"
    "/confirm - save the draft and start watching\n"
    "/delete <address> - stop watching and forget a token\n"
    "/list - tokens you are watching\n\n"
    "Send a photo or video while a draft is open to use it as alert media.\n"
    "Fields: " + ", ".join(sorted(FIELD_PARSERS))
)


@dataclass
class HandlerContext:
    flow: SetupFlow
    store: SettingsStore
    watchers: WatcherManager
    admin_ids: List[int]
    allowed_chat_id: int | None


def setup(application: Application, handler_context: HandlerContext) -> None:
    """Register handlers on the Telegram application."""
    application.bot_data["ctx"] = handler_context

    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("s", quick_watch_command))
    application.add_handler(CommandHandler("setup", setup_command))
    application.add_handler(CommandHandler("set", set_command))
    application.add_handler(CommandHandler("draft", draft_command))
    application.add_handler(CommandHandler("confirm", confirm_command))
    application.add_handler(CommandHandler("delete", delete_command))
    application.add_handler(CommandHandler("list", list_command))

    application.add_handler(
        MessageHandler((filters.PHOTO | filters.VIDEO) & ~filters.COMMAND, media_handler)
    )


def get_ctx(context: CallbackContext) -> HandlerContext:
    return context.application.bot_data["ctx"]


async def ensure_user(update: Update, context: CallbackContext) -> bool:
    """Ensure the chat and user are allowed to configure alerts."""
    ctx = get_ctx(context)
    if ctx.allowed_chat_id:
        chat = update.effective_chat
        if not chat or chat.id != ctx.allowed_chat_id:
            await update.message.reply_text(
                "This bot is restricted to the configured chat.", parse_mode=None
            )
            return False
    if ctx.admin_ids:
        user = update.effective_user
        if not user or user.id not in ctx.admin_ids:
            await update.message.reply_text(
                "Only admins can change alert settings.", parse_mode=None
            )
            return False
    return True


def _ids(update: Update) -> tuple[int, int]:
    user_id = update.effective_user.id
    chat_id = update.effective_chat.id if update.effective_chat else user_id
    return user_id, chat_id


async def start(update: Update, context: CallbackContext) -> None:
    if not await ensure_user(update, context):
        return
    name = update.effective_user.first_name if update.effective_user else "there"
    await update.message.reply_text(
        f"Welcome {name}! 🎉\n\n{HELP_TEXT}", parse_mode=None
    )


async def help_command(update: Update, context: CallbackContext) -> None:
    if not await ensure_user(update, context):
        return
    await update.message.reply_text(HELP_TEXT, parse_mode=None)


async def quick_watch_command(update: Update, context: CallbackContext) -> None:
    if not await ensure_user(update, context):
        return
    if not context.args:
        await update.message.reply_text("Usage: /s <token address>", parse_mode=None)
        return

    ctx = get_ctx(context)
    user_id, chat_id = _ids(update)
    address = context.args[0].strip()
    logger.info("quick_watch_requested", user_id=user_id, token=address)
    try:
        await ctx.flow.quick_watch(user_id, chat_id, address)
    except ValidationError as exc:
        await update.message.reply_text(exc.message, parse_mode=None)
        return
    await update.message.reply_text(
        f"Watching {address}. Alerts will be posted here.", parse_mode=None
    )


async def setup_command(update: Update, context: CallbackContext) -> None:
    if not await ensure_user(update, context):
        return
    ctx = get_ctx(context)
    user_id, chat_id = _ids(update)
    address = context.args[0].strip() if context.args else ""
    try:
        draft = await ctx.flow.begin_draft(
            user_id, group_chat_id=chat_id, token_address=address
        )
    except ValidationError as exc:
        await update.message.reply_text(exc.message, parse_mode=None)
        return
    await update.message.reply_text(
        "Editing alert settings. Use /set <field> <value>, then /confirm.\n\n"
        + describe_settings(draft),
        parse_mode=None,
    )


async def set_command(update: Update, context: CallbackContext) -> None:
    if not await ensure_user(update, context):
        return
    if not context.args or len(context.args) < 2:
        await update.message.reply_text(
            "Usage: /set <field> <value>\nFields: " + ", ".join(sorted(FIELD_PARSERS)),
            parse_mode=None,
        )
        return

    ctx = get_ctx(context)
    user_id, _ = _ids(update)
    field, raw_value = context.args[0], " ".join(context.args[1:])
    outcome = await ctx.flow.apply_field(user_id, field, raw_value)
    if not outcome.ok:
        # Same field again with the reason it was refused.
        await update.message.reply_text(
            f"{outcome.message}\nTry again: /set {outcome.field} <value>",
            parse_mode=None,
        )
        return
    await update.message.reply_text(
        f"{outcome.field} updated.", parse_mode=None
    )


async def draft_command(update: Update, context: CallbackContext) -> None:
    if not await ensure_user(update, context):
        return
    ctx = get_ctx(context)
    user_id, _ = _ids(update)
    draft = await ctx.flow.current_draft(user_id)
    if draft is None:
        await update.message.reply_text(
            "No draft in progress; start one with /setup.", parse_mode=None
        )
        return
    await update.message.reply_text(describe_settings(draft), parse_mode=None)


async def confirm_command(update: Update, context: CallbackContext) -> None:
    if not await ensure_user(update, context):
        return
    ctx = get_ctx(context)
    user_id, _ = _ids(update)
    try:
        session = await ctx.flow.confirm(user_id)
    except NotFoundError as exc:
        await update.message.reply_text(str(exc), parse_mode=None)
        return
    except ValidationError as exc:
        await update.message.reply_text(exc.message, parse_mode=None)
        return
    await update.message.reply_text(
        f"✅ Saved. Watching {session.settings.token_address}.", parse_mode=None
    )


async def delete_command(update: Update, context: CallbackContext) -> None:
    if not await ensure_user(update, context):
        return
    if not context.args:
        await update.message.reply_text(
            "Usage: /delete <token address>", parse_mode=None
        )
        return
    ctx = get_ctx(context)
    user_id, _ = _ids(update)
    address = context.args[0].strip()
    if await ctx.flow.delete(user_id, address):
        await update.message.reply_text(f"Stopped watching {address}.", parse_mode=None)
    else:
        await update.message.reply_text("Token not found.", parse_mode=None)


async def list_command(update: Update, context: CallbackContext) -> None:
    if not await ensure_user(update, context):
        return
    ctx = get_ctx(context)
    user_id, _ = _ids(update)
    records = await ctx.store.list_for_user(user_id)
    if not records:
        await update.message.reply_text("You are not watching any token.", parse_mode=None)
        return
    lines = []
    for record in records:
        status = (
            "active"
            if ctx.watchers.is_active(record.user_id, record.token_address)
            else "stopped"
        )
        lines.append(
            f"{record.emoji} {record.token_address} "
            f"(min ${record.min_buy_amount:g}, {status})"
        )
    await update.message.reply_text("\n".join(lines), parse_mode=None)


async def media_handler(update: Update, context: CallbackContext) -> None:
    if not await ensure_user(update, context):
        return
    ctx = get_ctx(context)
    user_id, _ = _ids(update)
    message = update.message
    if message.photo:
        media_type, file_id = MediaType.PHOTO, message.photo[-1].file_id
    elif message.video:
        media_type, file_id = MediaType.VIDEO, message.video.file_id
    else:
        return
    try:
        await ctx.flow.attach_media(user_id, media_type, file_id)
    except NotFoundError as exc:
        await message.reply_text(str(exc), parse_mode=None)
        return
    await message.reply_text(
        f"{media_type.value.capitalize()} attached to the draft.", parse_mode=None
    )

from __future__ import annotations

import logging

from aiogram import Router
from aiogram.types import CallbackQuery, Message

from tutorbot.bot.dispatch import DispatchRouter
from tutorbot.bot.events import EventKind, InboundEvent

log = logging.getLogger(__name__)

router = Router()


def event_from_message(message: Message, update_id: int | None = None) -> InboundEvent | None:
    """Translate a Telegram message into an InboundEvent. None for kinds we ignore (stickers, voice...)."""
    user = message.from_user
    if user is None:
        return None
    base = dict(
        tg_id=user.id,
        chat_id=message.chat.id,
        first_name=user.first_name,
        username=user.username,
        update_id=update_id,
    )
    if message.photo:
        # sizes are ordered, the last one is the largest
        return InboundEvent(kind=EventKind.PHOTO, file_id=message.photo[-1].file_id, **base)
    if message.document:
        return InboundEvent(kind=EventKind.DOCUMENT, file_id=message.document.file_id, **base)
    if message.contact:
        return InboundEvent(
            kind=EventKind.CONTACT,
            contact_phone=message.contact.phone_number,
            contact_user_id=message.contact.user_id,
            **base,
        )
    if message.text is not None:
        return InboundEvent.from_text(message.text, **base)
    return None


def event_from_callback(callback: CallbackQuery, update_id: int | None = None) -> InboundEvent:
    user = callback.from_user
    chat_id = callback.message.chat.id if callback.message else user.id
    return InboundEvent(
        kind=EventKind.CALLBACK,
        tg_id=user.id,
        chat_id=chat_id,
        first_name=user.first_name,
        username=user.username,
        callback_data=callback.data,
        update_id=update_id,
    )


@router.message()
async def on_message(message: Message, dispatch: DispatchRouter, update_id: int | None = None) -> None:
    event = event_from_message(message, update_id)
    if event is None:
        log.debug("message_ignored chat_id=%s", message.chat.id)
        return
    await dispatch.handle(event)


@router.callback_query()
async def on_callback(callback: CallbackQuery, dispatch: DispatchRouter, update_id: int | None = None) -> None:
    # stop the button spinner first, the reply comes as a regular message
    try:
        await callback.answer()
    except Exception:
        log.warning("callback_answer_failed tg_id=%s", callback.from_user.id, exc_info=True)
    await dispatch.handle(event_from_callback(callback, update_id))

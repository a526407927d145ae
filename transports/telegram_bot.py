import asyncio
import logging
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from telegram import Bot, Message, Update
from telegram.constants import ChatType
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    BusinessMessagesDeletedHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from jagwax.errors import TransportError
from jagwax.models import MediaPayload, Reply
from jagwax.transport import Conversation, IncomingMessage

log = logging.getLogger(__name__)

RECENT_MESSAGE_LIMIT = 2000

_GROUP_TYPES = {ChatType.GROUP, ChatType.SUPERGROUP}


class TelegramConversation(Conversation):
    def __init__(self, chat, bot: Bot, *, business_connection_id: Optional[str] = None):
        super().__init__(
            str(chat.id),
            name=chat.title or chat.full_name or str(chat.id),
            is_group=chat.type in _GROUP_TYPES,
        )
        self._chat_id = chat.id
        self._bot = bot
        self._business_connection_id = business_connection_id

    async def send_message(self, content: Reply) -> None:
        extra = {}
        if self._business_connection_id:
            extra["business_connection_id"] = self._business_connection_id
        try:
            if isinstance(content, MediaPayload):
                if content.mime_type.startswith("image/"):
                    await self._bot.send_photo(chat_id=self._chat_id, photo=content.data, **extra)
                elif content.mime_type.startswith("video/"):
                    await self._bot.send_video(
                        chat_id=self._chat_id, video=content.data, filename=content.filename, **extra
                    )
                else:
                    await self._bot.send_document(
                        chat_id=self._chat_id, document=content.data, filename=content.filename, **extra
                    )
            else:
                await self._bot.send_message(chat_id=self._chat_id, text=content, **extra)
        except TelegramError as exc:
            raise TransportError(f"send to {self._chat_id} failed: {exc}") from exc

    async def participant_count(self) -> int:
        try:
            return await self._bot.get_chat_member_count(self._chat_id)
        except TelegramError as exc:
            raise TransportError(f"member count for {self._chat_id} failed: {exc}") from exc


class TelegramMessage(IncomingMessage):
    def __init__(self, message: Message, bot: Bot):
        user = message.from_user
        chat = message.chat
        super().__init__(
            sender=str(user.id) if user else str(chat.id),
            conversation_id=str(chat.id),
            body=message.text or message.caption or "",
            author=str(user.id) if user else None,
            is_view_once=bool(message.has_protected_content),
            has_media=message.effective_attachment is not None,
        )
        self.message = message
        self._bot = bot

    async def download_media(self) -> Optional[MediaPayload]:
        attachment = self.message.effective_attachment
        if attachment is None:
            return None
        is_photo = isinstance(attachment, (list, tuple))
        if is_photo:
            if not attachment:
                return None
            attachment = attachment[-1]
        if not hasattr(attachment, "get_file"):
            return None
        try:
            file = await attachment.get_file()
            data = await file.download_as_bytearray()
        except TelegramError as exc:
            raise TransportError(f"media download failed: {exc}") from exc
        mime_type = getattr(attachment, "mime_type", None) or ("image/jpeg" if is_photo else "application/octet-stream")
        return MediaPayload(
            mime_type=mime_type,
            data=bytes(data),
            filename=getattr(attachment, "file_name", None),
        )

    async def get_chat(self) -> Conversation:
        return TelegramConversation(
            self.message.chat,
            self._bot,
            business_connection_id=self.message.business_connection_id,
        )

    async def reply(self, content: Reply) -> None:
        try:
            if isinstance(content, MediaPayload):
                if content.mime_type.startswith("image/"):
                    await self.message.reply_photo(photo=content.data)
                elif content.mime_type.startswith("video/"):
                    await self.message.reply_video(video=content.data, filename=content.filename)
                else:
                    await self.message.reply_document(document=content.data, filename=content.filename)
            else:
                await self.message.reply_text(content)
        except TelegramError as exc:
            raise TransportError(f"reply in {self.conversation_id} failed: {exc}") from exc


class TelegramTransport:
    """
    Bridges python-telegram-bot updates to the command dispatcher.

    Telegram reports business-chat deletions by id only, so recently seen
    messages are kept in a bounded cache to recover the original text.
    """

    def __init__(
        self,
        dispatcher,
        token: str,
        *,
        on_ready: Optional[Callable[[], None]] = None,
        cache_limit: int = RECENT_MESSAGE_LIMIT,
    ):
        self.dispatcher = dispatcher
        self.application = Application.builder().token(token).build()
        self._on_ready = on_ready
        self._cache_limit = cache_limit
        self._recent: "OrderedDict[Tuple[int, int], TelegramMessage]" = OrderedDict()
        self._register_handlers()
        self._stop_event = asyncio.Event()

    def _register_handlers(self):
        self.application.add_handler(
            MessageHandler(filters.StatusUpdate.NEW_CHAT_MEMBERS, self.handle_new_members)
        )
        self.application.add_handler(
            MessageHandler(
                (filters.UpdateType.MESSAGE | filters.UpdateType.BUSINESS_MESSAGE)
                & ~filters.StatusUpdate.ALL,
                self.handle_message,
            )
        )
        self.application.add_handler(BusinessMessagesDeletedHandler(self.handle_deleted))

    def _remember(self, wrapped: TelegramMessage) -> None:
        key = (wrapped.message.chat.id, wrapped.message.message_id)
        self._recent[key] = wrapped
        self._recent.move_to_end(key)
        while len(self._recent) > self._cache_limit:
            self._recent.popitem(last=False)

    def lookup(self, chat_id: int, message_id: int) -> Optional[TelegramMessage]:
        return self._recent.get((chat_id, message_id))

    async def handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        message = update.effective_message
        user = update.effective_user
        if not message or (user and user.is_bot):
            return
        wrapped = TelegramMessage(message, context.bot)
        self._remember(wrapped)
        try:
            await self.dispatcher.handle_message(wrapped)
        except Exception as exc:
            log.exception("Dispatcher error: %s", exc)

    async def handle_deleted(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        deleted = update.deleted_business_messages
        if not deleted:
            return
        for message_id in deleted.message_ids:
            before = self._recent.pop((deleted.chat.id, message_id), None)
            try:
                await self.dispatcher.handle_revoke(before)
            except Exception as exc:
                log.exception("Revoke handling error: %s", exc)

    async def handle_new_members(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        message = update.effective_message
        if not message or not message.new_chat_members:
            return
        members = [
            member.username or member.full_name
            for member in message.new_chat_members
            if not member.is_bot
        ]
        if not members:
            return
        conversation = TelegramConversation(message.chat, context.bot)
        try:
            await self.dispatcher.handle_members_joined(conversation, members)
        except Exception as exc:
            log.exception("Welcome handling error: %s", exc)

    async def start(self):
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling(allowed_updates=Update.ALL_TYPES)
        log.info("Telegram bot ready as %s", self.application.bot.username)
        if self._on_ready:
            self._on_ready()
        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()

    async def stop(self):
        self._stop_event.set()

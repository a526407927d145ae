import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from .archive import ArchiveStore
from .content import ContentConfig
from .errors import AuthorizationError, StorageError, TransportError, ValidationError
from .groups import WelcomeRegistry
from .models import Reply
from .pairing import PAIRING_PREFIX, PairingRegistry
from .transport import Conversation, IncomingMessage

log = logging.getLogger(__name__)

DEFAULT_MAX_MEDIA_BYTES = 16 * 1024 * 1024

Handler = Callable[[IncomingMessage], Awaitable[List[Reply]]]


class CommandDispatcher:
    """Routes transport events to the fixed command table and sends replies back."""

    def __init__(
        self,
        archive: ArchiveStore,
        registry: PairingRegistry,
        *,
        content: Optional[ContentConfig] = None,
        welcome: Optional[WelcomeRegistry] = None,
        owner_ids: Iterable[str] = (),
        max_media_bytes: int = DEFAULT_MAX_MEDIA_BYTES,
    ) -> None:
        self.archive = archive
        self.registry = registry
        self.content = content or ContentConfig()
        self.welcome = welcome
        self.owner_ids = {str(item) for item in owner_ids if str(item).strip()}
        self.max_media_bytes = max_media_bytes
        self._commands: Dict[str, Handler] = {
            ".menu": self._menu,
            ".help": self._menu,
            ".motivate": self._motivate,
            ".vv": self._resend_view_once,
            ".recover": self._recover_deleted,
            ".pair": self._pair,
            ".mycode": self._my_code,
            ".groupinfo": self._group_info,
            ".welcome": self._welcome,
            ".status": self._status,
            ".addcontact": self._add_contact,
        }

    @property
    def commands(self) -> Sequence[str]:
        return tuple(self._commands)

    def is_owner(self, msg: IncomingMessage) -> bool:
        return msg.from_me or msg.sender in self.owner_ids

    # ----- events -----
    async def handle_message(self, msg: IncomingMessage) -> None:
        if msg.is_view_once and msg.has_media:
            await self._capture_view_once(msg)

        tokens = msg.body.split()
        command = tokens[0].lower() if tokens else ""
        handler = self._commands.get(command)
        if handler:
            log.info("command %s from %s", command, msg.sender)
            replies = await self._run_handler(handler, msg)
            await self._send_all(msg, replies)

        # independent of the command table: both may answer the same message
        if msg.body.startswith(PAIRING_PREFIX):
            if self.registry.verify(msg.sender, msg.body):
                log.info("pairing confirmed for %s", msg.sender)
                await self._send_all(msg, [self.content.reply("pairing_ok")])
            else:
                await self._send_all(msg, [self.content.reply("pairing_invalid")])

    async def handle_revoke(self, before: Optional[IncomingMessage]) -> None:
        if before is None:
            log.debug("revoke event without original message; nothing to archive")
            return
        if not before.body:
            log.debug("revoked message in %s carried no text", before.conversation_id)
            return
        try:
            await self.archive.record_deleted_message(before.conversation_id, before.body, before.author)
        except StorageError as exc:
            log.warning("failed to archive deleted message in %s: %s", before.conversation_id, exc)
        notice = self.content.reply("deleted_notice", author=before.author, body=before.body)
        try:
            chat = await before.get_chat()
            await chat.send_message(notice)
        except TransportError as exc:
            log.warning("failed to announce deleted message in %s: %s", before.conversation_id, exc)

    async def handle_members_joined(self, conversation: Conversation, members: Sequence[str]) -> None:
        if not conversation.is_group or self.welcome is None:
            return
        if not self.welcome.is_enabled(conversation.id):
            return
        for member in members:
            try:
                await conversation.send_message(self.content.reply("welcome_greeting", user=member))
            except TransportError as exc:
                log.warning("failed to greet %s in %s: %s", member, conversation.id, exc)

    async def _capture_view_once(self, msg: IncomingMessage) -> None:
        try:
            media = await msg.download_media()
        except TransportError as exc:
            log.warning("view-once download failed for %s: %s", msg.conversation_id, exc)
            return
        if media is None:
            return
        if media.size > self.max_media_bytes:
            log.warning(
                "view-once media for %s skipped: %d bytes exceeds %d",
                msg.conversation_id,
                media.size,
                self.max_media_bytes,
            )
            return
        try:
            await self.archive.record_view_once_media(msg.conversation_id, media)
        except StorageError as exc:
            log.warning("failed to archive view-once media for %s: %s", msg.conversation_id, exc)

    async def _run_handler(self, handler: Handler, msg: IncomingMessage) -> List[Reply]:
        try:
            return await handler(msg)
        except (AuthorizationError, ValidationError) as exc:
            return [str(exc)]
        except StorageError as exc:
            log.warning("storage failure while handling %r: %s", msg, exc)
        except TransportError as exc:
            log.warning("transport failure while handling %r: %s", msg, exc)
            return []
        except Exception as exc:
            log.exception("command handler error: %s", exc)
        return [self.content.reply("failure")]

    async def _send_all(self, msg: IncomingMessage, replies: Sequence[Reply]) -> None:
        for content in replies:
            try:
                await msg.reply(content)
            except TransportError as exc:
                log.warning("dropping reply to %s: %s", msg.conversation_id, exc)

    # ----- commands -----
    async def _menu(self, msg: IncomingMessage) -> List[Reply]:
        return [self.content.menu()]

    async def _motivate(self, msg: IncomingMessage) -> List[Reply]:
        return [self.content.random_quote()]

    async def _resend_view_once(self, msg: IncomingMessage) -> List[Reply]:
        media = await self.archive.list_view_once_media(msg.conversation_id)
        if not media:
            return [self.content.reply("no_media")]
        return [item.as_payload() for item in media]

    async def _recover_deleted(self, msg: IncomingMessage) -> List[Reply]:
        deleted = await self.archive.list_deleted_messages(msg.conversation_id)
        if not deleted:
            return [self.content.reply("no_deleted")]
        return [self.content.reply("recovered", body=item.body) for item in deleted]

    async def _pair(self, msg: IncomingMessage) -> List[Reply]:
        existing = self.registry.get_code(msg.sender)
        if existing:
            return [self.content.reply("pair_existing", code=existing)]
        code = await self.registry.issue_or_get_code(msg.sender)
        return [self.content.reply("pair_new", code=code)]

    async def _my_code(self, msg: IncomingMessage) -> List[Reply]:
        code = self.registry.get_code(msg.sender)
        if code:
            return [self.content.reply("mycode", code=code)]
        return [self.content.reply("mycode_missing")]

    async def _group_info(self, msg: IncomingMessage) -> List[Reply]:
        chat = await msg.get_chat()
        if not chat.is_group:
            return [self.content.reply("groups_only")]
        count = await chat.participant_count()
        return [self.content.reply("group_info", name=chat.name, count=count)]

    async def _welcome(self, msg: IncomingMessage) -> List[Reply]:
        chat = await msg.get_chat()
        if not chat.is_group:
            return [self.content.reply("groups_only")]
        if self.welcome is not None:
            await self.welcome.enable(chat.id)
        return [self.content.reply("welcome_enabled")]

    async def _status(self, msg: IncomingMessage) -> List[Reply]:
        return [self.content.reply("status")]

    async def _add_contact(self, msg: IncomingMessage) -> List[Reply]:
        if not self.is_owner(msg):
            raise AuthorizationError(self.content.reply("owner_only"))
        tokens = msg.body.split()
        if len(tokens) < 2:
            raise ValidationError(self.content.reply("addcontact_usage"))
        identity = tokens[1]
        code = await self.registry.issue_or_get_code(identity)
        return [self.content.reply("contact_added", identity=identity, code=code)]

import io
import logging
from typing import Callable, Optional

import discord
from discord.ext import commands

from jagwax.errors import TransportError
from jagwax.models import MediaPayload, Reply
from jagwax.transport import Conversation, IncomingMessage

log = logging.getLogger(__name__)


def _to_send_kwargs(content: Reply) -> dict:
    if isinstance(content, MediaPayload):
        return {"file": discord.File(io.BytesIO(content.data), filename=content.filename or "viewonce")}
    return {"content": content}


class DiscordConversation(Conversation):
    def __init__(self, channel):
        guild = getattr(channel, "guild", None)
        super().__init__(
            str(channel.id),
            name=getattr(channel, "name", None) or str(channel.id),
            is_group=guild is not None or isinstance(channel, discord.GroupChannel),
        )
        self.channel = channel

    async def send_message(self, content: Reply) -> None:
        try:
            await self.channel.send(**_to_send_kwargs(content))
        except discord.HTTPException as exc:
            raise TransportError(f"send to {self.id} failed: {exc}") from exc

    async def participant_count(self) -> int:
        guild = getattr(self.channel, "guild", None)
        if guild is not None:
            return guild.member_count or len(guild.members)
        recipients = getattr(self.channel, "recipients", None) or []
        # recipients excludes the bot itself
        return len(recipients) + 1


class DiscordMessage(IncomingMessage):
    def __init__(self, message: discord.Message):
        super().__init__(
            sender=str(message.author.id),
            conversation_id=str(message.channel.id),
            body=message.content or "",
            author=message.author.display_name,
            has_media=bool(message.attachments),
        )
        self.message = message

    async def download_media(self) -> Optional[MediaPayload]:
        if not self.message.attachments:
            return None
        attachment = self.message.attachments[0]
        try:
            data = await attachment.read()
        except discord.HTTPException as exc:
            raise TransportError(f"attachment download failed: {exc}") from exc
        return MediaPayload(
            mime_type=attachment.content_type or "application/octet-stream",
            data=data,
            filename=attachment.filename,
        )

    async def get_chat(self) -> Conversation:
        return DiscordConversation(self.message.channel)

    async def reply(self, content: Reply) -> None:
        is_dm = self.message.guild is None
        try:
            await self.message.channel.send(
                reference=self.message if not is_dm else None,
                **_to_send_kwargs(content),
            )
        except discord.HTTPException as exc:
            raise TransportError(f"reply in {self.conversation_id} failed: {exc}") from exc


class DiscordTransport(commands.Bot):
    def __init__(
        self,
        dispatcher,
        *,
        guild_id: Optional[int] = None,
        on_ready: Optional[Callable[[], None]] = None,
    ):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)
        self.dispatcher = dispatcher
        self.guild_id = guild_id
        self._ready_callback = on_ready

    def _in_scope(self, guild: Optional[discord.Guild]) -> bool:
        return self.guild_id is None or guild is None or guild.id == self.guild_id

    async def on_ready(self):
        log.info("Discord bot ready as %s", self.user)
        if self._ready_callback:
            self._ready_callback()

    async def on_message(self, message: discord.Message):
        if not message:
            return
        if self.user and message.author.id == self.user.id:
            return
        if message.author.bot or not self._in_scope(message.guild):
            return
        try:
            await self.dispatcher.handle_message(DiscordMessage(message))
        except Exception as exc:
            log.exception("Dispatcher error: %s", exc)

    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent):
        cached = payload.cached_message
        if cached is not None:
            if (self.user and cached.author.id == self.user.id) or not self._in_scope(cached.guild):
                return
        before = DiscordMessage(cached) if cached is not None else None
        try:
            await self.dispatcher.handle_revoke(before)
        except Exception as exc:
            log.exception("Revoke handling error: %s", exc)

    async def on_member_join(self, member: discord.Member):
        if member.bot or not self._in_scope(member.guild):
            return
        channel = member.guild.system_channel
        if channel is None:
            return
        try:
            await self.dispatcher.handle_members_joined(
                DiscordConversation(channel), [member.display_name]
            )
        except Exception as exc:
            log.exception("Welcome handling error: %s", exc)


async def run_discord_bot(
    dispatcher,
    token: str,
    guild_id: Optional[int] = None,
    on_ready: Optional[Callable[[], None]] = None,
):
    bot = DiscordTransport(dispatcher, guild_id=guild_id, on_ready=on_ready)
    try:
        await bot.start(token)
    finally:
        await bot.close()

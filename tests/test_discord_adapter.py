"""Tests for DiscordTransport event translation."""

from unittest.mock import AsyncMock, MagicMock, PropertyMock, patch

import discord
import pytest

from transports.discord_bot import DiscordConversation, DiscordMessage, DiscordTransport

BOT_ID = 1000


def fake_message(*, author_id=42, channel_id=77, content="hello", guild_id=None, attachments=None):
    message = MagicMock()
    message.author.id = author_id
    message.author.bot = False
    message.author.display_name = "Ada"
    message.channel.id = channel_id
    message.content = content
    message.attachments = attachments or []
    if guild_id is None:
        message.guild = None
    else:
        message.guild.id = guild_id
    return message


@pytest.fixture
def dispatcher():
    mock = MagicMock()
    mock.handle_message = AsyncMock()
    mock.handle_revoke = AsyncMock()
    mock.handle_members_joined = AsyncMock()
    return mock


@pytest.fixture
def bot_user():
    user = MagicMock()
    user.id = BOT_ID
    return user


@pytest.fixture
def transport(dispatcher, bot_user):
    bot = DiscordTransport(dispatcher)
    with patch.object(DiscordTransport, "user", new_callable=PropertyMock, return_value=bot_user):
        yield bot


@pytest.fixture
def scoped_transport(dispatcher, bot_user):
    bot = DiscordTransport(dispatcher, guild_id=1)
    with patch.object(DiscordTransport, "user", new_callable=PropertyMock, return_value=bot_user):
        yield bot


def test_message_wrapping():
    wrapped = DiscordMessage(fake_message(attachments=[MagicMock()]))
    assert wrapped.sender == "42"
    assert wrapped.conversation_id == "77"
    assert wrapped.body == "hello"
    assert wrapped.author == "Ada"
    assert wrapped.has_media is True
    assert wrapped.is_view_once is False


@pytest.mark.asyncio
async def test_on_message_forwards_to_dispatcher(transport, dispatcher):
    await transport.on_message(fake_message(content=".pair"))
    dispatcher.handle_message.assert_awaited_once()
    forwarded = dispatcher.handle_message.await_args.args[0]
    assert isinstance(forwarded, DiscordMessage)
    assert forwarded.body == ".pair"
    assert forwarded.is_view_once is False


@pytest.mark.asyncio
async def test_own_and_bot_messages_are_ignored(transport, dispatcher):
    await transport.on_message(fake_message(author_id=BOT_ID))
    other_bot = fake_message()
    other_bot.author.bot = True
    await transport.on_message(other_bot)
    dispatcher.handle_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_out_of_scope_guild_is_ignored(scoped_transport, dispatcher):
    await scoped_transport.on_message(fake_message(guild_id=2))
    dispatcher.handle_message.assert_not_awaited()
    await scoped_transport.on_message(fake_message(guild_id=1))
    dispatcher.handle_message.assert_awaited_once()


@pytest.mark.asyncio
async def test_delete_with_cached_message_forwards_original(transport, dispatcher):
    payload = MagicMock()
    payload.cached_message = fake_message(content="hello", channel_id=77)
    await transport.on_raw_message_delete(payload)
    before = dispatcher.handle_revoke.await_args.args[0]
    assert isinstance(before, DiscordMessage)
    assert before.body == "hello"
    assert before.conversation_id == "77"


@pytest.mark.asyncio
async def test_delete_without_cache_forwards_none(transport, dispatcher):
    payload = MagicMock()
    payload.cached_message = None
    await transport.on_raw_message_delete(payload)
    dispatcher.handle_revoke.assert_awaited_once_with(None)


@pytest.mark.asyncio
async def test_own_and_out_of_scope_deletions_are_dropped(scoped_transport, dispatcher):
    own = MagicMock()
    own.cached_message = fake_message(author_id=BOT_ID, guild_id=1)
    await scoped_transport.on_raw_message_delete(own)
    foreign = MagicMock()
    foreign.cached_message = fake_message(guild_id=2)
    await scoped_transport.on_raw_message_delete(foreign)
    dispatcher.handle_revoke.assert_not_awaited()


@pytest.mark.asyncio
async def test_member_join_greets_in_system_channel(transport, dispatcher):
    member = MagicMock()
    member.bot = False
    member.display_name = "Ada"
    member.guild.system_channel.id = 5
    await transport.on_member_join(member)
    conversation, members = dispatcher.handle_members_joined.await_args.args
    assert isinstance(conversation, DiscordConversation)
    assert conversation.id == "5"
    assert conversation.is_group is True
    assert members == ["Ada"]


@pytest.mark.asyncio
async def test_member_join_without_system_channel(transport, dispatcher):
    member = MagicMock()
    member.bot = False
    member.guild.system_channel = None
    await transport.on_member_join(member)
    dispatcher.handle_members_joined.assert_not_awaited()


@pytest.mark.asyncio
async def test_guild_channel_conversation():
    channel = MagicMock()
    channel.id = 10
    channel.name = "general"
    channel.guild.member_count = 40
    conversation = DiscordConversation(channel)
    assert conversation.is_group is True
    assert conversation.name == "general"
    assert await conversation.participant_count() == 40


@pytest.mark.asyncio
async def test_group_dm_conversation():
    channel = MagicMock(spec=discord.GroupChannel)
    channel.id = 11
    channel.name = "friends"
    channel.guild = None
    channel.recipients = [MagicMock(), MagicMock()]
    conversation = DiscordConversation(channel)
    assert conversation.is_group is True
    assert await conversation.participant_count() == 3


def test_direct_message_is_not_a_group():
    channel = MagicMock(spec=discord.DMChannel)
    channel.id = 12
    channel.guild = None
    assert DiscordConversation(channel).is_group is False

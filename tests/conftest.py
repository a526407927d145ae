"""Shared fakes of the messaging transport surface."""

from typing import List, Optional

import pytest

from jagwax.archive import ArchiveStore
from jagwax.dispatcher import CommandDispatcher
from jagwax.errors import TransportError
from jagwax.groups import WelcomeRegistry
from jagwax.models import MediaPayload, Reply
from jagwax.pairing import PairingRegistry
from jagwax.transport import Conversation, IncomingMessage


class FakeConversation(Conversation):
    def __init__(self, conversation_id: str, *, name: str = "", is_group: bool = False, members: int = 0):
        super().__init__(conversation_id, name=name, is_group=is_group)
        self.sent: List[Reply] = []
        self.members = members
        self.count_calls = 0

    async def send_message(self, content: Reply) -> None:
        self.sent.append(content)

    async def participant_count(self) -> int:
        self.count_calls += 1
        return self.members


class FakeMessage(IncomingMessage):
    def __init__(
        self,
        body: str,
        *,
        sender: str = "2348011112222",
        conversation: Optional[FakeConversation] = None,
        media: Optional[MediaPayload] = None,
        is_view_once: bool = False,
        from_me: bool = False,
        author: Optional[str] = None,
        fail_replies: bool = False,
    ):
        self.conversation = conversation or FakeConversation(sender)
        super().__init__(
            sender=sender,
            conversation_id=self.conversation.id,
            body=body,
            author=author,
            is_view_once=is_view_once,
            has_media=media is not None,
            from_me=from_me,
        )
        self.media = media
        self.replies: List[Reply] = []
        self.fail_replies = fail_replies

    async def download_media(self) -> Optional[MediaPayload]:
        return self.media

    async def get_chat(self) -> Conversation:
        return self.conversation

    async def reply(self, content: Reply) -> None:
        if self.fail_replies:
            raise TransportError("network down")
        self.replies.append(content)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "jagwax.db")


@pytest.fixture
def archive(db_path):
    store = ArchiveStore(db_path)
    yield store
    try:
        store.close()
    except Exception:
        pass


@pytest.fixture
def registry(db_path):
    reg = PairingRegistry(db_path)
    yield reg
    reg.close()


@pytest.fixture
def welcome(db_path):
    reg = WelcomeRegistry(db_path)
    yield reg
    reg.close()


@pytest.fixture
def dispatcher(archive, registry, welcome):
    return CommandDispatcher(archive, registry, welcome=welcome, owner_ids=["999"])

"""
Messaging transport surface consumed by the dispatcher.

Adapters in ``transports/`` wrap platform objects into these classes so the
core never touches a platform SDK directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .models import MediaPayload, Reply


class Conversation(ABC):
    """A direct or multi-party chat context."""

    def __init__(self, conversation_id: str, *, name: str = "", is_group: bool = False) -> None:
        self.id = conversation_id
        self.name = name
        self.is_group = is_group

    @abstractmethod
    async def send_message(self, content: Reply) -> None:
        """Send text or media into the conversation. Raise TransportError on failure."""
        ...

    @abstractmethod
    async def participant_count(self) -> int:
        """Number of participants. Only meaningful for group conversations."""
        ...


class IncomingMessage(ABC):
    """One inbound message event as seen by the dispatcher."""

    def __init__(
        self,
        *,
        sender: str,
        conversation_id: str,
        body: str = "",
        author: Optional[str] = None,
        is_view_once: bool = False,
        has_media: bool = False,
        from_me: bool = False,
    ) -> None:
        self.sender = sender
        self.conversation_id = conversation_id
        self.body = body or ""
        self.author = author or sender
        self.is_view_once = is_view_once
        self.has_media = has_media
        self.from_me = from_me

    @abstractmethod
    async def download_media(self) -> Optional[MediaPayload]:
        """Fetch the attached media, or None when nothing is retrievable."""
        ...

    @abstractmethod
    async def get_chat(self) -> Conversation:
        ...

    @abstractmethod
    async def reply(self, content: Reply) -> None:
        """Send into the originating conversation. Raise TransportError on failure."""
        ...

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} sender={self.sender!r} "
            f"conversation={self.conversation_id!r} body={self.body[:40]!r}>"
        )

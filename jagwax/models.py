from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

DEFAULT_MEDIA_FILENAME = "viewonce"


@dataclass(frozen=True)
class ArchivedMessage:
    conversation_id: str
    body: str
    author: str
    captured_at: float


@dataclass(frozen=True)
class MediaPayload:
    """Attachment bytes as handed over by (or to) the transport."""

    mime_type: str
    data: bytes
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ArchivedMedia:
    conversation_id: str
    mime_type: str
    payload: bytes
    file_name: Optional[str]
    captured_at: float

    def as_payload(self) -> MediaPayload:
        return MediaPayload(
            mime_type=self.mime_type,
            data=self.payload,
            filename=self.file_name or DEFAULT_MEDIA_FILENAME,
        )


@dataclass(frozen=True)
class PairingRecord:
    identity: str
    code: str
    issued_at: float


Reply = Union[str, MediaPayload]

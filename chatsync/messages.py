"""Kind-polymorphic message view shared by all three room kinds."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

PLACEHOLDERS = {
    "image": "📷 Image",
    "voice": "🎤 Voice Message",
    "poll": "📊 Poll",
}

# Kinds a client may send; poll messages are announced by the poll service only.
CLIENT_KINDS = ("text", "image", "voice")

MEDIA_ROOT = "chat"


def media_prefix(kind: str, owner_id: int) -> str:
    """Object-path prefix for ``owner_id``'s uploads of ``kind``."""
    return f"{MEDIA_ROOT}/{kind}/{owner_id}/"


def owns_media_ref(media_ref: str, kind: str, owner_id: int) -> bool:
    prefix = media_prefix(kind, owner_id)
    if not media_ref.startswith(prefix):
        return False
    name = media_ref[len(prefix):]
    return bool(name) and "/" not in name and not name.startswith(".")


class AuthorInfo(BaseModel):
    full_name: str
    role: str


class ReplyQuote(BaseModel):
    """Denormalized parent of a reply. Read-side only; never written back to a row."""

    id: int
    author_id: int
    content: str
    kind: str
    author: AuthorInfo | None = None


class ChatMessage(BaseModel):
    id: int
    room_key: str
    author_id: int
    content: str
    kind: str = "text"
    media_ref: str | None = None
    reply_to: int | None = None
    created_at: datetime
    is_read: bool | None = None  # direct rooms only
    is_edited: bool = False
    reply_message: ReplyQuote | None = None
    author: AuthorInfo | None = None

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.created_at, self.id)

    def quote(self) -> ReplyQuote:
        # One level only: the quote never carries its own parent.
        return ReplyQuote(
            id=self.id,
            author_id=self.author_id,
            content=self.content,
            kind=self.kind,
            author=self.author,
        )

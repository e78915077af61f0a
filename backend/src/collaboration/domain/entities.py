from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from auth.domain.entities import Identity
from shared.config import settings


def document_key_for(note_id: UUID, prefix: str | None = None) -> str:
    return f"{settings.COLLAB_DOCUMENT_PREFIX if prefix is None else prefix}{note_id}"


def parse_document_key(document_key: str, prefix: str | None = None) -> UUID | None:
    """Inverse of ``document_key_for``; None for keys that do not name a note."""
    prefix = settings.COLLAB_DOCUMENT_PREFIX if prefix is None else prefix
    if not document_key.startswith(prefix):
        return None
    try:
        note_id = UUID(document_key[len(prefix):])
    except ValueError:
        return None
    # Only the canonical spelling round-trips.
    return note_id if document_key_for(note_id, prefix) == document_key else None


@dataclass(frozen=True)
class ConnectionContext:
    connection_id: str
    identity: Identity
    document_key: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class StoredDocument:
    note_id: UUID
    ydoc: bytes | None
    content: str | None

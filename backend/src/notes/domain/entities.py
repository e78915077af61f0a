from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Literal
from uuid import UUID


class MemberRole(StrEnum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


EDIT_ROLES = frozenset({MemberRole.ADMIN, MemberRole.EDITOR})


@dataclass
class Note:
    title: str
    created_by_id: str
    content: str | None = field(default=None)
    ydoc: bytes | None = field(default=None)
    workspace_id: UUID | None = field(default=None)
    id: UUID | None = field(default=None)
    created_at: datetime | None = field(default=None)
    updated_at: datetime | None = field(default=None)
    deleted_at: datetime | None = field(default=None)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class NoteVersion:
    note_id: UUID
    version: int
    title: str
    created_by_id: str
    content: str | None = field(default=None)
    ydoc: bytes | None = field(default=None)
    id: UUID | None = field(default=None)
    created_at: datetime | None = field(default=None)


@dataclass
class RestoreResult:
    note: Note
    restored_from_version: int
    undo_version_id: UUID


SnapshotReason = Literal["created", "unchanged", "error"]


@dataclass
class SnapshotResult:
    """Outcome of a snapshot request. Never raised, always returned."""

    created: bool
    reason: SnapshotReason
    version_id: UUID | None = field(default=None)
    version: int | None = field(default=None)

from typing import Protocol
from uuid import UUID

from notes.domain.entities import MemberRole, Note, NoteVersion


class NoteRepository(Protocol):
    async def get_note(self, note_id: UUID) -> Note | None: ...

    async def create_note(self, note: Note) -> Note: ...

    async def get_member_role(self, workspace_id: UUID, user_id: str) -> MemberRole | None: ...

    async def add_member(self, workspace_id: UUID, user_id: str, role: MemberRole) -> None: ...

    async def get_latest_version(self, note_id: UUID) -> NoteVersion | None: ...

    async def get_latest_version_number(self, note_id: UUID) -> int: ...

    async def add_version(self, version: NoteVersion) -> NoteVersion: ...

    async def get_version(self, version_id: UUID) -> NoteVersion | None: ...

    async def get_version_by_number(self, note_id: UUID, number: int) -> NoteVersion | None: ...

    async def list_versions(
        self, note_id: UUID, offset: int, limit: int
    ) -> tuple[list[NoteVersion], int]: ...

    async def save_restore(
        self, note: Note, undo: NoteVersion, restored: NoteVersion
    ) -> tuple[Note, NoteVersion, NoteVersion]: ...


class LiveDocuments(Protocol):
    """Access to in-memory collaborative sessions, keyed by note."""

    def live_state_for_note(self, note_id: UUID) -> bytes | None: ...

    def push_update_for_note(self, note_id: UUID, update: bytes) -> bool: ...

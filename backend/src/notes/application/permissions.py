from uuid import UUID

from notes.domain.entities import EDIT_ROLES, Note
from notes.domain.repository import NoteRepository


async def can_access_note(repo: NoteRepository, user_id: str, note: Note) -> bool:
    """Personal notes are private to their creator; workspace notes to its members."""
    if note.workspace_id is None:
        return note.created_by_id == user_id
    return await repo.get_member_role(note.workspace_id, user_id) is not None


async def can_edit_note(repo: NoteRepository, user_id: str, note: Note) -> bool:
    if note.workspace_id is None:
        return note.created_by_id == user_id
    role = await repo.get_member_role(note.workspace_id, user_id)
    return role in EDIT_ROLES


async def check_edit_permission(repo: NoteRepository, user_id: str, note_id: UUID) -> bool:
    note = await repo.get_note(note_id)
    if note is None or note.is_deleted:
        return False
    return await can_edit_note(repo, user_id, note)

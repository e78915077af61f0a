"""Note version history: creation, lookup and restoration.

Version numbers are allocated per note as ``max + 1`` while holding a per-note
lock; the ``(note_id, version)`` unique constraint catches collisions between
processes, which are retried. Restoration never touches existing versions: it
appends an undo snapshot of the live content and a copy of the restored version.
"""

import logging
from uuid import UUID

from collaboration.infrastructure.yjs_adapter import build_replacement, extract_text
from notes.application.permissions import can_access_note, can_edit_note
from notes.domain.entities import Note, NoteVersion, RestoreResult
from notes.domain.repository import LiveDocuments, NoteRepository
from shared.concurrency import KeyedLock
from shared.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3

version_locks = KeyedLock()


async def _get_live_note(repo: NoteRepository, note_id: UUID) -> Note:
    note = await repo.get_note(note_id)
    if not note or note.is_deleted:
        raise NotFoundError("Note", str(note_id))
    return note


async def _require_access(repo: NoteRepository, user_id: str, note: Note) -> None:
    if not await can_access_note(repo, user_id, note):
        logger.warning(
            "note_access_denied",
            extra={"note_id": str(note.id), "user_id": user_id},
        )
        raise AuthorizationError("You do not have permission to access this note")


async def create_version(
    repo: NoteRepository,
    note_id: UUID,
    user_id: str,
    title: str,
    content: str | None = None,
    ydoc: bytes | None = None,
) -> NoteVersion:
    note = await _get_live_note(repo, note_id)
    await _require_access(repo, user_id, note)

    for attempt in range(MAX_RETRIES):
        async with version_locks.hold(note_id):
            next_number = await repo.get_latest_version_number(note_id) + 1
            try:
                version = await repo.add_version(
                    NoteVersion(
                        note_id=note_id,
                        version=next_number,
                        title=title,
                        content=content,
                        ydoc=ydoc,
                        created_by_id=user_id,
                    )
                )
            except ConflictError:
                if attempt == MAX_RETRIES - 1:
                    raise
                logger.warning(
                    "version_conflict_retry",
                    extra={"note_id": str(note_id), "attempt": attempt + 1},
                )
                continue

        logger.info(
            "version_created",
            extra={
                "note_id": str(note_id),
                "version_id": str(version.id),
                "version": version.version,
                "user_id": user_id,
            },
        )
        return version

    raise ConflictError(f"Could not allocate a version number for note {note_id}")


async def list_versions(
    repo: NoteRepository,
    note_id: UUID,
    user_id: str,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[NoteVersion], int]:
    note = await _get_live_note(repo, note_id)
    await _require_access(repo, user_id, note)
    return await repo.list_versions(note_id, offset=(page - 1) * page_size, limit=page_size)


async def get_version_by_id(repo: NoteRepository, version_id: UUID, user_id: str) -> NoteVersion:
    version = await repo.get_version(version_id)
    if not version:
        raise NotFoundError("Version", str(version_id))
    note = await repo.get_note(version.note_id)
    if not note or note.is_deleted:
        raise NotFoundError("Version", str(version_id))
    await _require_access(repo, user_id, note)
    return version


async def get_version_by_number(
    repo: NoteRepository, note_id: UUID, number: int, user_id: str
) -> NoteVersion:
    if number < 1:
        raise ValidationError("Version numbers start at 1")
    note = await _get_live_note(repo, note_id)
    await _require_access(repo, user_id, note)
    version = await repo.get_version_by_number(note_id, number)
    if not version:
        raise NotFoundError("Version", f"{number} of note {note_id}")
    return version


async def restore_version(
    repo: NoteRepository,
    note_id: UUID,
    version_id: UUID,
    user_id: str,
    live: LiveDocuments | None = None,
) -> RestoreResult:
    """Restore ``note_id`` to the content of ``version_id``.

    Creates version N+1 holding the content as it was just before the restore and
    version N+2 holding the restored content, and swaps the note content, all in one
    transaction. When the note is open in a collaborative session the replacement
    is merged into it afterwards so connected editors see it immediately.

    Raises:
        NotFoundError: note missing or deleted, or version not part of this note.
        AuthorizationError: user may not edit the note.
    """
    note = await _get_live_note(repo, note_id)
    if not await can_edit_note(repo, user_id, note):
        logger.warning(
            "restore_denied",
            extra={"note_id": str(note_id), "user_id": user_id},
        )
        raise AuthorizationError("You do not have permission to edit this note")

    source = await repo.get_version(version_id)
    if not source or source.note_id != note_id:
        raise NotFoundError("Version", f"{version_id} for note {note_id}")

    restored_text = extract_text(source.ydoc) if source.ydoc else (source.content or "")

    for attempt in range(MAX_RETRIES):
        async with version_locks.hold(note_id):
            # Unpersisted edits in a live session are newer than the stored row.
            live_state = live.live_state_for_note(note_id) if live else None
            if live_state is not None:
                current_ydoc, current_content = live_state, extract_text(live_state)
            else:
                note = await _get_live_note(repo, note_id)
                current_ydoc, current_content = note.ydoc, note.content

            new_state, delta = build_replacement(current_ydoc, restored_text)
            next_number = await repo.get_latest_version_number(note_id) + 1

            undo = NoteVersion(
                note_id=note_id,
                version=next_number,
                title=note.title,
                content=current_content,
                ydoc=current_ydoc,
                created_by_id=user_id,
            )
            restored = NoteVersion(
                note_id=note_id,
                version=next_number + 1,
                title=source.title,
                content=source.content,
                ydoc=source.ydoc,
                created_by_id=user_id,
            )
            updated = Note(
                id=note.id,
                title=source.title,
                content=restored_text,
                ydoc=new_state,
                workspace_id=note.workspace_id,
                created_by_id=note.created_by_id,
            )
            try:
                saved_note, saved_undo, _ = await repo.save_restore(updated, undo, restored)
            except ConflictError:
                if attempt == MAX_RETRIES - 1:
                    raise
                logger.warning(
                    "version_conflict_retry",
                    extra={"note_id": str(note_id), "attempt": attempt + 1},
                )
                continue

            if live is not None:
                live.push_update_for_note(note_id, delta)
        break

    logger.info(
        "note_restored",
        extra={
            "note_id": str(note_id),
            "version_id": str(version_id),
            "user_id": user_id,
            "restored_from_version": source.version,
            "undo_version_id": str(saved_undo.id),
        },
    )
    return RestoreResult(
        note=saved_note,
        restored_from_version=source.version,
        undo_version_id=saved_undo.id,
    )

"""Automatic version snapshots.

Snapshots are taken on an interval while a note is being edited, when a note is
closed (page-close beacon or last collaborator leaving) and on explicit request.
Interval and close snapshots are skipped when title and content match the latest
version. Failures never propagate: every outcome is a ``SnapshotResult``.
"""

import logging
from uuid import UUID

from notes.application.versions import create_version
from notes.domain.entities import SnapshotResult
from notes.domain.repository import NoteRepository
from shared.exceptions import AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)


async def _snapshot(
    repo: NoteRepository, note_id: UUID, user_id: str, *, force: bool
) -> SnapshotResult:
    try:
        note = await repo.get_note(note_id)
        if not note or note.is_deleted:
            raise NotFoundError("Note", str(note_id))

        if not force:
            latest = await repo.get_latest_version(note_id)
            if latest and latest.title == note.title and latest.content == note.content:
                logger.debug(
                    "snapshot_skipped",
                    extra={"note_id": str(note_id), "latest_version": latest.version},
                )
                return SnapshotResult(created=False, reason="unchanged")

        version = await create_version(
            repo,
            note_id,
            user_id,
            title=note.title,
            content=note.content,
            ydoc=note.ydoc,
        )
    except (NotFoundError, AuthorizationError) as exc:
        logger.warning(
            "snapshot_rejected",
            extra={"note_id": str(note_id), "user_id": user_id, "error": exc.message},
        )
        return SnapshotResult(created=False, reason="error")
    except Exception:
        logger.exception(
            "snapshot_failed", extra={"note_id": str(note_id), "user_id": user_id}
        )
        return SnapshotResult(created=False, reason="error")

    return SnapshotResult(
        created=True, reason="created", version_id=version.id, version=version.version
    )


async def create_snapshot_if_changed(
    repo: NoteRepository, note_id: UUID, user_id: str
) -> SnapshotResult:
    return await _snapshot(repo, note_id, user_id, force=False)


async def create_interval_snapshot(
    repo: NoteRepository, note_id: UUID, user_id: str
) -> SnapshotResult:
    logger.debug("interval_snapshot_requested", extra={"note_id": str(note_id)})
    return await create_snapshot_if_changed(repo, note_id, user_id)


async def create_close_snapshot(
    repo: NoteRepository, note_id: UUID, user_id: str
) -> SnapshotResult:
    logger.debug("close_snapshot_requested", extra={"note_id": str(note_id)})
    return await create_snapshot_if_changed(repo, note_id, user_id)


async def create_forced_snapshot(
    repo: NoteRepository, note_id: UUID, user_id: str
) -> SnapshotResult:
    return await _snapshot(repo, note_id, user_id, force=True)

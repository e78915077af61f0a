import json
import logging
import math
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from auth.domain.entities import Identity
from notes.application.snapshots import create_close_snapshot, create_forced_snapshot
from notes.application.versions import (
    get_version_by_id,
    get_version_by_number,
    list_versions,
    restore_version,
)
from notes.domain.repository import LiveDocuments
from notes.infrastructure.note_repository import DbNoteRepository
from notes.interfaces.schemas import (
    NoteResponse,
    PageMeta,
    RestoreResponse,
    RestoreVersionRequest,
    SnapshotRequest,
    SnapshotResponse,
    VersionDetailResponse,
    VersionListResponse,
    VersionResponse,
    VersionSummaryResponse,
)
from shared.dependencies import get_current_identity, get_db, get_optional_identity
from shared.exceptions import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notes", tags=["versions"])


def get_live_documents(request: Request) -> LiveDocuments | None:
    return getattr(request.app.state, "session_registry", None)


@router.post("/snapshot", response_model=SnapshotResponse, response_model_exclude_none=True)
async def snapshot_on_close(
    request: Request,
    identity: Identity | None = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db),
):
    """Beacon target for page close. Always answers 200 so navigation is never blocked."""
    try:
        if identity is None:
            logger.warning("snapshot_unauthenticated")
            return SnapshotResponse(created=False, reason="error")
        # sendBeacon posts text/plain, so the body is parsed whatever the content type.
        payload = SnapshotRequest.model_validate(json.loads(await request.body() or b"null"))
        result = await create_close_snapshot(DbNoteRepository(db), payload.note_id, identity.id)
    except ValueError as exc:
        logger.warning("snapshot_request_invalid", extra={"error": str(exc)})
        return SnapshotResponse(created=False, reason="error")
    except Exception:
        logger.exception("snapshot_beacon_failed")
        return SnapshotResponse(created=False, reason="error")

    return SnapshotResponse(
        created=result.created,
        reason=result.reason,
        version_id=result.version_id,
        version=result.version,
    )


@router.get("/{note_id}/versions", response_model=VersionListResponse)
async def list_note_versions(
    note_id: UUID,
    page: int = Query(1, gt=0),
    page_size: int = Query(20, gt=0, le=50, alias="pageSize"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    versions, total = await list_versions(
        DbNoteRepository(db), note_id, identity.id, page=page, page_size=page_size
    )
    return VersionListResponse(
        data=[VersionSummaryResponse.model_validate(v) for v in versions],
        meta=PageMeta(
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        ),
    )


@router.post("/{note_id}/versions", response_model=SnapshotResponse, response_model_exclude_none=True)
async def create_note_version(
    note_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """Explicit snapshot of the current content, created even when unchanged."""
    result = await create_forced_snapshot(DbNoteRepository(db), note_id, identity.id)
    return SnapshotResponse(
        created=result.created,
        reason=result.reason,
        version_id=result.version_id,
        version=result.version,
    )


@router.get("/{note_id}/versions/number/{number}", response_model=VersionDetailResponse)
async def get_note_version_by_number(
    note_id: UUID,
    number: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    version = await get_version_by_number(DbNoteRepository(db), note_id, number, identity.id)
    return VersionDetailResponse(data=VersionResponse.model_validate(version))


@router.get("/{note_id}/versions/{version_id}", response_model=VersionDetailResponse)
async def get_note_version(
    note_id: UUID,
    version_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    version = await get_version_by_id(DbNoteRepository(db), version_id, identity.id)
    if version.note_id != note_id:
        raise NotFoundError("Version", f"{version_id} for note {note_id}")
    return VersionDetailResponse(data=VersionResponse.model_validate(version))


@router.post("/{note_id}/versions/restore", response_model=RestoreResponse)
async def restore_note_version(
    note_id: UUID,
    body: RestoreVersionRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    live: LiveDocuments | None = Depends(get_live_documents),
):
    result = await restore_version(
        DbNoteRepository(db), note_id, body.version_id, identity.id, live=live
    )
    return RestoreResponse(
        note=NoteResponse.model_validate(result.note),
        restored_from=result.restored_from_version,
        undo_version_id=result.undo_version_id,
    )

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from notes.domain.entities import MemberRole, Note, NoteVersion
from notes.infrastructure.models import NoteModel, NoteVersionModel, WorkspaceMemberModel
from shared.exceptions import ConflictError, NotFoundError


class DbNoteRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_note(self, note_id: UUID) -> Note | None:
        result = await self.session.execute(
            select(NoteModel)
            .where(NoteModel.id == note_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return _note_to_entity(model) if model else None

    async def create_note(self, note: Note) -> Note:
        model = NoteModel(
            title=note.title,
            content=note.content,
            ydoc=note.ydoc,
            workspace_id=note.workspace_id,
            created_by_id=note.created_by_id,
            deleted_at=note.deleted_at,
        )
        if note.id is not None:
            model.id = note.id
        self.session.add(model)
        await self.session.commit()
        await self.session.refresh(model)
        return _note_to_entity(model)

    async def get_member_role(self, workspace_id: UUID, user_id: str) -> MemberRole | None:
        result = await self.session.execute(
            select(WorkspaceMemberModel.role).where(
                WorkspaceMemberModel.workspace_id == workspace_id,
                WorkspaceMemberModel.user_id == user_id,
            )
        )
        role = result.scalar_one_or_none()
        return MemberRole(role) if role else None

    async def add_member(self, workspace_id: UUID, user_id: str, role: MemberRole) -> None:
        await self.session.merge(
            WorkspaceMemberModel(workspace_id=workspace_id, user_id=user_id, role=role.value)
        )
        await self.session.commit()

    async def get_latest_version(self, note_id: UUID) -> NoteVersion | None:
        result = await self.session.execute(
            select(NoteVersionModel)
            .where(NoteVersionModel.note_id == note_id)
            .order_by(NoteVersionModel.version.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return _version_to_entity(model) if model else None

    async def get_latest_version_number(self, note_id: UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(NoteVersionModel.version), 0))
            .where(NoteVersionModel.note_id == note_id)
        )
        return result.scalar_one()

    async def add_version(self, version: NoteVersion) -> NoteVersion:
        model = _version_to_model(version)
        self.session.add(model)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ConflictError(
                f"Version {version.version} of note {version.note_id} already exists"
            )
        await self.session.refresh(model)
        return _version_to_entity(model)

    async def get_version(self, version_id: UUID) -> NoteVersion | None:
        result = await self.session.execute(
            select(NoteVersionModel).where(NoteVersionModel.id == version_id)
        )
        model = result.scalar_one_or_none()
        return _version_to_entity(model) if model else None

    async def get_version_by_number(self, note_id: UUID, number: int) -> NoteVersion | None:
        result = await self.session.execute(
            select(NoteVersionModel).where(
                NoteVersionModel.note_id == note_id,
                NoteVersionModel.version == number,
            )
        )
        model = result.scalar_one_or_none()
        return _version_to_entity(model) if model else None

    async def list_versions(
        self, note_id: UUID, offset: int, limit: int
    ) -> tuple[list[NoteVersion], int]:
        result = await self.session.execute(
            select(NoteVersionModel)
            .where(NoteVersionModel.note_id == note_id)
            .order_by(NoteVersionModel.version.desc())
            .offset(offset)
            .limit(limit)
        )
        versions = [_version_to_entity(m) for m in result.scalars().all()]
        total = await self.session.execute(
            select(func.count()).select_from(NoteVersionModel).where(NoteVersionModel.note_id == note_id)
        )
        return versions, total.scalar_one()

    async def save_restore(
        self, note: Note, undo: NoteVersion, restored: NoteVersion
    ) -> tuple[Note, NoteVersion, NoteVersion]:
        """Write both versions and the note content in a single transaction."""
        try:
            result = await self.session.execute(
                select(NoteModel).where(NoteModel.id == note.id).with_for_update()
            )
            model = result.scalar_one_or_none()
            if model is None:
                raise NotFoundError("Note", str(note.id))

            undo_model = _version_to_model(undo)
            restored_model = _version_to_model(restored)
            self.session.add(undo_model)
            model.title = note.title
            model.content = note.content
            model.ydoc = note.ydoc
            await self.session.flush()
            self.session.add(restored_model)
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ConflictError(f"Version numbers for note {note.id} were taken concurrently")
        except Exception:
            await self.session.rollback()
            raise

        await self.session.refresh(model)
        await self.session.refresh(undo_model)
        await self.session.refresh(restored_model)
        return (
            _note_to_entity(model),
            _version_to_entity(undo_model),
            _version_to_entity(restored_model),
        )


def _version_to_model(version: NoteVersion) -> NoteVersionModel:
    return NoteVersionModel(
        note_id=version.note_id,
        version=version.version,
        title=version.title,
        content=version.content,
        ydoc=version.ydoc,
        created_by_id=version.created_by_id,
    )


def _note_to_entity(model: NoteModel) -> Note:
    return Note(
        id=model.id,
        title=model.title,
        content=model.content,
        ydoc=model.ydoc,
        workspace_id=model.workspace_id,
        created_by_id=model.created_by_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
        deleted_at=model.deleted_at,
    )


def _version_to_entity(model: NoteVersionModel) -> NoteVersion:
    return NoteVersion(
        id=model.id,
        note_id=model.note_id,
        version=model.version,
        title=model.title,
        content=model.content,
        ydoc=model.ydoc,
        created_by_id=model.created_by_id,
        created_at=model.created_at,
    )

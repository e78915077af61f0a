from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from collaboration.domain.entities import StoredDocument
from notes.infrastructure.models import NoteModel


class DbDocumentStateRepository:
    """Yjs state lives on the note row, next to its extracted plain text."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_state(self, note_id: UUID) -> StoredDocument | None:
        result = await self.session.execute(
            select(NoteModel.id, NoteModel.ydoc, NoteModel.content).where(
                NoteModel.id == note_id,
                NoteModel.deleted_at.is_(None),
            )
        )
        row = result.one_or_none()
        if row is None:
            return None
        return StoredDocument(note_id=row.id, ydoc=row.ydoc, content=row.content)

    async def store_state(self, note_id: UUID, ydoc: bytes, content: str) -> bool:
        result = await self.session.execute(
            update(NoteModel)
            .where(NoteModel.id == note_id, NoteModel.deleted_at.is_(None))
            .values(ydoc=ydoc, content=content)
        )
        await self.session.commit()
        return result.rowcount > 0

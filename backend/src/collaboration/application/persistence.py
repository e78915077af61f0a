import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collaboration.domain.entities import parse_document_key
from collaboration.infrastructure.document_state_repository import DbDocumentStateRepository
from collaboration.infrastructure.yjs_adapter import doc_from_text, extract_text
from notes.application.snapshots import create_interval_snapshot
from notes.domain.entities import SnapshotResult
from notes.infrastructure.note_repository import DbNoteRepository

logger = logging.getLogger(__name__)


class PersistenceAdapter:
    """Loads and stores collaborative document state in the notes table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load(self, document_key: str) -> bytes | None:
        note_id = parse_document_key(document_key)
        if note_id is None:
            logger.warning("document_key_invalid", extra={"document_key": document_key})
            return None

        try:
            async with self.session_factory() as db:
                stored = await DbDocumentStateRepository(db).load_state(note_id)
        except Exception:
            # A new empty document is better than refusing the connection.
            logger.exception("document_load_failed", extra={"document_key": document_key})
            return None

        if stored is None:
            logger.debug("document_not_found", extra={"document_key": document_key})
            return None
        if stored.ydoc:
            logger.debug(
                "document_loaded",
                extra={"document_key": document_key, "size": len(stored.ydoc)},
            )
            return stored.ydoc
        if stored.content:
            # Notes written before collaborative editing only have plain text.
            logger.debug("document_seeded_from_text", extra={"document_key": document_key})
            return doc_from_text(stored.content)
        return None

    async def store(self, document_key: str, state: bytes) -> bool:
        """Upsert ``state`` for the document. Storage errors propagate to the caller."""
        note_id = parse_document_key(document_key)
        if note_id is None:
            logger.warning("document_key_invalid", extra={"document_key": document_key})
            return False

        content = extract_text(state)
        async with self.session_factory() as db:
            written = await DbDocumentStateRepository(db).store_state(note_id, state, content)

        if written:
            logger.debug(
                "document_stored",
                extra={
                    "document_key": document_key,
                    "ydoc_size": len(state),
                    "content_length": len(content),
                },
            )
        else:
            logger.warning("document_store_skipped_missing_note", extra={"document_key": document_key})
        return written

    async def record_version(self, document_key: str, actor_id: str) -> SnapshotResult:
        note_id = parse_document_key(document_key)
        if note_id is None:
            return SnapshotResult(created=False, reason="error")
        async with self.session_factory() as db:
            return await create_interval_snapshot(DbNoteRepository(db), note_id, actor_id)

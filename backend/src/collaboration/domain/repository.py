import asyncio
from collections.abc import Callable, Coroutine
from typing import Any, Protocol
from uuid import UUID

from collaboration.domain.entities import StoredDocument
from notes.domain.entities import SnapshotResult

UpdateCallback = Callable[[bytes], Coroutine[Any, Any, None]]


class DocumentStateRepository(Protocol):
    async def load_state(self, note_id: UUID) -> StoredDocument | None: ...

    async def store_state(self, note_id: UUID, ydoc: bytes, content: str) -> bool: ...


class DocumentPersistence(Protocol):
    async def load(self, document_key: str) -> bytes | None: ...

    async def store(self, document_key: str, state: bytes) -> bool: ...

    async def record_version(self, document_key: str, actor_id: str) -> SnapshotResult: ...


class UpdateRelay(Protocol):
    """Fans document updates out to other server instances."""

    async def publish(self, document_key: str, update: bytes) -> None: ...

    async def subscribe(self, document_key: str, callback: UpdateCallback) -> asyncio.Task: ...

"""In-memory collaborative document sessions.

A ``DocumentSession`` owns the merged Yjs document for one document key and the
outgoing message queues of the connections attached to it. All mutations go
through the session's ``Doc``; pycrdt applies each update as one transaction, so
edits from different connections are serialized and converge regardless of
arrival order.

``DocumentSessionRegistry`` maps document keys to sessions. It loads sessions
lazily, persists dirty ones on a timer and when their last connection leaves, and
evicts a session only once its state is durably stored and nobody is attached.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pycrdt import (
    Doc,
    TransactionEvent,
    YMessageType,
    YSyncMessageType,
    create_sync_message,
    create_update_message,
    handle_sync_message,
)

from collaboration.domain.entities import ConnectionContext, document_key_for
from collaboration.domain.repository import DocumentPersistence, UpdateRelay
from collaboration.infrastructure.yjs_adapter import EMPTY_UPDATE, doc_from_state

logger = logging.getLogger(__name__)

_EDIT_MESSAGES = (YSyncMessageType.SYNC_STEP2, YSyncMessageType.SYNC_UPDATE)
_SYNC_MESSAGES = (YSyncMessageType.SYNC_STEP1, *_EDIT_MESSAGES)


class DocumentSession:
    def __init__(self, document_key: str, doc: Doc, clock: Callable[[], float] = time.monotonic):
        self.document_key = document_key
        self.doc = doc
        self.connections: dict[str, ConnectionContext] = {}
        self.dirty = False
        self.last_persisted_at: datetime | None = None
        self.last_editor_id: str | None = None
        self.last_versioned_at = clock()
        self.on_local_update: Callable[[bytes], None] | None = None
        self._outboxes: dict[str, asyncio.Queue[bytes]] = {}
        self._applying_remote = False
        # Held while a snapshot is being stored; eviction waits for it.
        self.store_lock = asyncio.Lock()
        self._subscription = doc.observe(self._on_transaction)

    def _on_transaction(self, event: TransactionEvent) -> None:
        update = event.update
        if update == EMPTY_UPDATE:
            return
        self.dirty = True
        message = create_update_message(update)
        for outbox in self._outboxes.values():
            outbox.put_nowait(message)
        if self.on_local_update is not None and not self._applying_remote:
            self.on_local_update(update)

    def join(self, context: ConnectionContext) -> asyncio.Queue[bytes]:
        self.connections[context.connection_id] = context
        outbox: asyncio.Queue[bytes] = asyncio.Queue()
        self._outboxes[context.connection_id] = outbox
        return outbox

    def leave(self, connection_id: str) -> None:
        self.connections.pop(connection_id, None)
        self._outboxes.pop(connection_id, None)

    def outbox(self, connection_id: str) -> asyncio.Queue[bytes]:
        return self._outboxes[connection_id]

    @property
    def is_idle(self) -> bool:
        return not self.connections

    def sync_step1(self) -> bytes:
        return create_sync_message(self.doc)

    def handle_message(self, message: bytes, connection_id: str) -> None:
        """Process one frame of the Yjs sync protocol from ``connection_id``.

        Raises ValueError for frames that are not sync or awareness messages.
        """
        if not message:
            raise ValueError("Empty frame")
        if message[0] == YMessageType.SYNC:
            if len(message) < 2 or message[1] not in _SYNC_MESSAGES:
                raise ValueError("Unknown sync message")
            if message[1] in _EDIT_MESSAGES:
                context = self.connections.get(connection_id)
                if context is not None:
                    self.last_editor_id = context.identity.id
            reply = handle_sync_message(message[1:], self.doc)
            if reply is not None and connection_id in self._outboxes:
                self._outboxes[connection_id].put_nowait(reply)
        elif message[0] == YMessageType.AWARENESS:
            for other_id, outbox in self._outboxes.items():
                if other_id != connection_id:
                    outbox.put_nowait(message)
        else:
            raise ValueError(f"Unknown message type {message[0]}")

    def apply_update(self, update: bytes) -> None:
        self.doc.apply_update(update)

    def apply_remote_update(self, update: bytes) -> None:
        """Merge an update relayed from another instance without relaying it back."""
        self._applying_remote = True
        try:
            self.doc.apply_update(update)
        finally:
            self._applying_remote = False

    def snapshot(self) -> bytes:
        return self.doc.get_update()

    def close(self) -> None:
        self.doc.unobserve(self._subscription)
        self._outboxes.clear()
        self.connections.clear()


class DocumentSessionRegistry:
    """Owns every live ``DocumentSession`` of this process.

    ``start`` begins the persistence timer; ``close`` flushes every session and
    empties the registry.
    """

    def __init__(
        self,
        persistence: DocumentPersistence,
        persist_interval: float = 2.0,
        version_interval: float = 0,
        snapshot_on_close: bool = True,
        relay: UpdateRelay | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._persistence = persistence
        self._persist_interval = persist_interval
        self._version_interval = version_interval
        self._snapshot_on_close = snapshot_on_close
        self._relay = relay
        self._clock = clock
        self._sessions: dict[str, DocumentSession] = {}
        self._loading: dict[str, asyncio.Task[DocumentSession]] = {}
        self._acquiring: dict[str, int] = {}
        self._relay_tasks: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._timer: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, document_key: str) -> bool:
        return document_key in self._sessions

    def get(self, document_key: str) -> DocumentSession | None:
        return self._sessions.get(document_key)

    async def acquire(self, context: ConnectionContext) -> DocumentSession:
        key = context.document_key
        self._acquiring[key] = self._acquiring.get(key, 0) + 1
        try:
            session = self._sessions.get(key)
            if session is None:
                session = await asyncio.shield(self._loading_task(key))
            session.join(context)
        finally:
            self._acquiring[key] -= 1
            if not self._acquiring[key]:
                del self._acquiring[key]

        logger.info(
            "collab_client_connected",
            extra={
                "document_key": key,
                "user_id": context.identity.id,
                "connection_id": context.connection_id,
                "connections": len(session.connections),
            },
        )
        return session

    def _loading_task(self, key: str) -> asyncio.Task[DocumentSession]:
        task = self._loading.get(key)
        if task is None:
            task = asyncio.create_task(self._open(key))
            self._loading[key] = task

            def _done(finished: asyncio.Task) -> None:
                if self._loading.get(key) is finished:
                    del self._loading[key]

            task.add_done_callback(_done)
        return task

    async def _open(self, key: str) -> DocumentSession:
        state = await self._persistence.load(key)
        session = DocumentSession(key, doc_from_state(state), clock=self._clock)
        if self._relay is not None:
            await self._attach_relay(session)
        self._sessions[key] = session
        logger.info(
            "session_created",
            extra={"document_key": key, "size": len(state) if state else 0},
        )
        return session

    async def _attach_relay(self, session: DocumentSession) -> None:
        """Subscribe before publishing; without a subscription the session stays local."""
        key = session.document_key
        relay = self._relay

        async def _on_remote(update: bytes) -> None:
            session.apply_remote_update(update)

        try:
            self._relay_tasks[key] = await relay.subscribe(key, _on_remote)
        except Exception:
            logger.exception("relay_subscribe_failed", extra={"document_key": key})
            return
        session.on_local_update = lambda update: self._spawn(relay.publish(key, update))

    async def release(self, document_key: str, connection_id: str) -> None:
        session = self._sessions.get(document_key)
        if session is None:
            return
        session.leave(connection_id)
        logger.info(
            "collab_client_disconnected",
            extra={
                "document_key": document_key,
                "connection_id": connection_id,
                "connections": len(session.connections),
            },
        )
        if not session.is_idle:
            return
        if await self._flush(session) and session.is_idle:
            await self._record_version(session, closing=True)
            self._evict_if_idle(session)

    async def tick(self) -> None:
        """One persistence cycle: store dirty sessions, evict idle clean ones."""
        for session in list(self._sessions.values()):
            if not await self._flush(session):
                continue
            await self._record_version(session, closing=session.is_idle)
            if session.is_idle:
                self._evict_if_idle(session)

    async def _flush(self, session: DocumentSession) -> bool:
        """Store the session if dirty. True once everything it holds is durable."""
        async with session.store_lock:
            if not session.dirty:
                return True
            state = session.snapshot()
            session.dirty = False
            try:
                await self._persistence.store(session.document_key, state)
            except Exception:
                session.dirty = True
                logger.exception(
                    "document_store_failed", extra={"document_key": session.document_key}
                )
                return False
            session.last_persisted_at = datetime.now(timezone.utc)
            return True

    async def _record_version(self, session: DocumentSession, closing: bool) -> None:
        editor_id = session.last_editor_id
        if editor_id is None:
            return
        if closing:
            due = self._snapshot_on_close
        else:
            due = bool(self._version_interval) and (
                self._clock() - session.last_versioned_at >= self._version_interval
            )
        if not due:
            return
        result = await self._persistence.record_version(session.document_key, editor_id)
        session.last_versioned_at = self._clock()
        if session.last_editor_id == editor_id:
            session.last_editor_id = None
        logger.debug(
            "session_version_recorded",
            extra={"document_key": session.document_key, "reason": result.reason},
        )

    def _evict_if_idle(self, session: DocumentSession) -> bool:
        key = session.document_key
        if (
            not session.is_idle
            or session.dirty
            or session.store_lock.locked()
            or self._acquiring.get(key)
            or self._sessions.get(key) is not session
        ):
            return False
        del self._sessions[key]
        session.close()
        relay_task = self._relay_tasks.pop(key, None)
        if relay_task is not None:
            relay_task.cancel()
        logger.info("session_evicted", extra={"document_key": key})
        return True

    def live_state_for_note(self, note_id: UUID) -> bytes | None:
        session = self._sessions.get(document_key_for(note_id))
        return session.snapshot() if session is not None else None

    def push_update_for_note(self, note_id: UUID, update: bytes) -> bool:
        session = self._sessions.get(document_key_for(note_id))
        if session is None:
            return False
        session.apply_update(update)
        return True

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("relay_publish_failed", exc_info=task.exception())

    async def start(self) -> None:
        if self._timer is None:
            self._timer = asyncio.create_task(self._run_timer())

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self._persist_interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("persistence_tick_failed")

    async def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

        for session in list(self._sessions.values()):
            await self._flush(session)
            session.close()
        for task in self._relay_tasks.values():
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._relay_tasks.clear()
        self._sessions.clear()

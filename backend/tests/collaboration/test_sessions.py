import asyncio
import itertools
from uuid import uuid4

import pytest
from pycrdt import YMessageType, YSyncMessageType, create_sync_message, handle_sync_message

from collaboration.application.sessions import DocumentSessionRegistry
from collaboration.domain.entities import document_key_for
from collaboration.infrastructure.yjs_adapter import (
    build_replacement,
    create_doc,
    doc_from_state,
    doc_from_text,
    extract_text,
    get_text,
)
from fakes import (
    GatedPersistence,
    MemoryPersistence,
    MemoryRelay,
    UnreachableRelay,
    client_edit,
    connection,
    update_frame,
)

KEY = "note-7f0c5d1e-9a51-4c4e-8a3b-4a3f0c9b2d11"


def drain(queue: asyncio.Queue) -> list[bytes]:
    messages = []
    while not queue.empty():
        messages.append(queue.get_nowait())
    return messages


def apply_frames(doc, frames: list[bytes]) -> None:
    for frame in frames:
        if frame[0] == YMessageType.SYNC:
            handle_sync_message(frame[1:], doc)


@pytest.fixture
def persistence():
    return MemoryPersistence()


@pytest.fixture
def registry(persistence):
    return DocumentSessionRegistry(persistence)


async def test_concurrent_acquire_loads_once(registry, persistence):
    first, second = await asyncio.gather(
        registry.acquire(connection(KEY, "alice")),
        registry.acquire(connection(KEY, "bob")),
    )
    assert first is second
    assert persistence.load_calls == 1
    assert len(registry) == 1
    assert set(first.connections) == {"alice-conn", "bob-conn"}


async def test_acquire_hydrates_from_stored_state():
    persistence = MemoryPersistence({KEY: doc_from_text("stored body")})
    registry = DocumentSessionRegistry(persistence)

    session = await registry.acquire(connection(KEY))
    assert get_text(session.doc) == "stored body"
    assert not session.dirty


async def test_sync_handshake_sends_full_state(persistence):
    persistence.states[KEY] = doc_from_text("existing")
    registry = DocumentSessionRegistry(persistence)
    session = await registry.acquire(connection(KEY))

    client = create_doc()
    session.handle_message(create_sync_message(client), "alice-conn")

    replies = drain(session.outbox("alice-conn"))
    assert [r[1] for r in replies] == [YSyncMessageType.SYNC_STEP2]
    apply_frames(client, replies)
    assert get_text(client) == "existing"


async def test_server_step1_starts_with_sync_header(registry):
    session = await registry.acquire(connection(KEY))
    frame = session.sync_step1()
    assert frame[0] == YMessageType.SYNC
    assert frame[1] == YSyncMessageType.SYNC_STEP1


async def test_edit_is_broadcast_to_every_connection(registry):
    session = await registry.acquire(connection(KEY, "alice"))
    await registry.acquire(connection(KEY, "bob"))

    session.handle_message(update_frame(client_edit("hi")), "alice-conn")

    assert session.dirty
    assert session.last_editor_id == "alice"
    for connection_id in ("alice-conn", "bob-conn"):
        peer = create_doc()
        apply_frames(peer, drain(session.outbox(connection_id)))
        assert get_text(peer) == "hi"


async def test_awareness_goes_to_other_connections_only(registry):
    session = await registry.acquire(connection(KEY, "alice"))
    await registry.acquire(connection(KEY, "bob"))
    frame = bytes([YMessageType.AWARENESS, 1, 0])

    session.handle_message(frame, "alice-conn")

    assert drain(session.outbox("bob-conn")) == [frame]
    assert drain(session.outbox("alice-conn")) == []
    assert not session.dirty


@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
async def test_concurrent_edits_converge_in_any_order(order):
    base = doc_from_text("shared ")
    updates = [client_edit(text, base) for text in ("one", "two", "three")]
    registry = DocumentSessionRegistry(MemoryPersistence({KEY: base}))
    session = await registry.acquire(connection(KEY))

    for index in order:
        session.handle_message(update_frame(updates[index]), "alice-conn")

    expected = doc_from_state(base)
    for update in updates:
        expected.apply_update(update)
    assert get_text(session.doc) == get_text(expected)


async def test_last_disconnect_flushes_and_evicts(registry, persistence):
    session = await registry.acquire(connection(KEY))
    session.handle_message(update_frame(client_edit("hello")), "alice-conn")

    await registry.release(KEY, "alice-conn")

    assert KEY not in registry
    assert extract_text(persistence.states[KEY]) == "hello"
    assert persistence.versions == [(KEY, "alice")]


async def test_disconnect_of_one_peer_keeps_session(registry, persistence):
    session = await registry.acquire(connection(KEY, "alice"))
    await registry.acquire(connection(KEY, "bob"))
    session.handle_message(update_frame(client_edit("hello")), "alice-conn")

    await registry.release(KEY, "alice-conn")

    assert registry.get(KEY) is session
    assert persistence.stored == []
    assert session.dirty


async def test_clean_session_evicted_without_storing(registry, persistence):
    await registry.acquire(connection(KEY))
    await registry.release(KEY, "alice-conn")

    assert len(registry) == 0
    assert persistence.stored == []
    assert persistence.versions == []


async def test_failed_store_keeps_session_until_retry_succeeds(registry, persistence):
    persistence.failing_stores = 1
    session = await registry.acquire(connection(KEY))
    session.handle_message(update_frame(client_edit("unsaved")), "alice-conn")

    await registry.release(KEY, "alice-conn")

    assert registry.get(KEY) is session
    assert session.dirty
    assert KEY not in persistence.states

    await registry.tick()

    assert KEY not in registry
    assert extract_text(persistence.states[KEY]) == "unsaved"
    assert persistence.versions == [(KEY, "alice")]


async def test_tick_persists_open_sessions(registry, persistence):
    session = await registry.acquire(connection(KEY))
    session.handle_message(update_frame(client_edit("draft")), "alice-conn")

    await registry.tick()

    assert persistence.stored == [KEY]
    assert registry.get(KEY) is session
    assert not session.dirty
    assert session.last_persisted_at is not None
    assert persistence.versions == []

    await registry.tick()
    assert persistence.stored == [KEY]


async def test_interval_versions_follow_clock(persistence):
    now = [0.0]
    registry = DocumentSessionRegistry(persistence, version_interval=300, clock=lambda: now[0])
    session = await registry.acquire(connection(KEY))
    session.handle_message(update_frame(client_edit("draft")), "alice-conn")

    await registry.tick()
    assert persistence.versions == []

    now[0] = 301.0
    await registry.tick()
    assert persistence.versions == [(KEY, "alice")]

    now[0] = 700.0
    await registry.tick()
    assert persistence.versions == [(KEY, "alice")]


async def test_close_snapshot_can_be_disabled(persistence):
    registry = DocumentSessionRegistry(persistence, snapshot_on_close=False)
    session = await registry.acquire(connection(KEY))
    session.handle_message(update_frame(client_edit("draft")), "alice-conn")

    await registry.release(KEY, "alice-conn")

    assert persistence.stored == [KEY]
    assert persistence.versions == []


async def test_live_state_and_push_update(registry):
    note_id = uuid4()
    key = document_key_for(note_id)
    assert registry.live_state_for_note(note_id) is None
    assert registry.push_update_for_note(note_id, client_edit("x")) is False

    session = await registry.acquire(connection(key))
    session.handle_message(update_frame(client_edit("current draft")), "alice-conn")
    drain(session.outbox("alice-conn"))

    state = registry.live_state_for_note(note_id)
    assert extract_text(state) == "current draft"

    _, delta = build_replacement(state, "restored")
    assert registry.push_update_for_note(note_id, delta) is True
    assert get_text(session.doc) == "restored"

    client = doc_from_state(state)
    apply_frames(client, drain(session.outbox("alice-conn")))
    assert get_text(client) == "restored"


async def test_close_flushes_every_session(registry, persistence):
    other = "note-0d7b2f57-3c1e-4f7e-9a3e-2c5b7f8d9e10"
    for key in (KEY, other):
        session = await registry.acquire(connection(key))
        session.handle_message(update_frame(client_edit(key[-4:])), "alice-conn")

    await registry.close()

    assert len(registry) == 0
    assert extract_text(persistence.states[KEY]) == KEY[-4:]
    assert extract_text(persistence.states[other]) == other[-4:]


async def test_timer_persists_in_background(persistence):
    registry = DocumentSessionRegistry(persistence, persist_interval=0.01)
    await registry.start()
    try:
        session = await registry.acquire(connection(KEY))
        session.handle_message(update_frame(client_edit("autosave")), "alice-conn")
        for _ in range(50):
            if persistence.stored:
                break
            await asyncio.sleep(0.01)
    finally:
        await registry.close()

    assert extract_text(persistence.states[KEY]) == "autosave"


async def test_relay_publishes_local_and_applies_remote_updates(persistence):
    relay = MemoryRelay()
    registry = DocumentSessionRegistry(persistence, relay=relay)
    session = await registry.acquire(connection(KEY))

    session.handle_message(update_frame(client_edit("local")), "alice-conn")
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert [key for key, _ in relay.published] == [KEY]

    await relay.callbacks[KEY](client_edit("remote"))
    assert "remote" in get_text(session.doc)
    assert len(relay.published) == 1

    await registry.close()


async def test_disconnect_during_store_waits_for_it():
    persistence = GatedPersistence()
    persistence.failing_stores = 2
    registry = DocumentSessionRegistry(persistence)
    session = await registry.acquire(connection(KEY))
    session.handle_message(update_frame(client_edit("in flight")), "alice-conn")

    tick = asyncio.create_task(registry.tick())
    await persistence.storing.wait()
    release = asyncio.create_task(registry.release(KEY, "alice-conn"))
    for _ in range(5):
        await asyncio.sleep(0)

    assert registry.get(KEY) is session
    assert persistence.versions == []

    persistence.gate.set()
    await tick
    await release

    # Both stores failed: the edits stay resident for the next cycle.
    assert registry.get(KEY) is session
    assert session.dirty
    assert persistence.versions == []

    await registry.tick()

    assert KEY not in registry
    assert extract_text(persistence.states[KEY]) == "in flight"
    assert persistence.versions == [(KEY, "alice")]


async def test_disconnect_during_successful_store_evicts_after_it():
    persistence = GatedPersistence()
    registry = DocumentSessionRegistry(persistence)
    session = await registry.acquire(connection(KEY))
    session.handle_message(update_frame(client_edit("saved")), "alice-conn")

    tick = asyncio.create_task(registry.tick())
    await persistence.storing.wait()
    release = asyncio.create_task(registry.release(KEY, "alice-conn"))
    for _ in range(5):
        await asyncio.sleep(0)
    assert registry.get(KEY) is session

    persistence.gate.set()
    await tick
    await release

    assert KEY not in registry
    assert extract_text(persistence.states[KEY]) == "saved"
    assert persistence.versions == [(KEY, "alice")]


async def test_relay_subscribe_failure_keeps_session_local(persistence):
    relay = UnreachableRelay()
    registry = DocumentSessionRegistry(persistence, relay=relay)

    session = await registry.acquire(connection(KEY))
    session.handle_message(update_frame(client_edit("offline")), "alice-conn")
    await asyncio.sleep(0)

    assert registry.get(KEY) is session
    assert get_text(session.doc) == "offline"
    assert relay.published == []
    assert await registry.acquire(connection(KEY, "bob")) is session

"""Seed script: creates demo notes and workspace members, then records first versions.

Notes and memberships are written straight to the database (this service does not
own note creation); versions go through the REST API so they follow the normal path.

Requires the `seed` extra (httpx): pip install -e ".[seed]"

Usage:
    python scripts/seed.py              # uses http://localhost:8000
    python scripts/seed.py http://host  # custom base URL
"""

import asyncio
import sys
import uuid
from pathlib import Path

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "backend" / "src"))

from auth.application.services import create_token  # noqa: E402
from collaboration.domain.entities import document_key_for  # noqa: E402
from collaboration.infrastructure.yjs_adapter import doc_from_text  # noqa: E402
from notes.domain.entities import MemberRole, Note  # noqa: E402
from notes.infrastructure.note_repository import DbNoteRepository  # noqa: E402
from shared.infrastructure.database import Base, async_session, engine  # noqa: E402

import notes.infrastructure.models  # noqa: E402, F401

BASE_URL = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"

USERS = [
    {"id": "alice", "name": "Alice Smith", "email": "alice@example.com"},
    {"id": "bob", "name": "Bob Jones", "email": "bob@example.com"},
]

WORKSPACE_ID = uuid.UUID("5f1e8d62-2c55-4a57-9d0e-0c6a3c1f4b10")

MEMBERS = [
    ("alice", MemberRole.ADMIN),
    ("bob", MemberRole.EDITOR),
]

NOTES = [
    {"title": "Getting Started Guide", "owner": "alice", "workspace": False,
     "content": "Welcome to PlumeNote."},
    {"title": "Team Meeting Notes", "owner": "alice", "workspace": True,
     "content": "Agenda:\n- roadmap\n- hiring"},
    {"title": "Architecture Notes", "owner": "bob", "workspace": True,
     "content": "Sessions live in memory, versions live in the database."},
]


async def seed_database() -> list[Note]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    created = []
    async with async_session() as db:
        repo = DbNoteRepository(db)
        for workspace_user, role in MEMBERS:
            await repo.add_member(WORKSPACE_ID, workspace_user, role)
            print(f"  {workspace_user} is {role.value} of workspace {WORKSPACE_ID}")

        for entry in NOTES:
            note = await repo.create_note(
                Note(
                    title=entry["title"],
                    content=entry["content"],
                    ydoc=doc_from_text(entry["content"]),
                    workspace_id=WORKSPACE_ID if entry["workspace"] else None,
                    created_by_id=entry["owner"],
                )
            )
            print(f"  Created note '{note.title}' ({note.id})")
            created.append(note)
    await engine.dispose()
    return created


def create_first_version(client: httpx.Client, token: str, note: Note) -> None:
    resp = client.post(
        f"{BASE_URL}/api/notes/{note.id}/versions",
        headers={"Authorization": f"Bearer {token}"},
    )
    if resp.status_code == 200 and resp.json()["created"]:
        print(f"  Version {resp.json()['version']} of '{note.title}'")
    else:
        resp.raise_for_status()


def main() -> None:
    print(f"Seeding against {BASE_URL}\n")

    # 1. Tokens for the demo users
    tokens = {u["id"]: create_token(u["id"], name=u["name"], email=u["email"]) for u in USERS}

    # 2. Notes and workspace membership
    print("Notes:")
    notes = asyncio.run(seed_database())

    # 3. First versions
    print("\nVersions:")
    with httpx.Client(timeout=10) as client:
        for note in notes:
            create_first_version(client, tokens[note.created_by_id], note)

    print("\nTokens:")
    for user_id, token in tokens.items():
        print(f"  {user_id}: {token}")

    ws_base = BASE_URL.replace("http", "ws", 1)
    print("\nCollaboration URLs (alice):")
    for note in notes:
        print(f"  {ws_base}/ws/collab/{document_key_for(note.id)}?token={tokens['alice']}")

    print("\nDone!")


if __name__ == "__main__":
    main()

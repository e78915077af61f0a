import asyncio
import logging
from uuid import uuid4

from fastapi import APIRouter, WebSocket

from auth.application.services import authenticate_connection
from collaboration.application.sessions import DocumentSessionRegistry
from collaboration.domain.entities import ConnectionContext, parse_document_key
from shared.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

router = APIRouter()

UNAUTHORIZED_CLOSE_CODE = 4401
NOT_FOUND_CLOSE_CODE = 4404
UNSUPPORTED_DATA_CLOSE_CODE = 1003
INVALID_PAYLOAD_CLOSE_CODE = 1007
INTERNAL_ERROR_CLOSE_CODE = 1011


def _bearer_token(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials
    return None


async def _pump(websocket: WebSocket, outbox: asyncio.Queue[bytes]) -> None:
    """Single writer for the socket: drains the connection's outbox."""
    while True:
        message = await outbox.get()
        await websocket.send_bytes(message)


@router.websocket("/ws/collab/{document_key}")
async def collaboration_endpoint(websocket: WebSocket, document_key: str):
    registry: DocumentSessionRegistry = websocket.app.state.session_registry

    # Accept first so the rejection reaches the client as a close code instead of
    # a failed handshake; nothing about the document is sent before this check.
    await websocket.accept()
    try:
        identity = authenticate_connection(_bearer_token(websocket), document_key)
    except AuthenticationError as exc:
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE, reason=exc.message)
        return

    if parse_document_key(document_key) is None:
        logger.warning(
            "collab_connection_rejected",
            extra={"document_key": document_key, "user_id": identity.id, "reason": "unknown_document"},
        )
        await websocket.close(code=NOT_FOUND_CLOSE_CODE, reason="Unknown document")
        return

    context = ConnectionContext(
        connection_id=uuid4().hex,
        identity=identity,
        document_key=document_key,
    )
    try:
        session = await registry.acquire(context)
    except Exception:
        logger.exception(
            "collab_session_unavailable",
            extra={"document_key": document_key, "user_id": identity.id},
        )
        await websocket.close(code=INTERNAL_ERROR_CLOSE_CODE)
        return
    outbox = session.outbox(context.connection_id)
    outbox.put_nowait(session.sync_step1())
    sender = asyncio.create_task(_pump(websocket, outbox))

    close_code: int | None = None
    try:
        while True:
            received = await websocket.receive()
            if received["type"] == "websocket.disconnect":
                break
            data = received.get("bytes")
            if data is None:
                close_code = UNSUPPORTED_DATA_CLOSE_CODE
                break
            try:
                session.handle_message(data, context.connection_id)
            except Exception:
                logger.exception(
                    "collab_message_rejected",
                    extra={"document_key": document_key, "user_id": identity.id},
                )
                close_code = INVALID_PAYLOAD_CLOSE_CODE
                break
    finally:
        sender.cancel()
        try:
            await sender
        except (asyncio.CancelledError, Exception):
            # Sends fail once the peer is gone; the session no longer needs them.
            pass
        await registry.release(document_key, context.connection_id)

    if close_code is not None:
        await websocket.close(code=close_code)

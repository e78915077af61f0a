from pycrdt import Doc, Text

# Root shared type holding the note body.
CONTENT_FIELD = "content"

EMPTY_UPDATE = b"\x00\x00"


def create_doc() -> Doc:
    doc = Doc()
    doc[CONTENT_FIELD] = Text()
    return doc


def doc_from_state(state: bytes | None) -> Doc:
    doc = create_doc()
    if state:
        doc.apply_update(state)
    return doc


def apply_update(doc: Doc, update: bytes) -> None:
    doc.apply_update(update)


def encode_state_as_update(doc: Doc, state_vector: bytes | None = None) -> bytes:
    if state_vector is None:
        return doc.get_update()
    return doc.get_update(state_vector)


def encode_state_vector(doc: Doc) -> bytes:
    return doc.get_state()


def get_text(doc: Doc) -> str:
    return str(doc[CONTENT_FIELD])


def extract_text(state: bytes) -> str:
    """Plain text of a stored document state, used for search and version snapshots."""
    return get_text(doc_from_state(state))


def doc_from_text(text: str) -> bytes:
    doc = create_doc()
    if text:
        content = doc[CONTENT_FIELD]
        with doc.transaction():
            content += text
    return doc.get_update()


def replace_text(doc: Doc, text: str) -> None:
    """Swap the whole body for ``text`` as one transaction."""
    content = doc[CONTENT_FIELD]
    with doc.transaction():
        del content[:]
        if text:
            content += text


def build_replacement(state: bytes | None, text: str) -> tuple[bytes, bytes]:
    """Replace the body on a copy of ``state``.

    Returns the full resulting state and the delta that turns ``state`` into it,
    which can be merged into any document descended from ``state``.
    """
    doc = doc_from_state(state)
    before = doc.get_state()
    replace_text(doc, text)
    return doc.get_update(), doc.get_update(before)


def merge_updates(updates: list[bytes]) -> bytes:
    """Apply multiple updates to a fresh doc and return the merged state."""
    doc = create_doc()
    for update in updates:
        doc.apply_update(update)
    return doc.get_update()

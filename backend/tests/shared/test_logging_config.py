import logging

from shared.logging_config import KeyValueFormatter, configure_logging


def test_formatter_appends_extra_fields():
    formatter = KeyValueFormatter("%(levelname)s %(message)s")
    record = logging.makeLogRecord(
        {"levelname": "INFO", "msg": "session_created", "document_key": "note-1", "size": 12}
    )
    assert formatter.format(record) == "INFO session_created document_key=note-1 size=12"


def test_formatter_without_extra_fields():
    formatter = KeyValueFormatter("%(message)s")
    assert formatter.format(logging.makeLogRecord({"msg": "plain"})) == "plain"


def test_configure_logging_sets_level():
    root = logging.getLogger()
    previous = root.handlers[:], root.level
    try:
        configure_logging("debug")
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, KeyValueFormatter)
    finally:
        root.handlers, level = previous
        root.setLevel(level)

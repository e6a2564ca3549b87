import logging

from app.core.logging_config import setup_logging


def test_setup_logging_is_idempotent():
    root = logging.getLogger()
    before = [h for h in root.handlers if not getattr(h, "_autosell_handler", False)]

    setup_logging("debug")
    setup_logging("info", json_logs=True)

    ours = [h for h in root.handlers if getattr(h, "_autosell_handler", False)]
    assert len(ours) == 1
    assert root.level == logging.INFO
    assert logging.getLogger("httpx").level == logging.WARNING

    for h in ours:
        root.removeHandler(h)
    assert [h for h in root.handlers if not getattr(h, "_autosell_handler", False)] == before

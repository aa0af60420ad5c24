import logging
from logging.handlers import RotatingFileHandler

import pytest

from bridge_server.utils.logger import resolve_level, setup_logging


@pytest.fixture
def clean_root_logger():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in saved_handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(saved_level)


def test_resolve_level_accepts_names_and_ints():
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level("WARNING") == logging.WARNING
    assert resolve_level(logging.ERROR) == logging.ERROR


def test_resolve_level_rejects_unknown_names():
    with pytest.raises(ValueError):
        resolve_level("chatty")


def test_setup_logging_writes_to_file(tmp_path, clean_root_logger):
    log_file = tmp_path / "logs" / "server.log"

    path = setup_logging(str(log_file), "DEBUG")

    assert path == str(log_file)
    assert log_file.parent.is_dir()
    assert clean_root_logger.level == logging.DEBUG
    file_handlers = [h for h in clean_root_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert any(h.baseFilename == str(log_file) for h in file_handlers)


def test_setup_logging_is_idempotent(tmp_path, clean_root_logger):
    log_file = tmp_path / "server.log"

    setup_logging(str(log_file))
    count = len(clean_root_logger.handlers)
    setup_logging(str(log_file))

    assert len(clean_root_logger.handlers) == count


def test_setup_logging_directory_gets_run_file(tmp_path, clean_root_logger):
    path = setup_logging(str(tmp_path))
    assert path.startswith(str(tmp_path))
    assert "bridge_" in path


def test_transport_libraries_stay_quiet(tmp_path, clean_root_logger):
    websockets_logger = logging.getLogger("websockets")
    saved = websockets_logger.level
    try:
        setup_logging(str(tmp_path / "server.log"), "DEBUG")
        assert websockets_logger.level == logging.WARNING
    finally:
        websockets_logger.setLevel(saved)

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from logging_config import LOGGER_NAME, configure_logging


def test_configure_logging_writes_rotating_file(tmp_path: Path) -> None:
    logger = logging.getLogger(LOGGER_NAME)
    saved = list(logger.handlers)
    for handler in saved:
        logger.removeHandler(handler)
    try:
        configured, log_path = configure_logging(tmp_path / "logs", level=logging.DEBUG)
        assert configured is logger
        assert log_path == tmp_path / "logs" / "histolearn.log"
        assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)

        configure_logging(tmp_path / "logs")
        assert len(logger.handlers) == 2

        logging.getLogger("histolearn.training").info("fitted pipeline")
        for handler in logger.handlers:
            handler.flush()
        assert "histolearn.training: fitted pipeline" in log_path.read_text()
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        for handler in saved:
            logger.addHandler(handler)


def test_configure_logging_follows_new_directory(tmp_path: Path) -> None:
    logger = logging.getLogger(LOGGER_NAME)
    saved = list(logger.handlers)
    for handler in saved:
        logger.removeHandler(handler)
    try:
        configure_logging(tmp_path / "first")
        _, second_path = configure_logging(tmp_path / "second")

        file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert Path(file_handlers[0].baseFilename) == second_path.absolute()
        assert len(logger.handlers) == 2

        console = [h for h in logger.handlers if not isinstance(h, RotatingFileHandler)]
        assert console[0].stream is sys.stderr
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        for handler in saved:
            logger.addHandler(handler)

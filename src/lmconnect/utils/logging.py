"""Log file, console and Qt message routing for lmconnect."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["PAYLOAD_LOGGER", "get_log_path", "route_qt_messages", "setup_logging"]

# Emits the full JSON request body when ``debug_logging`` is on.
PAYLOAD_LOGGER = "lmconnect.ai.client"
LOG_FILE_NAME = "lmconnect.log"
_DEFAULT_LOG_DIR = Path.home() / ".lmconnect" / "logs"
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "qasync", "httpx", "httpcore")
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_log_path: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console_level: int | None = logging.WARNING,
    payload_logging: bool = False,
    max_bytes: int = 512_000,
    backup_count: int = 2,
    force: bool = False,
) -> Path:
    """Send records at ``level`` and above to ``<log_dir>/lmconnect.log``.

    ``console_level`` adds a stderr handler (``None`` for none). With
    ``payload_logging`` the completion client logs request bodies at DEBUG
    even when ``level`` is higher. Later calls are no-ops unless ``force``.
    """

    global _log_path
    if _log_path is not None and not force:
        return _log_path

    directory = Path(log_dir or os.environ.get("LMCONNECT_LOG_DIR") or _DEFAULT_LOG_DIR)
    directory = directory.expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / LOG_FILE_NAME

    formatter = logging.Formatter(_FORMAT)
    file_handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG if payload_logging else level)
    file_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [file_handler]
    if console_level is not None:
        console = logging.StreamHandler()
        console.setLevel(max(level, console_level))
        console.setFormatter(formatter)
        handlers.append(console)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    logging.getLogger(PAYLOAD_LOGGER).setLevel(logging.DEBUG if payload_logging else logging.NOTSET)

    _log_path = path
    return path


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging` ran."""

    return _log_path


def route_qt_messages() -> None:
    """Forward qDebug/qWarning output to the ``lmconnect.qt`` logger."""

    from PySide6.QtCore import QtMsgType, qInstallMessageHandler

    levels = {
        QtMsgType.QtDebugMsg: logging.DEBUG,
        QtMsgType.QtInfoMsg: logging.INFO,
        QtMsgType.QtWarningMsg: logging.WARNING,
        QtMsgType.QtCriticalMsg: logging.ERROR,
        QtMsgType.QtFatalMsg: logging.CRITICAL,
    }
    qt_logger = logging.getLogger("lmconnect.qt")

    def _forward(msg_type, _context, message):  # type: ignore[no-untyped-def]
        qt_logger.log(levels.get(msg_type, logging.INFO), "%s", message)

    qInstallMessageHandler(_forward)

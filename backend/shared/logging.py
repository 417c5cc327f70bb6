"""Structured logging for room coordination clients.

A host application calls ``setup_logging(settings)`` once at startup; level,
renderer and log directory come from ``RoomSettings`` (``ROOMS_LOG_LEVEL``,
``ROOMS_LOG_FORMAT``, ``ROOMS_LOG_DIR``). Game sessions bind their room and
player to the structlog context while attached, so every event logged on the
session's behalf carries ``room_code`` / ``player_id`` / ``role``.
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import Any

    from rooms.settings import RoomSettings

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

SESSION_CONTEXT_KEYS = ("room_code", "player_id", "role")


def _serialize_enums(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Render RoomStatus / PlayerStatus (and any other Enum) as plain values."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, list):
            event_dict[key] = [v.value if isinstance(v, Enum) else v for v in value]
    return event_dict


def shared_processors() -> list[Any]:
    """Processor chain shared by the application setup and the test suite."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _serialize_enums,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]


def bind_session_context(room_code: str, player_id: str, role: str) -> None:
    structlog.contextvars.bind_contextvars(room_code=room_code, player_id=player_id, role=role)


def clear_session_context() -> None:
    structlog.contextvars.unbind_contextvars(*SESSION_CONTEXT_KEYS)


def _is_test() -> bool:
    return "pytest" in sys.modules


def _handler(handler: logging.Handler, *, json_mode: bool, colors: bool = False) -> logging.Handler:
    renderer = structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer(colors=colors)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        ),
    )
    return handler


def setup_logging(settings: RoomSettings) -> Path | None:
    """Route structlog through stdlib to stdout, plus a file when ``settings.log_dir`` is set.

    Repeated calls replace the previous handlers. Returns the log file path,
    or None when logging to stdout only (always the case under pytest).
    """
    json_mode = settings.log_format == "json"
    structlog.configure(
        processors=shared_processors(),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    root_logger.handlers.clear()
    root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout), json_mode=json_mode, colors=sys.stdout.isatty()))

    if settings.log_dir is None or _is_test():
        return None

    dir_path = Path(settings.log_dir)
    dir_path.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)
    file_path = dir_path / f"rooms_{timestamp}.log"
    root_logger.addHandler(_handler(logging.FileHandler(file_path), json_mode=json_mode))
    return file_path

from __future__ import annotations

import errno
import io
import os
import re
import sys
from typing import Any, TextIO, cast

import structlog
from structlog.types import Processor

TELEGRAM_TOKEN_RE = re.compile(r"bot\d+:[A-Za-z0-9_-]+")
TELEGRAM_BARE_TOKEN_RE = re.compile(r"\b\d+:[A-Za-z0-9_-]{10,}\b")

ENV_LOG_LEVEL = "TG_TRANSMISSION_LOG_LEVEL"
ENV_LOG_FORMAT = "TG_TRANSMISSION_LOG_FORMAT"
ENV_LOG_COLOR = "TG_TRANSMISSION_LOG_COLOR"
ENV_LOG_FILE = "TG_TRANSMISSION_LOG_FILE"

_LEVELS: dict[str, int] = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "error": 40,
    "exception": 40,
    "critical": 50,
}

_MIN_LEVEL = _LEVELS["info"]
_log_file_handle: TextIO | None = None


def _truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _level_value(value: str | None, *, default: str = "info") -> int:
    if not value:
        return _LEVELS[default]
    level = _LEVELS.get(value.strip().lower())
    return level if level is not None else _LEVELS[default]


def _drop_below_level(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    if _LEVELS.get(method_name, 0) < _MIN_LEVEL:
        raise structlog.DropEvent
    return event_dict


def redact_text(value: str) -> str:
    redacted = TELEGRAM_TOKEN_RE.sub("bot[REDACTED]", value)
    return TELEGRAM_BARE_TOKEN_RE.sub("[REDACTED_TOKEN]", redacted)


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, (bytes, bytearray)):
        return redact_text(value.decode("utf-8", errors="replace"))
    if isinstance(value, dict):
        return {key: _redact_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(item) for item in value)
    return value


def _redact_event_dict(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    _ = logger, method_name
    return _redact_value(event_dict)


def _file_sink(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    if _log_file_handle is None:
        return event_dict
    try:
        payload = structlog.processors.JSONRenderer(default=str)(
            logger, method_name, dict(event_dict)
        )
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8", errors="replace")
        _log_file_handle.write(payload + "\n")
        _log_file_handle.flush()
    except Exception:  # noqa: BLE001
        return event_dict
    return event_dict


def _add_logger_name(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    _ = method_name
    if "logger" in event_dict:
        return event_dict
    name = event_dict.pop("logger_name", None)
    if isinstance(name, str) and name:
        event_dict["logger"] = name
        return event_dict
    fallback = getattr(logger, "name", None)
    if isinstance(fallback, str) and fallback:
        event_dict["logger"] = fallback
    return event_dict


def get_logger(name: str | None = None) -> Any:
    if name:
        return structlog.get_logger(logger_name=name)
    return structlog.get_logger()


def bind_update_context(*, update_id: int, sender: str | None) -> None:
    structlog.contextvars.bind_contextvars(update_id=update_id, sender=sender)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class SafeWriter(io.TextIOBase):
    def __init__(self, stream: Any) -> None:
        self._stream = stream
        self._closed = False

    def write(self, message: str) -> int:
        if self._closed:
            return 0
        try:
            return self._stream.write(message)
        except (BrokenPipeError, ValueError):
            self._close()
            return 0
        except OSError as exc:
            if exc.errno == errno.EPIPE:
                self._close()
                return 0
            raise

    def flush(self) -> None:
        if self._closed:
            return
        try:
            self._stream.flush()
        except (BrokenPipeError, ValueError):
            self._close()
        except OSError as exc:
            if exc.errno == errno.EPIPE:
                self._close()
                return
            raise

    def isatty(self) -> bool:
        isatty = getattr(self._stream, "isatty", None)
        return bool(isatty()) if callable(isatty) else False

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._stream.close()
        except Exception:  # noqa: BLE001
            return


def _open_log_file(path: str | None) -> TextIO | None:
    global _log_file_handle

    if _log_file_handle is not None:
        try:
            _log_file_handle.close()
        except OSError:
            pass
        _log_file_handle = None
    if not path:
        return None
    try:
        return open(path, "a", encoding="utf-8")
    except OSError:
        return None


def setup_logging(
    *, debug: bool = False, cache_logger_on_first_use: bool = True
) -> None:
    global _MIN_LEVEL, _log_file_handle

    level_name = "debug" if debug else os.environ.get(ENV_LOG_LEVEL)
    _MIN_LEVEL = _level_value(level_name, default="info")

    format_value = os.environ.get(ENV_LOG_FORMAT, "console").strip().lower()
    color_override = os.environ.get(ENV_LOG_COLOR)
    if color_override is None:
        is_tty = sys.stdout.isatty()
    else:
        is_tty = _truthy(color_override)
    if format_value == "json":
        renderer: Any = structlog.processors.JSONRenderer(default=str)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=is_tty)

    _log_file_handle = _open_log_file(os.environ.get(ENV_LOG_FILE))

    processors = cast(
        list[Processor],
        [
            _drop_below_level,
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            _add_logger_name,
        ],
    )
    if format_value == "json":
        processors.append(structlog.processors.format_exc_info)
    processors.extend(
        cast(
            list[Processor],
            [
                _redact_event_dict,
                _file_sink,
                cast(Processor, renderer),
            ],
        )
    )

    structlog.configure(
        processors=processors,
        logger_factory=structlog.PrintLoggerFactory(
            file=cast(TextIO, SafeWriter(sys.stdout))
        ),
        cache_logger_on_first_use=cache_logger_on_first_use,
    )

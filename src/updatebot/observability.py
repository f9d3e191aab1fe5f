from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import sys
from typing import Final


_LOGGER_NAME: Final[str] = "updatebot"
_MAX_VALUE_LEN: Final[int] = 120
_FORMAT: Final[str] = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(verbose: bool, *, state_dir: Path | None = None) -> None:
    """Send ``updatebot`` events to stderr and, given ``state_dir``, to a dated log file.

    Quiet runs keep warnings on stderr so failed commits and pushes of a batch
    run stay visible. The log file records INFO and above even when quiet.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.propagate = False
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    handlers: list[logging.Handler] = [stream_handler]
    if state_dir is not None:
        file_handler = _dated_file_handler(state_dir)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        handlers.append(file_handler)

    formatter = logging.Formatter(_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(min(handler.level for handler in handlers))


def log_event(
    logger: logging.Logger,
    event: str,
    *,
    severity: int = logging.INFO,
    **fields: object,
) -> None:
    if not logger.isEnabledFor(severity):
        return
    logger.log(severity, _build_event_message(event=event, fields=fields))


def _build_event_message(*, event: str, fields: dict[str, object]) -> str:
    parts = [f"event={_format_value(event)}"]
    parts.extend(f"{key}={_format_value(fields[key])}" for key in sorted(fields))
    return " ".join(parts)


def _format_value(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, tuple | list):
        text = ",".join(_format_value(item) for item in value) or "<empty>"
    elif isinstance(value, int | float):
        text = str(value)
    elif isinstance(value, str):
        text = " ".join(value.split())
        if len(text) > _MAX_VALUE_LEN:
            text = f"{text[:_MAX_VALUE_LEN]}..."
        text = text or "<empty>"
    else:
        text = f"<{type(value).__name__}>"

    # Quote anything that would split or blur the key=value pairs.
    if any(ch.isspace() for ch in text) or "=" in text:
        return json.dumps(text)
    return text


def _dated_file_handler(state_dir: Path) -> logging.FileHandler:
    logs_dir = state_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    date_key = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return logging.FileHandler(logs_dir / f"{date_key}.log", encoding="utf-8")

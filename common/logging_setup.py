from __future__ import annotations
"""
Logging for the localization core.

Records are emitted as one JSON object per line on stdout:
  { "t": 169, "lvl": "INFO", "name": "locator.pipeline", "msg": "text", "extra": {...} }

Structured fields travel as extra={"extra": {...}}. SessionLogger binds per-session fields
(e.g. the session id) so every record of one pipeline carries them.
"""

import logging
import os
import sys
import json
import time
from typing import Any, Dict, MutableMapping, Optional, Tuple


_CONFIGURED_ATTR = "_locator_configured"
_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s %(extra_fields)s"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            payload["extra"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # numpy scalars and enums fall back to str()
        return json.dumps(payload, ensure_ascii=False, default=str)


class PlainFormatter(logging.Formatter):
    """Human-readable variant for local runs (LOG_FORMAT=plain)."""

    def __init__(self) -> None:
        super().__init__(_PLAIN_FORMAT)

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        fields = getattr(record, "extra", None)
        record.extra_fields = (
            " ".join(f"{k}={v}" for k, v in fields.items()) if isinstance(fields, dict) else ""
        )
        return super().format(record).rstrip()


class SessionLogger(logging.LoggerAdapter):
    """
    Merges bound fields into each record's structured `extra` dict.
    Call-site fields win over bound ones on key clashes.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        fields = {**(self.extra or {}), **(extra.get("extra") or {})}
        extra["extra"] = fields
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **fields: Any) -> "SessionLogger":
        return SessionLogger(self.logger, {**(self.extra or {}), **fields})


def _make_formatter(fmt: Optional[str]) -> logging.Formatter:
    name = (fmt or os.environ.get("LOG_FORMAT") or "json").lower()
    if name == "plain":
        return PlainFormatter()
    if name != "json":
        raise ValueError(f"unknown log format: {name!r} (expected 'json' or 'plain')")
    return JsonFormatter()


def setup_logging(level: Optional[str] = None, *, fmt: Optional[str] = None, force: bool = False) -> None:
    """
    Configure the root logger once.
    Level precedence: explicit `level`, env LOG_LEVEL, INFO.
    Format precedence: explicit `fmt`, env LOG_FORMAT, json.
    `force=True` reconfigures an already configured root (config-file driven levels).
    """
    root = logging.getLogger()
    if getattr(root, _CONFIGURED_ATTR, False) and not force:
        return

    lvl_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    lvl = getattr(logging, lvl_name, None)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_make_formatter(fmt))

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(lvl)
    setattr(root, _CONFIGURED_ATTR, True)


def get_logger(name: str) -> logging.Logger:
    """Get a module logger; ensures root is configured."""
    setup_logging()
    return logging.getLogger(name)


def session_logger(name: str, **fields: Any) -> SessionLogger:
    return SessionLogger(get_logger(name), fields)

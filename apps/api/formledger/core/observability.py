"""
Structured JSON-line events.

Contract keys: ts, level, message, request_id, event, module.
"""
from __future__ import annotations

import datetime
import json
import logging
from typing import Any, Dict, Optional

from formledger.core.settings import LOG_LEVEL

_log = logging.getLogger("formledger")
if not logging.getLogger().handlers:
    logging.basicConfig(level=LOG_LEVEL)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "audit": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_last_error: Optional[Dict[str, Any]] = None


def now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def emit(level: str, event: str, message: str, request_id: Optional[str] = None, module: str = "formledger", **extra: Any) -> Dict[str, Any]:
    global _last_error
    payload: Dict[str, Any] = {
        "ts": now_iso(),
        "level": level.lower(),
        "message": message,
        "request_id": request_id,
        "event": event,
        "module": module,
    }
    payload.update(extra)
    _log.log(_LEVELS.get(level.lower(), logging.INFO), json.dumps(payload, ensure_ascii=False, default=str))
    if level.lower() == "error":
        _last_error = {"ts": payload["ts"], "event": event, "message": message}
    return payload


def last_error_summary() -> Optional[Dict[str, Any]]:
    return _last_error

# eea/logging.py
from __future__ import annotations

import contextvars
import datetime as _dt
import json
import logging
import os
import sys
import traceback
import uuid
from typing import Any, Dict, Optional

# ---------- Module-level config (env-driven, safe defaults) ----------
_LOG_SCHEMA = "eea.log.v1"
_LOG_SERVICE = os.environ.get("EEA_SERVICE_NAME", "eea-tool")

# Max bytes per field (truncate to keep JSON small)
try:
    _MAX_FIELD = int(os.environ.get("EEA_LOG_MAX_FIELD", "8192"))
    _MAX_FIELD = max(512, _MAX_FIELD)
except ValueError:
    _MAX_FIELD = 8192

# Redaction keys (case-insensitive, for headers / obvious secrets)
_REDACT_KEYS = {
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
}

# Envelope fields picked from the bound context or from `extra=`
_ENVELOPE_FIELDS = (
    "req_id",
    "key_id",
    "route",
    "method",
    "status",
    "latency_ms",
    "event_hash_prefix",
    "error_code",
)

# ---------- Context management ----------
_log_ctx: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "eea_log_ctx", default={}
)


def bind(**fields: Any) -> None:
    """Merge fields into the current logging context (per-coroutine)."""
    cur = dict(_log_ctx.get())
    for k, v in fields.items():
        if v is None:
            continue
        cur[str(k)] = v
    _log_ctx.set(cur)


def unbind(*keys: str) -> None:
    cur = dict(_log_ctx.get())
    for k in keys:
        cur.pop(k, None)
    _log_ctx.set(cur)


def reset() -> None:
    _log_ctx.set({})


def context() -> Dict[str, Any]:
    return dict(_log_ctx.get())


# ---------- Helpers ----------
def _ts_iso() -> str:
    # RFC3339 with milliseconds, UTC Z
    now = _dt.datetime.now(_dt.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _compact_json(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)


def _truncate(v: Any) -> Any:
    if isinstance(v, str) and len(v) > _MAX_FIELD:
        return v[:_MAX_FIELD] + "...<truncated>"
    return v


def scrub_dict(d: Dict[str, Any]) -> Dict[str, Any]:
    """
    Scrub obvious secrets from a dict (typically HTTP headers).

    Keys listed in `_REDACT_KEYS` get replaced by "***". Nested dictionaries
    are scrubbed recursively.
    """
    out: Dict[str, Any] = {}
    for k, v in (d or {}).items():
        if str(k).lower() in _REDACT_KEYS:
            out[k] = "***"
        else:
            out[k] = v if not isinstance(v, dict) else scrub_dict(v)
    return out


class JSONFormatter(logging.Formatter):
    """
    One compact JSON object per record.

    Envelope: schema, service, ts, lvl, logger, msg, then any of
    req_id, key_id, route, method, status, latency_ms, event_hash_prefix,
    error_code found in the bound context or on the record, then
    exc_type / exc_message / stack when an exception is attached.
    """

    def __init__(self, *, service: str = _LOG_SERVICE, include_stack: bool = True):
        super().__init__()
        self.service = service
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        ctx = context()
        evt: Dict[str, Any] = {
            "schema": _LOG_SCHEMA,
            "service": self.service,
            "ts": _ts_iso(),
            "lvl": record.levelname,
            "logger": record.name,
            "msg": _truncate(str(record.getMessage())),
        }

        for name in _ENVELOPE_FIELDS:
            v = getattr(record, name, None)
            if v is None:
                v = ctx.get(name)
            if v is not None and v != "":
                evt[name] = _truncate(v)

        if record.exc_info and self.include_stack:
            exc_type, exc_val, exc_tb = record.exc_info
            evt["exc_type"] = getattr(exc_type, "__name__", str(exc_type))
            evt["exc_message"] = str(exc_val)[:_MAX_FIELD]
            evt["stack"] = "".join(
                traceback.format_exception(exc_type, exc_val, exc_tb)
            )[:_MAX_FIELD]

        return _compact_json(evt)


# ---------- Uvicorn/Root integration ----------
_configured = False


class _StderrHandler(logging.StreamHandler):
    """StreamHandler that resolves sys.stderr at emit time."""

    def __init__(self) -> None:
        logging.Handler.__init__(self)

    @property
    def stream(self):  # type: ignore[override]
        return sys.stderr

    @stream.setter
    def stream(self, value) -> None:
        pass


def _clear_handlers(logger: logging.Logger) -> None:
    for h in list(logger.handlers):
        logger.removeHandler(h)


def configure_json_logging(
    level: str = "INFO",
    *,
    service: str = _LOG_SERVICE,
    include_uvicorn: bool = True,
    stream: Any = None,
    include_stack: bool = True,
) -> logging.Logger:
    """
    Configure root (+ optionally uvicorn) for JSON output on stderr.
    """
    global _configured
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    h = logging.StreamHandler(stream=stream) if stream is not None else _StderrHandler()
    h.setFormatter(JSONFormatter(service=service, include_stack=include_stack))
    h.setLevel(lvl)

    root = logging.getLogger()
    root.setLevel(lvl)
    _clear_handlers(root)
    root.addHandler(h)

    if include_uvicorn:
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            lg = logging.getLogger(name)
            lg.setLevel(lvl)
            _clear_handlers(lg)
            lg.addHandler(h)
            lg.propagate = False

    _configured = True
    return root


# ---------- Request helpers ----------
def new_request_id() -> str:
    """
    Fresh request id, bound into context immediately.

    Client-supplied ids are not honored; every request gets its own.
    """
    rid = str(uuid.uuid4())
    bind(req_id=rid)
    return rid


def log_request(
    logger: logging.Logger,
    *,
    request_id: str,
    method: str,
    route: str,
    status: int,
    latency_ms: float,
    key_id: Optional[str] = None,
    event_hash_prefix: Optional[str] = None,
    error_code: Optional[str] = None,
) -> None:
    """
    Emit the single ``http.request`` line for a finished request.

    Level follows status: error for 5xx, warning for 4xx, info otherwise.
    Never carries bodies, raw keys or canonical events.
    """
    if status >= 500:
        level = logging.ERROR
    elif status >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(
        level,
        "http.request",
        extra={
            "req_id": request_id,
            "key_id": key_id,
            "route": route,
            "method": method,
            "status": int(status),
            "latency_ms": round(float(latency_ms), 3),
            "event_hash_prefix": event_hash_prefix or None,
            "error_code": error_code,
        },
    )


# ---------- Convenience: module-level logger ----------
def get_logger(name: str = "eea") -> logging.Logger:
    """
    Return a named logger, configuring JSON output on first use.
    """
    if not _configured:
        configure_json_logging(level=os.environ.get("EEA_LOG_LEVEL", "INFO"))
    return logging.getLogger(name)


__all__ = [
    "bind",
    "unbind",
    "reset",
    "context",
    "configure_json_logging",
    "get_logger",
    "new_request_id",
    "log_request",
    "JSONFormatter",
    "scrub_dict",
]

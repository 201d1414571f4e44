from __future__ import annotations

import logging
import re
import sys
from contextlib import suppress
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from arkomik.config import get_settings

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
_loading_settings: ContextVar[bool] = ContextVar("loading_settings", default=False)

REDACTED = "***REDACTED***"


def set_request_id(rid: str | None) -> None:
    request_id_var.set(rid)


def set_user_id(uid: str | None) -> None:
    user_id_var.set(uid)


_JWT_RE = re.compile(r"\beyJ[a-zA-Z0-9_\-]+\.[a-zA-Z0-9_\-]+\.[a-zA-Z0-9_\-]+\b")
# Cookie envelopes: iv(24) + tag(32) + ciphertext, all hex.
_ENVELOPE_RE = re.compile(r"\b[0-9a-fA-F]{57,}\b")
_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9_\-\.=]+)")
_KV_RE = re.compile(
    r"(?i)\b(cookie_encryption_key|identity_api_key|access_token|refresh_token|token|secret|password|api_key|apikey)\b\s*=\s*([^\s,;&]+)"
)
_COOKIE_KV_RE = re.compile(r"(?i)\b(arkomik-access-token|arkomik-refresh-token)=([^\s;]+)")

_SENSITIVE_KEYS = {
    "authorization",
    "cookie",
    "set-cookie",
    "apikey",
    "x-api-key",
    "password",
    "access_token",
    "refresh_token",
}


def _secret_literals() -> list[str]:
    """
    Return configured secret values that must never appear in logs.
    Best-effort (safe even if settings aren't fully initialized yet).
    """
    # Settings validation logs too; don't re-enter get_settings() from that record.
    if _loading_settings.get():
        return []
    vals: list[str] = []
    token = _loading_settings.set(True)
    try:
        sec = get_settings().secret
        for name in ("cookie_encryption_key", "identity_api_key"):
            v = getattr(sec, name, None)
            if v is not None and hasattr(v, "get_secret_value"):
                raw = str(v.get_secret_value() or "")
                if raw:
                    vals.append(raw)
    except Exception:
        pass
    finally:
        _loading_settings.reset(token)
    # Ignore tiny values to avoid over-redaction.
    return [v for v in dict.fromkeys(vals) if len(v) >= 8]


def _redact_str(s: str) -> str:
    with suppress(Exception):
        for lit in _secret_literals():
            if lit in s:
                s = s.replace(lit, REDACTED)
    s = _COOKIE_KV_RE.sub(lambda m: f"{m.group(1)}={REDACTED}", s)
    s = _JWT_RE.sub(REDACTED, s)
    s = _ENVELOPE_RE.sub(REDACTED, s)
    s = _BEARER_RE.sub(f"Bearer {REDACTED}", s)
    s = _KV_RE.sub(lambda m: f"{m.group(1)}={REDACTED}", s)
    return s


def safe_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """
    Copy of a header/metadata dict that is safe to log.
    Sensitive keys are replaced wholesale; other strings are scrubbed.
    """
    out: dict[str, Any] = {}
    for k, v in (data or {}).items():
        if str(k).strip().lower() in _SENSITIVE_KEYS:
            out[k] = REDACTED
        elif isinstance(v, str):
            out[k] = _redact_str(v)
        elif isinstance(v, dict):
            out[k] = safe_log_data(v)
        else:
            out[k] = v
    return out


def redact_event(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    for k, v in list(event_dict.items()):
        if isinstance(v, str):
            event_dict[k] = _redact_str(v)
    return event_dict


def add_contextvars(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    rid = request_id_var.get()
    uid = user_id_var.get()
    if rid:
        event_dict.setdefault("request_id", rid)
    if uid:
        event_dict.setdefault("user_id", uid)
    return event_dict


def rename_event_to_msg(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    if "msg" not in event_dict and "event" in event_dict:
        event_dict["msg"] = event_dict.pop("event")
    return event_dict


def _configure_structlog() -> structlog.stdlib.BoundLogger:
    s = get_settings()
    level = str(s.log_level).upper()

    root = logging.getLogger()
    root.setLevel(level)

    # Avoid duplicates if re-imported
    if getattr(root, "_arkomik_structlog_configured", False):
        return structlog.get_logger("arkomik")

    foreign_pre_chain = [
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
        structlog.stdlib.add_log_level,
        add_contextvars,
        redact_event,
        structlog.processors.format_exc_info,
        rename_event_to_msg,
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=foreign_pre_chain,
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    root.handlers.clear()
    root.addHandler(stream_handler)

    if s.log_dir:
        log_path = Path(s.log_dir) / "app.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=int(s.log_max_bytes),
            backupCount=int(s.log_backup_count),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.stdlib.add_log_level,
            add_contextvars,
            redact_event,
            structlog.processors.format_exc_info,
            rename_event_to_msg,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root._arkomik_structlog_configured = True
    return structlog.get_logger("arkomik")


logger = _configure_structlog()


def set_log_level(level: str) -> None:
    """
    Best-effort runtime log level override (CLI convenience).
    Does not change handlers/formatters; only raises/lowers filtering level.
    """
    lvl = getattr(logging, str(level).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(lvl)
    for h in root.handlers:
        with suppress(Exception):
            h.setLevel(lvl)

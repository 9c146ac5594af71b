"""
Logging for the custom-domain service

JSON lines in production and staging, a one-line human format elsewhere.
Every record carries the request id and resolved organization from the
context variables below. Verification tokens are secrets until the TXT
record is published, so they are masked in messages, extra fields and
tracebacks alike.
"""

import json
import logging
import re
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Optional, TextIO

from app.config import settings

# ── Request context ──
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
organization_id_ctx: ContextVar[str] = ContextVar("organization_id", default="-")
user_id_ctx: ContextVar[str] = ContextVar("user_id", default="-")

# `extra=` keys copied into JSON output
EXTRA_FIELDS = ("domain", "outcome", "status_code", "duration_ms")


def generate_request_id() -> str:
    return str(uuid.uuid4())[:8]


# ═══════════════════════════════════════════
#  Secret Masking
# ═══════════════════════════════════════════

# secrets.token_hex(32)
_HEX_TOKEN = re.compile(r"\b[0-9a-fA-F]{64}\b")
_EMAIL = re.compile(r"([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
_SECRET_KEYS = r"verification_?token|token|password|secret"

_REDACT_PATTERNS = [
    # "key": "value" and key=value / key: value
    (re.compile(rf'("?(?:{_SECRET_KEYS}|authorization)"?\s*[:=]\s*)"[^"]*"', re.I), r'\1"***"'),
    (re.compile(rf"\b((?:{_SECRET_KEYS})\s*[:=]\s*)(?![\"\s*])[^\s,;&]+", re.I), r"\1***"),
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._-]+"), r"\1***"),
]


def _mask_email(match: re.Match) -> str:
    local, domain = match.group(1), match.group(2)
    if len(local) <= 2:
        return f"{local[0]}***@{domain}"
    return f"{local[0]}***{local[-1]}@{domain}"


def _mask_hex_token(match: re.Match) -> str:
    return f"{match.group(0)[:4]}…"


def mask_pii(text: str) -> str:
    """Mask verification tokens, credentials and email addresses."""
    for pattern, replacement in _REDACT_PATTERNS:
        text = pattern.sub(replacement, text)
    text = _HEX_TOKEN.sub(_mask_hex_token, text)
    return _EMAIL.sub(_mask_email, text)


# ═══════════════════════════════════════════
#  Formatters
# ═══════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S.000Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": mask_pii(record.getMessage()),
            "request_id": request_id_ctx.get(),
            "organization_id": organization_id_ctx.get(),
            "user_id": user_id_ctx.get(),
        }
        for field in EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = mask_pii(value) if isinstance(value, str) else value

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = mask_pii(self.formatException(record.exc_info))

        entry = {k: v for k, v in entry.items() if v not in (None, "", "-")}
        return json.dumps(entry, ensure_ascii=False, default=str)


class HumanFormatter(logging.Formatter):
    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | [%(request_id)s %(organization_id)s] %(message)s"

    def format(self, record: logging.LogRecord) -> str:
        record.request_id = request_id_ctx.get()
        record.organization_id = organization_id_ctx.get()
        return mask_pii(super().format(record))


# ═══════════════════════════════════════════
#  Setup
# ═══════════════════════════════════════════

def _default_level() -> int:
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL.upper())
    if settings.is_production or settings.is_staging:
        return logging.INFO
    return logging.DEBUG


def setup_logging(json_output: Optional[bool] = None, stream: Optional[TextIO] = None) -> None:
    """
    Replace the root handlers with one stream handler.

    ``json_output`` and ``stream`` override LOG_JSON / the environment
    default and stdout; the operator CLI logs human lines to stderr so its
    own output stays on stdout.
    """
    if json_output is None:
        json_output = settings.LOG_JSON
    if json_output is None:
        json_output = settings.is_production or settings.is_staging

    root = logging.getLogger()
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(HumanFormatter(HumanFormatter.FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(handler)
    root.setLevel(_default_level())

    # dnspython and the HTTP client are chatty at DEBUG
    for name in ("uvicorn.access", "httpcore", "httpx", "asyncio", "dns"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)

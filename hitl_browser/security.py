"""Output sanitization boundary.

Everything that leaves the process (tool results, run projections, audit
records, model prompts) goes through here first:

- ``sanitize_output`` drops keys that name credentials, storage or contact
  details and redacts phone numbers and e-mail addresses inside strings.
- ``guard_serialize`` serializes a sanitized value and refuses to emit text that
  still carries a credential marker. Offending list entries (result records,
  steps) are filtered out first; only if the marker survives that does it raise.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from typing import Any

from pydantic import BaseModel

from .errors import SensitiveOutputError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

# Matched against the key with separators removed, so user_data_dir == userDataDir.
SENSITIVE_KEY_PATTERN = re.compile(
    r"(cookie|localstorage|sessionstorage|storagestate|userdata(dir)?|password|token"
    r"|qr|private|message|dm|phone|email)",
    re.IGNORECASE,
)
SENSITIVE_VALUE_PATTERN = re.compile(
    r"(cookie=|localstorage|sessionstorage|storagestate|user_?data(_?dir)?|password|token)",
    re.IGNORECASE,
)

_KEY_SEPARATORS = re.compile(r"[\s_\-]+")
_WHITESPACE = re.compile(r"\s+")
_CN_MOBILE = re.compile(r"\b1\d{10}\b")
_INTL_PHONE = re.compile(r"\+\d{1,3}[\s-]?\(?\d{2,4}\)?[\s-]?\d{3,4}[\s-]?\d{3,4}\b")
_US_PHONE = re.compile(r"\(\d{3}\)\s?\d{3}-\d{4}\b")
_EMAIL = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)

PHONE_PLACEHOLDER = "[REDACTED_PHONE]"
EMAIL_PLACEHOLDER = "[REDACTED_EMAIL]"


def is_sensitive_key(key: str) -> bool:
    return bool(SENSITIVE_KEY_PATTERN.search(_KEY_SEPARATORS.sub("", key or "")))


def redact_text(text: str) -> str:
    """Collapse whitespace and replace phone numbers and e-mails with placeholders."""
    output = _WHITESPACE.sub(" ", text).strip()
    output = _CN_MOBILE.sub(PHONE_PLACEHOLDER, output)
    output = _INTL_PHONE.sub(PHONE_PLACEHOLDER, output)
    output = _US_PHONE.sub(PHONE_PLACEHOLDER, output)
    output = _EMAIL.sub(EMAIL_PLACEHOLDER, output)
    return output


def _sanitize_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, BaseModel):
        return _sanitize_value(value.model_dump(mode="json"))
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(item) for item in value]
    if isinstance(value, dict):
        return {
            key: _sanitize_value(item)
            for key, item in value.items()
            if not is_sensitive_key(str(key))
        }
    return value


def sanitize_output(value: Any) -> Any:
    """Return a redacted copy of ``value``. The input is never mutated."""
    return _sanitize_value(value)


def _dumps(value: Any, indent: int | None = None) -> str:
    return json.dumps(value, indent=indent, ensure_ascii=False, default=str)


def _drop_leaking_entries(value: Any) -> Any:
    if isinstance(value, list):
        kept = []
        for item in value:
            item = _drop_leaking_entries(item)
            if SENSITIVE_VALUE_PATTERN.search(_dumps(item)):
                continue
            kept.append(item)
        return kept
    if isinstance(value, dict):
        return {key: _drop_leaking_entries(item) for key, item in value.items()}
    return value


def guard_serialize(value: Any) -> str:
    """Serialize ``value`` for output, never emitting credential-shaped text.

    Raises:
        SensitiveOutputError: if a credential marker survives entry filtering.
    """
    sanitized = sanitize_output(value)
    text = _dumps(sanitized, indent=2)
    if not SENSITIVE_VALUE_PATTERN.search(text):
        return text

    filtered = _drop_leaking_entries(sanitized)
    text = _dumps(filtered, indent=2)
    match = SENSITIVE_VALUE_PATTERN.search(text)
    if match is None:
        logger.warning("[guard] Dropped list entries carrying sensitive markers.")
        return text

    logger.error(
        f"[guard] Sensitive output blocked: marker '{match.group(0)}' "
        f"in {len(text)} chars of output."
    )
    raise SensitiveOutputError("Sensitive data detected in output.")

"""Secret redaction for audit payloads.

Everything written to the audit log passes through ``sanitize_audit_payload``
first. Two layers:

1. Keys: any dict key whose normalized name contains a sensitive fragment
   (token, secret, password, ...) has its value replaced, whatever its type.
2. Strings: inline credentials (``Bearer <x>``, ``token=<x>``) and quoted
   pairs whose key is sensitive (``"api_key": "<x>"``, as in malformed JSON
   or provider error bodies) are redacted, and the result is capped in length.

Output is always JSON-compatible. Sanitizing an already-sanitized payload
returns it unchanged.
"""

from __future__ import annotations

import json
import re
from typing import Any

REDACTED_VALUE = "[REDACTED]"
TRUNCATED_VALUE = "[TRUNCATED]"
MAX_DEPTH = 6
MAX_STRING_LENGTH = 2000

SENSITIVE_KEY_FRAGMENTS: tuple[str, ...] = (
    "token",
    "key",
    "secret",
    "password",
    "credential",
    "authorization",
    "apikey",
    "accesstoken",
    "refreshtoken",
    "cookie",
    "passphrase",
)

_KEY_SEPARATORS = re.compile(r"[\s_\-]+")

# "key": "value", 'key': value, "key"=value. The closing quote of the value is
# optional so a truncated JSON fragment still has its tail redacted.
_QUOTED_PAIR = re.compile(
    r"""(["'])([^"'\n]{1,64})\1(\s*[:=]\s*)"""
    r"""(?:"(?:\\.|[^"\\])*"?|'(?:\\.|[^'\\])*'?|[^\s,}\]]+)"""
)

_REDACT_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"((?:Bearer|Basic)\s+)[^\s]+", re.IGNORECASE), r"\1" + REDACTED_VALUE),
    (
        re.compile(
            r"(token|secret|password|api[_-]?key|authorization|credentials?|cookie|passphrase)\s*[:=]\s*[\"']?[^\"',\s}]+",
            re.IGNORECASE,
        ),
        r"\1=" + REDACTED_VALUE,
    ),
]


def normalize_key_name(key: Any) -> str:
    """``Access-Token`` / ``access_token`` / ``ACCESS TOKEN`` → ``accesstoken``."""
    return _KEY_SEPARATORS.sub("", str(key).lower())


def is_sensitive_key(key: Any) -> bool:
    normalized = normalize_key_name(key)
    return any(fragment in normalized for fragment in SENSITIVE_KEY_FRAGMENTS)


def _redact_quoted_pair(match: re.Match[str]) -> str:
    quote, key, separator = match.group(1), match.group(2), match.group(3)
    if not is_sensitive_key(key):
        return match.group(0)
    return f'{quote}{key}{quote}{separator}"{REDACTED_VALUE}"'


def redact_inline_secrets(text: str) -> str:
    text = _QUOTED_PAIR.sub(_redact_quoted_pair, text)
    for pattern, replacement in _REDACT_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_string(text: str, max_length: int = MAX_STRING_LENGTH) -> str:
    """Redact inline secrets, then cap the length.

    Applied until stable so a cut through a redaction marker cannot change
    on a second pass.
    """
    for _ in range(4):
        cleaned = redact_inline_secrets(text)[:max_length]
        if cleaned == text:
            break
        text = cleaned
    return text


def _walk(value: Any, depth: int) -> Any:
    if depth > MAX_DEPTH:
        return TRUNCATED_VALUE

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        return sanitize_string(value)

    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for key, item in value.items():
            name = str(key)
            if is_sensitive_key(name):
                out[name] = REDACTED_VALUE
            else:
                out[name] = _walk(item, depth + 1)
        return out

    if isinstance(value, (list, tuple, set, frozenset)):
        return [_walk(item, depth + 1) for item in value]

    return sanitize_string(str(value))


def sanitize_audit_payload(value: Any) -> Any:
    """Return a redacted, depth-limited, JSON-compatible copy of *value*."""
    return _walk(value, 0)


def parse_and_sanitize_arguments(raw: Any) -> Any:
    """Sanitize tool arguments that may arrive as JSON text.

    Malformed JSON is kept as a sanitized string rather than rejected.
    """
    if raw is None:
        return {}
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            return sanitize_string(raw)
    return sanitize_audit_payload(raw)

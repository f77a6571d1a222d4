"""PII / secret / stack-trace sanitizer for log output.

Three-tier string processing:
 1. > MAX_STR_LOG   → truncate + sha256, never run regex
 2. > MAX_STR_FOR_REGEX → prefix check only (Bearer)
 3. ≤ MAX_STR_FOR_REGEX → full regex replacement

Invitation tokens and Supabase session tokens travel in URLs
(?token=..., #access_token=...), so URL-shaped patterns are covered too.
Email addresses are masked rather than dropped so support can still
correlate an invitation with its recipient.
"""

import hashlib
import re
import traceback
from typing import Any

# ── Size thresholds ───────────────────────────────────────────────────────────
MAX_STR_LOG: int = 2048
MAX_STR_FOR_REGEX: int = 512
MAX_DEPTH: int = 6

# ── Sensitive dict keys (lower-cased for comparison) ─────────────────────────
_SENSITIVE_KEYS: frozenset[str] = frozenset({
    "authorization", "token", "access_token", "refresh_token",
    "invitation_token", "password", "new_password", "secret",
    "api_key", "apikey", "cookie", "phone", "customer_phone",
    "business_phone",
})

_EMAIL_KEYS: frozenset[str] = frozenset({
    "email", "admin_email", "customer_email", "billing_email",
    "business_email", "invitee_email",
})

_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"Bearer \S+"),
    re.compile(r"(?<![A-Za-z_])token=[^&\s#]+"),
    re.compile(r"access_token=[^&\s#]+"),
    re.compile(r"refresh_token=[^&\s#]+"),
    re.compile(r"password=[^&\s#]+"),
]

_EMAIL_RE = re.compile(r"^([^@\s]{1,64})@([^@\s]+)$")

_BEARER_PREFIX = "Bearer "


def mask_email(email: Any) -> Any:
    """Mask the local part of an email address (admin@biz.com → a***@biz.com)."""
    if not isinstance(email, str):
        return email
    match = _EMAIL_RE.match(email.strip())
    if not match:
        return "[REDACTED]"
    local, domain = match.groups()
    return f"{local[0]}***@{domain}"


def sanitize_str(s: str) -> str:
    """Sanitize a string value according to three-tier size gate."""
    if not isinstance(s, str):
        return s  # type: ignore[return-value]

    n = len(s)

    if n > MAX_STR_LOG:
        digest = hashlib.sha256(s.encode("utf-8", errors="replace")).hexdigest()[:16]
        return f"[TRUNCATED len={n} sha256={digest}]"

    if n > MAX_STR_FOR_REGEX:
        if s.startswith(_BEARER_PREFIX):
            return "[REDACTED]"
        return s

    result = s
    for pattern in _PATTERNS:
        result = pattern.sub("[REDACTED]", result)
    return result


def sanitize_obj(obj: Any, depth: int = 0) -> Any:
    """Recursively sanitize a log extra value.

    - dict: redact sensitive keys, mask email keys, recurse others
    - list/tuple: recurse each element
    - str: run sanitize_str()
    - other: return as-is
    """
    if depth >= MAX_DEPTH:
        return "[DEPTH_LIMIT]"

    if isinstance(obj, dict):
        result: dict[str, Any] = {}
        for key, value in obj.items():
            lowered = key.lower() if isinstance(key, str) else key
            if lowered in _SENSITIVE_KEYS:
                result[key] = "[REDACTED]"
            elif lowered in _EMAIL_KEYS:
                result[key] = mask_email(value)
            else:
                result[key] = sanitize_obj(value, depth + 1)
        return result

    if isinstance(obj, (list, tuple)):
        return [sanitize_obj(item, depth + 1) for item in obj]

    if isinstance(obj, str):
        return sanitize_str(obj)

    return obj


def sanitize_exc(exc_info: tuple) -> str:
    """Format an exc_info tuple into a sanitized traceback string.

    capture_locals=False keeps local variable values (tokens, passwords)
    out of the output.
    """
    _type, value, _tb = exc_info
    if value is None:
        return ""
    te = traceback.TracebackException.from_exception(value, capture_locals=False)
    return sanitize_str("".join(te.format()))

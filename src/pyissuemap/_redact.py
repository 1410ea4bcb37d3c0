"""Redaction for DEBUG request logging.

Every backend call carries the API key and usually a user bearer token;
geocoder calls carry their token as a query parameter. Nothing from those
should reach a log handler.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

REDACTED = "<redacted>"
MAX_DEPTH = 20

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "apikey",
        "api_key",
        "access_token",
        "accesstoken",
        "refresh_token",
        "token",
        "password",
        "authorization",
        "cookie",
        "set-cookie",
    }
)


def is_secret_key(key: object) -> bool:
    return str(key).lower() in _SECRET_KEYS


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else f"{text[:limit]}…<truncated>"


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Copy *value* with secret-named keys masked and long strings clipped."""
    if _depth > MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _clip(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        return {
            str(key): REDACTED if is_secret_key(key) else redact_for_log(item, max_string=max_string, _depth=_depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)


def redact_query(params: Mapping[str, Any] | None) -> dict[str, Any]:
    """Mask secret query-string parameters; values are left unclipped."""
    if not params:
        return {}
    return {str(key): REDACTED if is_secret_key(key) else item for key, item in params.items()}

"""Shared utility functions for the streaming client.

This module contains reusable helper functions used across the codebase:
- JSON helpers (_safe_json_loads, _pretty_json)
- Usage normalization, completion and merging
- Retry-After parsing
- Header redaction for log output

These utilities have no intra-package dependencies and can be used by any module.
"""

from __future__ import annotations

import datetime
import email.utils
import json
from typing import Any, Mapping, Optional

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

_SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "x-api-key",
        "anthropic-api-key",
        "openai-api-key",
        "x-auth-token",
        "x-goog-api-key",
        "bearer",
        "api-key",
        "access-token",
    }
)

# -----------------------------------------------------------------------------
# JSON Helpers
# -----------------------------------------------------------------------------


def _pretty_json(value: Any) -> str:
    """Return a human-readable JSON string or an empty string when not applicable."""
    if value is None:
        return ""
    if isinstance(value, (str, bytes)):
        text = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value
        return text.strip()
    try:
        return json.dumps(value, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def _safe_json_loads(payload: Optional[str | bytes]) -> Any:
    """Return parsed JSON or None without raising."""
    if not payload:
        return None
    try:
        return json.loads(payload)
    except (TypeError, ValueError):
        return None


# -----------------------------------------------------------------------------
# Usage Helpers
# -----------------------------------------------------------------------------

USAGE_KEYS = (
    "input_tokens",
    "output_tokens",
    "total_tokens",
    "cached_input_tokens",
    "reasoning_tokens",
)

# (canonical key, source key or dotted path) per provider shape
_OPENAI_USAGE = (
    ("input_tokens", "prompt_tokens"),
    ("output_tokens", "completion_tokens"),
    ("total_tokens", "total_tokens"),
    ("cached_input_tokens", "prompt_tokens_details.cached_tokens"),
    ("reasoning_tokens", "completion_tokens_details.reasoning_tokens"),
)
_ANTHROPIC_USAGE = (
    ("input_tokens", "input_tokens"),
    ("output_tokens", "output_tokens"),
    ("total_tokens", "total_tokens"),
    ("cached_input_tokens", "cache_read_input_tokens"),
    ("cached_input_tokens", "cached_input_tokens"),
    ("cached_input_tokens", "input_tokens_details.cached_tokens"),
    ("reasoning_tokens", "reasoning_tokens"),
    ("reasoning_tokens", "output_tokens_details.reasoning_tokens"),
)
_GOOGLE_USAGE = (
    ("input_tokens", "promptTokenCount"),
    ("output_tokens", "candidatesTokenCount"),
    ("total_tokens", "totalTokenCount"),
    ("cached_input_tokens", "cachedContentTokenCount"),
    ("reasoning_tokens", "thoughtsTokenCount"),
)


def _int_or_zero(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def _lookup(usage: Mapping[str, Any], path: str) -> Any:
    value: Any = usage
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def normalize_usage(usage: Any) -> Any:
    """Normalize a provider usage block into the client's usage shape.

    Recognised shapes:
    - OpenAI: ``prompt_tokens`` / ``completion_tokens`` (+ token detail blocks)
    - Anthropic / Responses API: ``input_tokens`` / ``output_tokens``
    - Google: ``promptTokenCount`` / ``candidatesTokenCount``

    Only counters the provider actually reported are returned, so a partial
    report (Anthropic's ``message_delta`` carries output tokens only) can be
    merged over an earlier one without zeroing it. Unknown shapes are returned
    unchanged so no provider data is lost.
    """
    if not isinstance(usage, Mapping):
        return usage

    if "prompt_tokens" in usage or "completion_tokens" in usage:
        mapping = _OPENAI_USAGE
    elif "input_tokens" in usage or "output_tokens" in usage:
        mapping = _ANTHROPIC_USAGE
    elif "promptTokenCount" in usage or "candidatesTokenCount" in usage:
        mapping = _GOOGLE_USAGE
    else:
        return dict(usage)

    normalized: dict[str, Any] = {}
    for key, path in mapping:
        value = _lookup(usage, path)
        if value is not None and key not in normalized:
            normalized[key] = _int_or_zero(value)
    for cost_key in ("cost", "total_cost"):
        cost = usage.get(cost_key)
        if isinstance(cost, (int, float)) and not isinstance(cost, bool):
            normalized["total_cost"] = cost
    return normalized


def complete_usage(usage: Mapping[str, Any]) -> dict[str, Any]:
    """Fill missing canonical counters with zero and derive ``total_tokens``."""
    completed = dict(usage)
    for key in USAGE_KEYS:
        completed.setdefault(key, 0)
    if not usage.get("total_tokens"):
        completed["total_tokens"] = _int_or_zero(completed["input_tokens"]) + _int_or_zero(
            completed["output_tokens"]
        )
    return completed


def merge_usage(total: dict[str, Any], new: Mapping[str, Any]) -> dict[str, Any]:
    """Merge a newly reported usage block into ``total`` (last write wins per key).

    Nested dicts are merged recursively; ``None`` never overwrites a known value.

    Args:
        total: Accumulator dictionary to update.
        new:   Newly reported usage block to merge into `total`.

    Returns:
        dict: The updated accumulator dictionary (`total`).
    """
    for key, value in new.items():
        if isinstance(value, Mapping):
            existing = total.get(key)
            total[key] = merge_usage(dict(existing) if isinstance(existing, Mapping) else {}, value)
        elif value is not None:
            total[key] = value
    return total


# -----------------------------------------------------------------------------
# HTTP Helpers
# -----------------------------------------------------------------------------


def _retry_after_seconds(value: Optional[str]) -> Optional[float]:
    """Convert Retry-After header value into seconds."""
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    try:
        seconds = float(trimmed)
        return max(0.0, seconds)
    except ValueError:
        pass
    try:
        dt = email.utils.parsedate_to_datetime(trimmed)
        if dt is None:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=datetime.timezone.utc)
        now = datetime.datetime.now(datetime.timezone.utc)
        seconds = (dt - now).total_seconds()
        return max(0.0, seconds)
    except (TypeError, ValueError, OverflowError):
        return None


def redact_headers(headers: Any) -> dict[str, str]:
    """Return a copy of ``headers`` with credential-bearing values masked."""
    if headers is None:
        return {}
    items = headers.items() if isinstance(headers, Mapping) else headers
    redacted: dict[str, str] = {}
    for name, value in items:
        key = str(name)
        if key.lower() in _SENSITIVE_HEADERS:
            redacted[key] = f"[REDACTED:{key.lower()}]"
        else:
            redacted[key] = str(value)
    return redacted

"""Textual classification of engine failures (rate limits, policy blocks, infrastructure)."""

from __future__ import annotations

RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "usage limit",
    "you've hit your limit",
    "quota",
    "429",
    "too many requests",
)

POLICY_BLOCK_PATTERNS: tuple[str, ...] = (
    "blocked by policy",
    "read-only sandbox",
    "approval_policy",
)

EXTERNAL_FAILURE_PATTERNS: tuple[str, ...] = (
    "command not found",
    "not found in path",
    "enoent",
    "eacces",
    "permission denied",
    "network",
    "timeout",
    "tls",
    "econnreset",
    "etimedout",
    "certificate",
    "ssl",
)


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(pattern in lower for pattern in patterns)


def looks_like_rate_limit(text: str) -> bool:
    """Return ``True`` when text matches a rate/usage/quota limit."""
    if not text:
        return False
    return _contains_any(text, RATE_LIMIT_PATTERNS)


def looks_like_policy_block(text: str) -> bool:
    """Return ``True`` when text indicates policy/sandbox blocking."""
    if not text:
        return False
    return _contains_any(text, POLICY_BLOCK_PATTERNS)


def looks_like_external_failure(text: str) -> bool:
    """Return ``True`` when failure looks infrastructural rather than a task problem."""
    if not text:
        return False
    if looks_like_rate_limit(text) or looks_like_policy_block(text):
        return True
    return _contains_any(text, EXTERNAL_FAILURE_PATTERNS)


def classify_failure(text: str) -> str:
    """One-word label for a failure message: rate-limit, policy, external or internal."""
    if looks_like_rate_limit(text):
        return "rate-limit"
    if looks_like_policy_block(text):
        return "policy"
    if looks_like_external_failure(text):
        return "external"
    return "internal"

"""Regex redaction of sensitive value shapes in task text."""

from __future__ import annotations

import re

SSN_MASK = "***-**-****"
CARD_MASK = "****-****-****-****"
EMAIL_PLACEHOLDER = "[email]"
PHONE_PLACEHOLDER = "[phone]"

# Applied in order; later rules see the output of earlier ones.
REDACTION_RULES: tuple[tuple[str, re.Pattern[str], str], ...] = (
    ("ssn", re.compile(r"\d{3}-\d{2}-\d{4}"), SSN_MASK),
    ("card", re.compile(r"\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}"), CARD_MASK),
    (
        "email",
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        EMAIL_PLACEHOLDER,
    ),
    ("phone", re.compile(r"\b\d{10}\b"), PHONE_PLACEHOLDER),
)


def redact(text: str) -> str:
    sanitized = text
    for _, pattern, replacement in REDACTION_RULES:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def redaction_counts(text: str) -> dict[str, int]:
    """Count substitutions per rule without exposing the matched values."""
    counts: dict[str, int] = {}
    sanitized = text
    for name, pattern, replacement in REDACTION_RULES:
        sanitized, count = pattern.subn(replacement, sanitized)
        if count:
            counts[name] = count
    return counts


sanitize_task = redact

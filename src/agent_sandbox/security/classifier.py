"""Lexical classifier for restricted task content and destinations.

Rules are plain data: an ordered mapping of category name to a compiled
case-insensitive pattern, followed by a list of destination substrings.
Evaluation stops at the first match. Matching has no notion of negation,
so "do not enter my password" is blocked as well.
"""

from __future__ import annotations

import re
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict

RESTRICTED_CONTENT_PATTERNS: MappingProxyType[str, re.Pattern[str]] = MappingProxyType(
    {
        # Financial / payment
        "visa": re.compile(
            r"visa|credit\s*card|debit\s*card|payment\s*method|billing\s*address",
            re.IGNORECASE,
        ),
        "banking": re.compile(
            r"bank\s*account|account\s*number|routing\s*number|swift\s*code",
            re.IGNORECASE,
        ),
        "crypto": re.compile(
            r"wallet|private\s*key|seed\s*phrase|crypto|bitcoin|ethereum",
            re.IGNORECASE,
        ),
        # Personal data
        "ssn": re.compile(
            r"ssn|social\s*security|tax\s*id|passport|driver.*license",
            re.IGNORECASE,
        ),
        "personal": re.compile(
            r"phone\s*number|home\s*address|date\s*of\s*birth|mother.*maiden",
            re.IGNORECASE,
        ),
        # Authentication
        "password": re.compile(
            r"password|pin|secret|token|api.*key|auth.*code",
            re.IGNORECASE,
        ),
        "oauth": re.compile(
            r"oauth|login|signin|authentication|2fa|two.*factor",
            re.IGNORECASE,
        ),
        # Medical
        "health": re.compile(
            r"medical|health\s*record|prescription|diagnosis|patient\s*id",
            re.IGNORECASE,
        ),
        # Legal / government
        "legal": re.compile(
            r"court\s*record|arrest|criminal|lawsuit|legal\s*document",
            re.IGNORECASE,
        ),
    }
)

RESTRICTED_DESTINATIONS: tuple[str, ...] = (
    "paypal.com",
    "stripe.com",
    "square.com",
    "amazon.com/account",
    "google.com/account",
    "facebook.com/settings",
    "twitter.com/settings",
    "linkedin.com/settings",
    "banking",
    "creditcard",
    "cryptocurrency",
)


class SecurityDecision(BaseModel):
    """Outcome of classifying one task text."""

    model_config = ConfigDict(frozen=True)

    safe: bool
    reason: str | None = None
    category: str | None = None


def classify(text: Any) -> SecurityDecision:
    """Return the first restricted category or destination found in ``text``."""
    candidate = text if isinstance(text, str) else str(text)

    for category, pattern in RESTRICTED_CONTENT_PATTERNS.items():
        if pattern.search(candidate):
            return SecurityDecision(
                safe=False,
                reason=f"Task contains restricted content: {category}",
                category=category,
            )

    lowered = candidate.lower()
    for domain in RESTRICTED_DESTINATIONS:
        if domain in lowered:
            return SecurityDecision(
                safe=False,
                reason=f"Access to {domain} is restricted for security",
                category=domain,
            )

    return SecurityDecision(safe=True)


validate_task_security = classify

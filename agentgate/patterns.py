"""
Pattern Library
Fixed detectors for sensitive data and the default blocked-keyword list.

Pure data: nothing here holds state. Rules reference these lists by value
when the default rule set is built.
"""

from __future__ import annotations

import re

DEFAULT_REPLACEMENT = "[REDACTED]"

# ---------------------------------------------------------------------------
# Sensitive data (applied by sanitize-mode content filters)
# ---------------------------------------------------------------------------

SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    # Personal data
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),                              # SSN
    re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),          # card number
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),  # email

    # Credential assignments
    re.compile(r"password\s*[:=]\s*[^\s]+", re.IGNORECASE),
    re.compile(r"api[_-]?key\s*[:=]\s*[^\s]+", re.IGNORECASE),
    re.compile(r"secret\s*[:=]\s*[^\s]+", re.IGNORECASE),
    re.compile(r"token\s*[:=]\s*[^\s]+", re.IGNORECASE),

    # Destructive commands
    re.compile(r"rm\s+-rf\s+[^\s]+", re.IGNORECASE),
    re.compile(r"DROP\s+TABLE\s+", re.IGNORECASE),
    re.compile(r"DELETE\s+FROM\s+", re.IGNORECASE),
    re.compile(r"TRUNCATE\s+", re.IGNORECASE),
]

# ---------------------------------------------------------------------------
# Keywords and injection signatures (default rule conditions)
# ---------------------------------------------------------------------------

BLOCKED_KEYWORDS: list[str] = [
    "hack", "exploit", "vulnerability", "backdoor", "malware",
    "phishing", "spam", "fraud", "illegal", "piracy",
    "violence", "hate", "discrimination", "harassment",
]

SQL_INJECTION_PATTERNS: list[str] = [
    "'; DROP TABLE",
    "1' OR '1'='1",
    "UNION SELECT",
    "'; --",
    "' OR 1=1 --",
]

COMMAND_INJECTION_PATTERNS: list[str] = [
    "; rm -rf",
    "&& rm -rf",
    r"\| rm -rf",
    "; cat /etc/passwd",
    "&& wget",
    r"\| curl",
]


def compile_patterns(patterns: list[str]) -> list[re.Pattern[str]]:
    """Compile user-supplied patterns case-insensitively.

    Raises re.error on the first pattern that does not compile.
    """
    return [re.compile(p, re.IGNORECASE) for p in patterns]


def redact(text: str, patterns: list[re.Pattern[str]],
           replacement: str = DEFAULT_REPLACEMENT) -> str:
    """Replace every match with ``replacement`` taken literally (no group references)."""
    for pattern in patterns:
        text = pattern.sub(lambda _match: replacement, text)
    return text

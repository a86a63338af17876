"""
Configuration
Environment-driven settings and the JSON rule file format.

Rule files hold both rule sets:

    {"guardrail_rules": [...], "approval_rules": [...]}

Every field of every rule, nested ``conditions`` and ``config`` included,
survives a dump/load round trip. A missing section means "use the
built-in defaults" for that subsystem.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from agentgate.approval_router import coerce_approval_rule
from agentgate.ledger import DEFAULT_DECISION_LIMIT, DEFAULT_VIOLATION_LIMIT
from agentgate.models import (
    DEFAULT_APPROVAL_TIMEOUT_MS,
    ApprovalRule,
    GuardrailRule,
    InvalidRuleError,
)
from agentgate.rule_engine import coerce_rule

# ---------------------------------------------------------------------------
# Configuration (from env vars with defaults)
# ---------------------------------------------------------------------------

VIOLATION_HISTORY_LIMIT = int(
    os.environ.get("AGENTGATE_VIOLATION_HISTORY_LIMIT", str(DEFAULT_VIOLATION_LIMIT))
)
DECISION_HISTORY_LIMIT = int(
    os.environ.get("AGENTGATE_DECISION_HISTORY_LIMIT", str(DEFAULT_DECISION_LIMIT))
)
APPROVAL_TIMEOUT_MS = int(
    os.environ.get("AGENTGATE_APPROVAL_TIMEOUT_MS", str(DEFAULT_APPROVAL_TIMEOUT_MS))
)
RULES_PATH = os.environ.get("AGENTGATE_RULES_PATH")
LOG_LEVEL = os.environ.get("AGENTGATE_LOG_LEVEL", "INFO")


@dataclass
class Settings:
    violation_history_limit: int = VIOLATION_HISTORY_LIMIT
    decision_history_limit: int = DECISION_HISTORY_LIMIT
    approval_timeout_ms: int = APPROVAL_TIMEOUT_MS
    rules_path: Optional[Path] = Path(RULES_PATH) if RULES_PATH else None
    log_level: str = LOG_LEVEL

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "Settings":
        """Read settings at call time (module constants are read at import)."""
        env = os.environ if environ is None else environ
        rules_path = env.get("AGENTGATE_RULES_PATH")
        return cls(
            violation_history_limit=int(
                env.get("AGENTGATE_VIOLATION_HISTORY_LIMIT", str(DEFAULT_VIOLATION_LIMIT))
            ),
            decision_history_limit=int(
                env.get("AGENTGATE_DECISION_HISTORY_LIMIT", str(DEFAULT_DECISION_LIMIT))
            ),
            approval_timeout_ms=int(
                env.get("AGENTGATE_APPROVAL_TIMEOUT_MS", str(DEFAULT_APPROVAL_TIMEOUT_MS))
            ),
            rules_path=Path(rules_path) if rules_path else None,
            log_level=env.get("AGENTGATE_LOG_LEVEL", "INFO"),
        )


# ---------------------------------------------------------------------------
# Rule files
# ---------------------------------------------------------------------------

@dataclass
class RuleSet:
    guardrail_rules: Optional[list[GuardrailRule]] = None
    approval_rules: Optional[list[ApprovalRule]] = None


def load_rule_file(path: Path | str) -> RuleSet:
    """Load and validate a rule file. Raises InvalidRuleError on bad content."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise InvalidRuleError(f"Rule file {path} is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise InvalidRuleError(f"Rule file {path} must contain a JSON object")

    rule_set = RuleSet()
    if "guardrail_rules" in data:
        rule_set.guardrail_rules = [coerce_rule(r) for r in data["guardrail_rules"]]
    if "approval_rules" in data:
        rule_set.approval_rules = [coerce_approval_rule(r) for r in data["approval_rules"]]
    return rule_set


def dump_rule_file(
    path: Path | str,
    guardrail_rules: Optional[list[GuardrailRule]] = None,
    approval_rules: Optional[list[ApprovalRule]] = None,
) -> None:
    data: dict[str, Any] = {}
    if guardrail_rules is not None:
        data["guardrail_rules"] = [r.model_dump(mode="json") for r in guardrail_rules]
    if approval_rules is not None:
        data["approval_rules"] = [r.model_dump(mode="json") for r in approval_rules]
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

"""
Approval Router
Decides, per approval request, between auto-approve, auto-reject and
escalation to human approvers.

Rules are scanned in registration order and the first enabled rule whose
conditions all hold wins. A rule without conditions matches everything; a
membership condition set to an empty list matches nothing.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from agentgate.models import (
    ApprovalAction,
    ApprovalRequest,
    ApprovalRule,
    InvalidRuleError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Default routing rules
# ---------------------------------------------------------------------------

DEFAULT_APPROVAL_RULES: list[dict[str, Any]] = [
    {
        "id": "high-sensitivity-ops",
        "name": "High Sensitivity Operations",
        "description": "Require approval for high sensitivity operations",
        "conditions": {"sensitivity": ["high", "critical"]},
        "action": "require_approval",
        "required_approvers": 2,
        "timeout": 600_000,             # 10 minutes
    },
    {
        "id": "external-api-calls",
        "name": "External API Calls",
        "description": "Require approval for external API access",
        "conditions": {"operations": ["external_api_call", "web_request", "database_write"]},
        "action": "require_approval",
        "required_approvers": 1,
    },
    {
        "id": "data-deletion",
        "name": "Data Deletion Operations",
        "description": "Always require approval for data deletion",
        "conditions": {"keywords": ["delete", "remove", "drop", "truncate"]},
        "action": "require_approval",
        "required_approvers": 2,
        "timeout": 1_800_000,           # 30 minutes
    },
    {
        "id": "auto-approve-low",
        "name": "Auto Approve Low Sensitivity",
        "description": "Automatically approve low sensitivity read operations",
        "conditions": {"sensitivity": ["low"], "keywords": ["read", "get", "list", "search"]},
        "action": "approve",
    },
]


@dataclass(frozen=True)
class RoutingDecision:
    action: ApprovalAction
    rule: Optional[ApprovalRule]
    request: ApprovalRequest        # with rule overrides applied


def coerce_approval_rule(rule: Union[ApprovalRule, dict[str, Any]]) -> ApprovalRule:
    if isinstance(rule, ApprovalRule):
        return rule
    try:
        return ApprovalRule.model_validate(rule)
    except ValidationError as exc:
        raise InvalidRuleError(f"Invalid approval rule: {exc}") from exc


def rule_matches(rule: ApprovalRule, request: ApprovalRequest) -> bool:
    conditions = rule.conditions

    if conditions.agent_types is not None and request.agent_name not in conditions.agent_types:
        return False
    if conditions.operations is not None and request.operation not in conditions.operations:
        return False
    if conditions.sensitivity is not None and request.sensitivity not in conditions.sensitivity:
        return False

    keywords = [k.strip().lower() for k in (conditions.keywords or []) if k and k.strip()]
    if keywords:
        operation = request.operation.lower()
        description = request.description.lower()
        if not any(k in operation or k in description for k in keywords):
            return False

    return True


class ApprovalRouter:

    def __init__(self, rules: Optional[Iterable[Union[ApprovalRule, dict[str, Any]]]] = None):
        self._rules: list[ApprovalRule] = []
        self._lock = threading.Lock()
        for rule in (DEFAULT_APPROVAL_RULES if rules is None else rules):
            self._rules.append(coerce_approval_rule(rule))
        logger.info("Loaded %d approval rules", len(self._rules))

    def match(self, request: ApprovalRequest) -> Optional[ApprovalRule]:
        with self._lock:
            rules = list(self._rules)
        for rule in rules:
            if rule.enabled and rule_matches(rule, request):
                return rule
        return None

    def route(self, request: ApprovalRequest) -> RoutingDecision:
        """
        Pick the outcome for ``request``.

        For escalations the matched rule's ``required_approvers`` / ``timeout``
        replace the request's own values when the rule sets them.
        """
        rule = self.match(request)
        if rule is None:
            return RoutingDecision(ApprovalAction.REQUIRE_APPROVAL, None, request)
        if rule.action is not ApprovalAction.REQUIRE_APPROVAL:
            return RoutingDecision(rule.action, rule, request)

        overrides: dict[str, Any] = {}
        if rule.required_approvers is not None:
            overrides["required_approvers"] = rule.required_approvers
        if rule.timeout is not None:
            overrides["timeout"] = rule.timeout
        return RoutingDecision(rule.action, rule, request.model_copy(update=overrides))

    # -- administration -----------------------------------------------------

    def add_rule(self, rule: Union[ApprovalRule, dict[str, Any]]) -> str:
        if isinstance(rule, ApprovalRule):
            data = rule.model_dump(exclude={"id"})
        elif isinstance(rule, dict):
            data = {k: v for k, v in rule.items() if k != "id"}
        else:
            raise InvalidRuleError(f"Rule must be a mapping, got {type(rule).__name__}")
        new_rule = coerce_approval_rule(data)
        with self._lock:
            self._rules.append(new_rule)
        logger.info("Added approval rule: %s (%s)", new_rule.name, new_rule.id)
        return new_rule.id

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            for index, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    del self._rules[index]
                    logger.info("Removed approval rule: %s", rule.name)
                    return True
        return False

    def get_rules(self) -> list[ApprovalRule]:
        with self._lock:
            return [rule.model_copy(deep=True) for rule in self._rules]

"""
Admission Pipeline
Composes the guardrail engine and the approval workflow into one gate.

Guardrail validation always runs first. A block ends the flow without
touching the approval workflow; a ``requires_approval`` verdict is turned
into an approval request and routed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from agentgate.approval import ApprovalCoordinator
from agentgate.approval_router import ApprovalRouter
from agentgate.config import Settings, load_rule_file
from agentgate.ledger import DecisionLedger, ViolationLedger
from agentgate.models import (
    ApprovalDecision,
    ApprovalType,
    RuleAction,
    Severity,
    ToolInput,
    ValidationResult,
)
from agentgate.notifications import ApprovalNotifier
from agentgate.rule_engine import GuardrailEngine

logger = logging.getLogger(__name__)


@dataclass
class AdmissionResult:
    allowed: bool
    validation: ValidationResult
    decision: Optional[ApprovalDecision] = None

    @property
    def reason(self) -> Optional[str]:
        if self.decision is not None and not self.decision.approved:
            return self.decision.reason
        if not self.validation.valid:
            return self.validation.reason or "; ".join(self.validation.errors)
        return None


class Gatekeeper:

    def __init__(self, engine: GuardrailEngine, coordinator: ApprovalCoordinator):
        self.engine = engine
        self.coordinator = coordinator

    def _sensitivity_for(self, validation: ValidationResult) -> Severity:
        """Highest severity among the approval-requiring rules that fired."""
        matched = set(validation.matched_rules)
        severities = [
            rule.severity for rule in self.engine.get_rules()
            if rule.id in matched and rule.action is RuleAction.REQUIRE_APPROVAL
        ]
        return max(severities, key=lambda s: s.rank, default=Severity.MEDIUM)

    async def admit_user_input(
        self,
        input: Any,
        identity: Optional[str] = None,
        agent_name: str = "user",
        require_approval: bool = False,
    ) -> AdmissionResult:
        validation = self.engine.validate_user_input(input, identity)
        if not validation.valid:
            return AdmissionResult(allowed=False, validation=validation)
        if not (validation.requires_approval or require_approval):
            return AdmissionResult(allowed=True, validation=validation)

        content = validation.sanitized["content"]
        decision = await self.coordinator.request_approval({
            "type": ApprovalType.SENSITIVE_OPERATION,
            "agent_name": agent_name,
            "operation": "user_input",
            "description": content[:200],
            "context": {"input": validation.sanitized, "identity": identity},
            "sensitivity": self._sensitivity_for(validation),
            "metadata": {"warnings": validation.warnings},
        })
        return AdmissionResult(allowed=decision.approved, validation=validation, decision=decision)

    async def admit_tool_call(
        self,
        input: Any,
        identity: Optional[str] = None,
        description: Optional[str] = None,
        require_approval: bool = False,
    ) -> AdmissionResult:
        validation = self.engine.validate_tool_execution(input, identity)
        if not validation.valid:
            logger.info("Tool call refused by guardrails: %s", validation.reason)
            return AdmissionResult(allowed=False, validation=validation)
        if not (validation.requires_approval or require_approval):
            return AdmissionResult(allowed=True, validation=validation)

        tool_input = ToolInput.model_validate(validation.sanitized)
        decision = await self.coordinator.request_approval({
            "type": ApprovalType.TOOL_EXECUTION,
            "agent_name": tool_input.agent_name,
            "operation": tool_input.tool_name,
            "description": description or f"Execute tool {tool_input.tool_name}",
            "context": {"parameters": tool_input.parameters, "identity": identity},
            "sensitivity": self._sensitivity_for(validation),
            "metadata": {"warnings": validation.warnings},
        })
        return AdmissionResult(allowed=decision.approved, validation=validation, decision=decision)


def create_gatekeeper(settings: Settings | None = None,
                      notifier: ApprovalNotifier | None = None) -> Gatekeeper:
    """Build an engine, a coordinator and the gate over them from settings."""
    settings = settings or Settings.from_env()
    guardrail_rules = approval_rules = None
    if settings.rules_path is not None:
        rule_set = load_rule_file(settings.rules_path)
        guardrail_rules = rule_set.guardrail_rules
        approval_rules = rule_set.approval_rules
        logger.info("Loaded rules from %s", settings.rules_path)

    engine = GuardrailEngine(
        rules=guardrail_rules,
        violations=ViolationLedger(limit=settings.violation_history_limit),
    )
    coordinator = ApprovalCoordinator(
        router=ApprovalRouter(rules=approval_rules),
        notifier=notifier,
        ledger=DecisionLedger(limit=settings.decision_history_limit),
        default_timeout_ms=settings.approval_timeout_ms,
    )
    return Gatekeeper(engine, coordinator)

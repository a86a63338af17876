"""Admission control for autonomous agents: guardrail rules plus human approval."""

from agentgate.approval import ApprovalCoordinator
from agentgate.approval_router import ApprovalRouter
from agentgate.pipeline import AdmissionResult, Gatekeeper, create_gatekeeper
from agentgate.rule_engine import GuardrailEngine

__all__ = [
    "AdmissionResult",
    "ApprovalCoordinator",
    "ApprovalRouter",
    "Gatekeeper",
    "GuardrailEngine",
    "create_gatekeeper",
]

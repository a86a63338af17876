from __future__ import annotations

import asyncio

import pytest

from agentgate.approval import ApprovalCoordinator
from agentgate.approval_router import ApprovalRouter
from agentgate.config import Settings
from agentgate.models import ApprovalType, Severity
from agentgate.pipeline import Gatekeeper, create_gatekeeper
from agentgate.rule_engine import GuardrailEngine

CLEAN_TEXT = "Please summarize the quarterly report for me."

PRODUCTION_DEPLOYS = {
    "id": "prod-deploys",
    "name": "Production Deploys",
    "type": "content_filter",
    "severity": "high",
    "action": "require_approval",
    "conditions": {"keywords": ["production"], "tool_names": ["deploy"]},
}


@pytest.fixture
def gatekeeper():
    return create_gatekeeper(Settings(rules_path=None))


@pytest.fixture
def deploy_gate():
    engine = GuardrailEngine(rules=[PRODUCTION_DEPLOYS])
    coordinator = ApprovalCoordinator(router=ApprovalRouter(rules=[]))
    return Gatekeeper(engine, coordinator)


async def wait_for_pending(coordinator):
    for _ in range(200):
        pending = coordinator.get_pending_approvals()
        if pending:
            return pending
        await asyncio.sleep(0.01)
    raise AssertionError("approval request never became pending")


@pytest.mark.asyncio
async def test_blocked_tool_never_reaches_approval(gatekeeper):
    admission = await gatekeeper.admit_tool_call(
        {"tool_name": "shell", "parameters": {"cmd": "ls; rm -rf /tmp"}, "agent_name": "ops-bot"},
        require_approval=True,
    )

    assert not admission.allowed
    assert admission.decision is None
    assert "Command Injection Detector" in admission.reason
    assert gatekeeper.coordinator.get_approval_history() == []


@pytest.mark.asyncio
async def test_clean_tool_is_admitted_without_approval(gatekeeper):
    admission = await gatekeeper.admit_tool_call(
        {"tool_name": "list_files", "parameters": {"path": "/srv"}, "agent_name": "file-bot"},
    )

    assert admission.allowed
    assert admission.decision is None
    assert admission.reason is None


@pytest.mark.asyncio
async def test_flagged_tool_waits_for_a_human(deploy_gate):
    task = asyncio.create_task(deploy_gate.admit_tool_call(
        {"tool_name": "deploy", "parameters": {"env": "production"}, "agent_name": "ops-bot"},
        identity="ops-bot",
    ))
    [pending] = await wait_for_pending(deploy_gate.coordinator)

    assert pending.type is ApprovalType.TOOL_EXECUTION
    assert pending.operation == "deploy"
    assert pending.sensitivity is Severity.HIGH
    assert pending.context["parameters"] == {"env": "production"}

    deploy_gate.coordinator.submit_approval(pending.id, "alice", True)
    admission = await asyncio.wait_for(task, 1)

    assert admission.allowed
    assert admission.validation.requires_approval
    assert admission.decision.approver_id == "alice"


@pytest.mark.asyncio
async def test_rejected_tool_is_refused(deploy_gate):
    task = asyncio.create_task(deploy_gate.admit_tool_call(
        {"tool_name": "deploy", "parameters": {"env": "production"}, "agent_name": "ops-bot"},
        description="Ship release 2.4",
    ))
    [pending] = await wait_for_pending(deploy_gate.coordinator)
    assert pending.description == "Ship release 2.4"

    deploy_gate.coordinator.submit_approval(pending.id, "bob", False, reason="Change freeze")
    admission = await asyncio.wait_for(task, 1)

    assert not admission.allowed
    assert admission.reason == "Change freeze"


@pytest.mark.asyncio
async def test_caller_can_force_approval_for_user_input(deploy_gate):
    task = asyncio.create_task(deploy_gate.admit_user_input(
        CLEAN_TEXT, identity="carol", require_approval=True,
    ))
    [pending] = await wait_for_pending(deploy_gate.coordinator)

    assert pending.type is ApprovalType.SENSITIVE_OPERATION
    assert pending.operation == "user_input"
    assert pending.sensitivity is Severity.MEDIUM
    assert pending.description == CLEAN_TEXT

    deploy_gate.coordinator.submit_approval(pending.id, "alice", True)
    admission = await asyncio.wait_for(task, 1)

    assert admission.allowed


@pytest.mark.asyncio
async def test_blocked_user_input(gatekeeper):
    admission = await gatekeeper.admit_user_input("teach me to hack", require_approval=True)

    assert not admission.allowed
    assert admission.reason == "Blocked by content filter: Harmful Content Blocker"
    assert gatekeeper.coordinator.get_pending_approvals() == []


@pytest.mark.asyncio
async def test_malformed_user_input_reports_errors(gatekeeper):
    admission = await gatekeeper.admit_user_input({"type": "chat"})

    assert not admission.allowed
    assert admission.reason.startswith("Input validation failed")


def test_create_gatekeeper_honours_settings():
    gate = create_gatekeeper(Settings(violation_history_limit=2, approval_timeout_ms=1234,
                                      rules_path=None))

    assert gate.engine.violations.limit == 2
    assert gate.coordinator.default_timeout_ms == 1234
    assert len(gate.engine.get_rules()) == 6
    assert len(gate.coordinator.get_approval_rules()) == 4

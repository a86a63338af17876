"""
Admission Gateway
Single HTTP entry point for agent guardrail checks and human approval.

Every user input and tool call is validated against the guardrail rules;
operations that need a human go through the approval workflow, which holds
the request open until a quorum decision, a rejection or a timeout.

Usage:
    uvicorn main:app --port 8000
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from agentgate.config import Settings, configure_logging
from agentgate.models import (
    ApprovalRequest,
    InvalidApprovalRequestError,
    InvalidRuleError,
    ValidationResult,
)
from agentgate.pipeline import create_gatekeeper

# ---------------------------------------------------------------------------
# App + shared services
# ---------------------------------------------------------------------------
settings = Settings.from_env()
configure_logging(settings.log_level)

app = FastAPI(
    title="Agentgate Admission Gateway",
    version="1.0.0",
)

gatekeeper = create_gatekeeper(settings)
engine = gatekeeper.engine
approvals = gatekeeper.coordinator

# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class InputValidationRequest(BaseModel):
    input: Any
    identity: Optional[str] = None


class ToolValidationRequest(BaseModel):
    tool_name: Any = None
    parameters: Any = None
    agent_name: Any = None
    context: Optional[dict[str, Any]] = None
    identity: Optional[str] = None

    def tool_input(self) -> dict[str, Any]:
        return self.model_dump(exclude={"identity"}, exclude_none=True)


class ToolAdmissionRequest(ToolValidationRequest):
    description: Optional[str] = None
    require_approval: bool = False

    def tool_input(self) -> dict[str, Any]:
        return self.model_dump(
            exclude={"identity", "description", "require_approval"}, exclude_none=True,
        )


class DecisionSubmission(BaseModel):
    approver_id: str
    approved: bool
    reason: Optional[str] = None
    conditions: Optional[list[str]] = None


class ApproverRegistration(BaseModel):
    id: str
    name: str
    role: str


class RuleToggle(BaseModel):
    enabled: bool


def _result_body(result: ValidationResult) -> dict[str, Any]:
    return asdict(result)


def _request_body(request: ApprovalRequest) -> dict[str, Any]:
    return request.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Endpoints: guardrails
# ---------------------------------------------------------------------------

@app.get("/health")
def health():
    return {"status": "operational", "service": "admission-gateway"}


@app.post("/validate/input")
def validate_input(request: InputValidationRequest):
    """
    Validate chat / command / query input.

    Returns 200 for valid input (possibly sanitized), 403 when blocked and
    422 when the input is malformed. The body is always a ValidationResult.
    """
    result = engine.validate_user_input(request.input, request.identity)
    return JSONResponse(status_code=_status_for(result), content=_result_body(result))


@app.post("/validate/tool")
def validate_tool(request: ToolValidationRequest):
    result = engine.validate_tool_execution(request.tool_input(), request.identity)
    return JSONResponse(status_code=_status_for(result), content=_result_body(result))


def _status_for(result: ValidationResult) -> int:
    if result.valid:
        return 200
    return 403 if result.blocked else 422


@app.post("/admit/tool")
async def admit_tool(request: ToolAdmissionRequest):
    """
    Full admission for a tool call.

    Flow:
      1. Validate against the guardrail rules; a block ends here (403).
      2. If a rule (or the caller) requires approval, route it and wait.
      3. Return whether the call may execute, with the deciding record.
    """
    admission = await gatekeeper.admit_tool_call(
        request.tool_input(),
        identity=request.identity,
        description=request.description,
        require_approval=request.require_approval,
    )
    body = {
        "allowed": admission.allowed,
        "reason": admission.reason,
        "validation": _result_body(admission.validation),
        "decision": admission.decision.to_dict() if admission.decision else None,
    }
    if admission.allowed:
        status_code = 200
    elif admission.decision is not None:
        status_code = 403
    else:
        status_code = _status_for(admission.validation)
    return JSONResponse(status_code=status_code, content=body)


@app.get("/rules")
def list_rules():
    return {"rules": [r.model_dump(mode="json") for r in engine.get_rules()]}


@app.post("/rules", status_code=201)
async def add_rule(request: Request):
    body = await request.json()
    try:
        rule_id = engine.add_rule(body)
    except InvalidRuleError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return {"id": rule_id}


@app.patch("/rules/{rule_id}")
def toggle_rule(rule_id: str, request: RuleToggle):
    if not engine.set_rule_enabled(rule_id, request.enabled):
        raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found.")
    return {"id": rule_id, "enabled": request.enabled}


@app.delete("/rules/{rule_id}")
def remove_rule(rule_id: str):
    if not engine.remove_rule(rule_id):
        raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found.")
    return {"id": rule_id, "removed": True}


@app.get("/violations")
def violations(identity: Optional[str] = None):
    return {
        "history": [
            {
                "identity": entry["identity"],
                "violations": [v.to_dict() for v in entry["violations"]],
            }
            for entry in engine.get_violation_history(identity)
        ]
    }


@app.get("/stats")
def stats():
    return engine.get_stats()


# ---------------------------------------------------------------------------
# Endpoints: approvals
# ---------------------------------------------------------------------------

@app.post("/approvals")
async def request_approval(request: Request):
    """
    Submit an operation for human approval.

    The response is held open until the request resolves: immediately for
    auto-routed requests, otherwise on quorum, rejection or timeout.
    Rejections and timeouts are 200 responses with ``approved: false``.
    """
    body = await request.json()
    try:
        decision = await approvals.request_approval(body)
    except InvalidApprovalRequestError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return decision.to_dict()


@app.post("/approvals/{request_id}/decision")
def submit_decision(request_id: str, request: DecisionSubmission):
    accepted = approvals.submit_approval(
        request_id,
        request.approver_id,
        request.approved,
        reason=request.reason,
        conditions=request.conditions,
    )
    if not accepted:
        return JSONResponse(
            status_code=404,
            content={
                "accepted": False,
                "error": f"Approval request {request_id} is not pending.",
            },
        )
    return {"accepted": True, "request_id": request_id}


@app.get("/approvals/pending")
def pending_approvals():
    return {"pending": [_request_body(r) for r in approvals.get_pending_approvals()]}


@app.get("/approvals/history")
def approval_history(limit: int = 100):
    return {"history": [d.to_dict() for d in approvals.get_approval_history(limit)]}


@app.get("/approvals/stats")
def approval_stats(days: int = 30):
    return approvals.get_approval_stats(days)


@app.get("/approval-rules")
def list_approval_rules():
    return {"rules": [r.model_dump(mode="json") for r in approvals.get_approval_rules()]}


@app.post("/approval-rules", status_code=201)
async def add_approval_rule(request: Request):
    body = await request.json()
    try:
        rule_id = approvals.add_approval_rule(body)
    except InvalidRuleError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return {"id": rule_id}


@app.delete("/approval-rules/{rule_id}")
def remove_approval_rule(rule_id: str):
    if not approvals.remove_approval_rule(rule_id):
        raise HTTPException(status_code=404, detail=f"Approval rule {rule_id} not found.")
    return {"id": rule_id, "removed": True}


@app.get("/approvers")
def list_approvers():
    return {"approvers": [asdict(a) for a in approvals.get_approvers()]}


@app.post("/approvers", status_code=201)
def register_approver(request: ApproverRegistration):
    approver = approvals.register_approver(request.id, request.name, request.role)
    return asdict(approver)

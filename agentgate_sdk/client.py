"""
Gatekeeper SDK: Client
Thin synchronous wrapper over the agentgate HTTP gateway.
"""

from __future__ import annotations

from typing import Any, Optional, Union

import httpx

from agentgate_sdk.models import DecisionOutcome, SubmissionResult, ValidationOutcome


class GatekeeperClient:
    """
    Client for the agentgate gateway.

    Validates input and tool calls, submits operations for human approval,
    and casts approver votes.
    """

    def __init__(
        self,
        gateway_url: str,
        identity: str | None = None,
        timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ):
        """
        Args:
            gateway_url: Base URL of the gateway (e.g. "http://localhost:8000")
            identity: Caller identity used for rate limiting and violation history
            timeout: HTTP request timeout in seconds for non-approval calls
            http_client: Pre-built client (tests pass a FastAPI TestClient)
        """
        self.gateway_url = gateway_url.rstrip("/")
        self.identity = identity
        self._client = http_client or httpx.Client(timeout=timeout)

    @staticmethod
    def _validation(resp: httpx.Response) -> ValidationOutcome:
        body = resp.json()
        return ValidationOutcome(
            valid=body.get("valid", False),
            blocked=body.get("blocked", False),
            reason=body.get("reason"),
            errors=body.get("errors", []),
            warnings=body.get("warnings", []),
            requires_approval=body.get("requires_approval", False),
            sanitized=body.get("sanitized"),
            raw=body,
        )

    def validate_input(self, content: Union[str, dict[str, Any]]) -> ValidationOutcome:
        resp = self._client.post(
            f"{self.gateway_url}/validate/input",
            json={"input": content, "identity": self.identity},
        )
        return self._validation(resp)

    def validate_tool(
        self,
        tool_name: str,
        parameters: dict[str, Any],
        agent_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> ValidationOutcome:
        resp = self._client.post(
            f"{self.gateway_url}/validate/tool",
            json={
                "tool_name": tool_name,
                "parameters": parameters,
                "agent_name": agent_name,
                "context": context or {},
                "identity": self.identity,
            },
        )
        return self._validation(resp)

    def request_approval(self, request: dict[str, Any],
                         wait_seconds: float | None = None) -> DecisionOutcome:
        """
        Submit an operation for approval and block until it resolves.

        ``wait_seconds`` bounds the HTTP wait; by default the request's own
        timeout (plus a margin) is used.
        """
        if wait_seconds is None:
            wait_seconds = request.get("timeout", 300_000) / 1000.0 + 5.0
        resp = self._client.post(
            f"{self.gateway_url}/approvals",
            json=request,
            timeout=wait_seconds,
        )
        resp.raise_for_status()
        body = resp.json()
        return DecisionOutcome(
            request_id=body["request_id"],
            approved=body["approved"],
            approver_id=body["approver_id"],
            reason=body.get("reason"),
            timestamp=body["timestamp"],
            raw=body,
        )

    def submit_decision(
        self,
        request_id: str,
        approver_id: str,
        approved: bool,
        reason: str | None = None,
        conditions: list[str] | None = None,
    ) -> SubmissionResult:
        resp = self._client.post(
            f"{self.gateway_url}/approvals/{request_id}/decision",
            json={
                "approver_id": approver_id,
                "approved": approved,
                "reason": reason,
                "conditions": conditions,
            },
        )
        body = resp.json()
        return SubmissionResult(accepted=resp.status_code == 200, raw=body)

    def pending(self) -> list[dict]:
        resp = self._client.get(f"{self.gateway_url}/approvals/pending")
        return resp.json()["pending"]

    def history(self, limit: int = 100) -> list[dict]:
        resp = self._client.get(f"{self.gateway_url}/approvals/history",
                                params={"limit": limit})
        return resp.json()["history"]

    def health(self) -> dict:
        """Check gateway health via GET /health."""
        resp = self._client.get(f"{self.gateway_url}/health")
        return resp.json()

"""
Gatekeeper SDK: Data Models
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class ValidationOutcome(BaseModel):
    """Result of a POST /validate/input or /validate/tool call."""
    valid: bool
    blocked: bool = False
    reason: Optional[str] = None
    errors: list[str] = []
    warnings: list[str] = []
    requires_approval: bool = False
    sanitized: Any = None
    raw: dict               # full response body


class DecisionOutcome(BaseModel):
    """Result of a POST /approvals call: the resolving decision."""
    request_id: str
    approved: bool
    approver_id: str
    reason: Optional[str] = None
    timestamp: str
    raw: dict               # full response body


class SubmissionResult(BaseModel):
    """Result of a POST /approvals/{id}/decision call."""
    accepted: bool
    raw: dict               # full response body

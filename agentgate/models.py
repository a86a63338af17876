"""
Domain Models
Shared vocabulary for the guardrail engine and the approval workflow.

Rules, inputs and approval requests are pydantic schemas so that they can be
validated on the way in and round-tripped through rule files. Results that
are produced fresh per call are plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_APPROVAL_TIMEOUT_MS = 300_000
SYSTEM_APPROVER = "system"
TIMEOUT_REASON = "Approval request timed out"


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class InvalidRuleError(ValueError):
    """A rule failed structural validation or carries a non-compiling pattern."""


class InvalidApprovalRequestError(ValueError):
    """An approval request is missing required fields or has invalid values."""


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class RuleType(str, Enum):
    CONTENT_FILTER = "content_filter"
    RATE_LIMIT = "rate_limit"
    PERMISSION_CHECK = "permission_check"
    DATA_VALIDATION = "data_validation"
    SECURITY_CHECK = "security_check"


class RuleAction(str, Enum):
    WARN = "warn"
    SANITIZE = "sanitize"
    BLOCK = "block"
    REQUIRE_APPROVAL = "require_approval"


class ApprovalType(str, Enum):
    TOOL_EXECUTION = "tool_execution"
    DATA_ACCESS = "data_access"
    EXTERNAL_API = "external_api"
    SENSITIVE_OPERATION = "sensitive_operation"


class ApprovalAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUIRE_APPROVAL = "require_approval"


# ---------------------------------------------------------------------------
# Guardrail rules
# ---------------------------------------------------------------------------

class RuleConditions(BaseModel):
    """
    Filters that must all hold for a rule to apply. ``None`` means unset;
    an empty membership list matches nothing. Blank keyword lists are ignored.
    """
    patterns: Optional[list[str]] = None
    keywords: Optional[list[str]] = None
    agent_types: Optional[list[str]] = None
    tool_names: Optional[list[str]] = None
    user_roles: Optional[list[str]] = None


class GuardrailRule(BaseModel):
    id: str = Field(default_factory=lambda: new_id("rule"))
    name: str
    description: str = ""
    type: RuleType
    severity: Severity = Severity.MEDIUM
    enabled: bool = True
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    action: RuleAction
    config: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Validation inputs and results
# ---------------------------------------------------------------------------

class UserInput(BaseModel):
    content: str = Field(min_length=1, max_length=10_000)
    type: Literal["chat", "command", "query"] = "chat"
    metadata: dict[str, Any] = Field(default_factory=dict)


class ToolInput(BaseModel):
    tool_name: str
    parameters: dict[str, Any]
    agent_name: str
    context: dict[str, Any] = Field(default_factory=dict)


@dataclass
class ValidationResult:
    valid: bool = True
    sanitized: Any = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    blocked: bool = False
    reason: Optional[str] = None
    requires_approval: bool = False
    matched_rules: list[str] = field(default_factory=list)

    def block(self, reason: str, error: str) -> None:
        self.valid = False
        self.blocked = True
        self.reason = reason
        self.errors.append(error)

    def summary(self) -> str:
        if self.blocked:
            lines = [f"Blocked: {self.reason}"]
        elif not self.valid:
            lines = ["Invalid input"]
        else:
            lines = ["Valid" + (" (approval required)" if self.requires_approval else "")]
        for e in self.errors:
            lines.append(f"  error: {e}")
        for w in self.warnings:
            lines.append(f"  warning: {w}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Approval workflow
# ---------------------------------------------------------------------------

class ApprovalConditions(BaseModel):
    agent_types: Optional[list[str]] = None
    operations: Optional[list[str]] = None
    sensitivity: Optional[list[Severity]] = None
    keywords: Optional[list[str]] = None


class ApprovalRule(BaseModel):
    id: str = Field(default_factory=lambda: new_id("rule"))
    name: str
    description: str = ""
    conditions: ApprovalConditions = Field(default_factory=ApprovalConditions)
    action: ApprovalAction
    required_approvers: Optional[int] = Field(default=None, ge=1)
    timeout: Optional[int] = Field(default=None, gt=0)   # milliseconds
    enabled: bool = True


class ApprovalRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("approval"))
    type: ApprovalType
    agent_name: str
    operation: str
    description: str
    context: dict[str, Any] = Field(default_factory=dict)
    sensitivity: Severity
    timeout: int = Field(default=DEFAULT_APPROVAL_TIMEOUT_MS, gt=0)   # milliseconds
    required_approvers: int = Field(default=1, ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class ApprovalDecision:
    request_id: str
    approved: bool
    approver_id: str
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    conditions: Optional[list[str]] = None

    @property
    def is_system(self) -> bool:
        return self.approver_id == SYSTEM_APPROVER

    @property
    def timed_out(self) -> bool:
        return self.is_system and self.reason == TIMEOUT_REASON

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "approved": self.approved,
            "approver_id": self.approver_id,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "conditions": self.conditions,
        }


@dataclass(frozen=True)
class ApprovalProgress:
    request_id: str
    approvals_received: int
    approvals_required: int


@dataclass
class Approver:
    id: str
    name: str
    role: str
    is_active: bool = True

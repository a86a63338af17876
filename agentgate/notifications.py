"""
Outbound notifications for the approval workflow.

The presentation layer (chat UI, webhook, pager) subclasses
``ApprovalNotifier`` and routes human responses back into
``ApprovalCoordinator.submit_approval``.
"""

from __future__ import annotations

import logging

from agentgate.models import ApprovalDecision, ApprovalProgress, ApprovalRequest

logger = logging.getLogger(__name__)


class ApprovalNotifier:
    """No-op sink. Override the events you care about."""

    def approval_requested(self, request: ApprovalRequest) -> None:
        pass

    def approval_progress(self, progress: ApprovalProgress) -> None:
        pass

    def approval_resolved(self, decision: ApprovalDecision) -> None:
        pass


class LoggingNotifier(ApprovalNotifier):

    def approval_requested(self, request: ApprovalRequest) -> None:
        logger.info(
            "Approval requested: %s by %s (id=%s, sensitivity=%s, approvers=%d, timeout=%dms)",
            request.operation, request.agent_name, request.id,
            request.sensitivity.value, request.required_approvers, request.timeout,
        )

    def approval_progress(self, progress: ApprovalProgress) -> None:
        logger.info(
            "Partial approval: %s (%d/%d)",
            progress.request_id, progress.approvals_received, progress.approvals_required,
        )

    def approval_resolved(self, decision: ApprovalDecision) -> None:
        outcome = "approved" if decision.approved else "rejected"
        logger.info(
            "Approval %s %s by %s: %s",
            decision.request_id, outcome, decision.approver_id, decision.reason or "",
        )

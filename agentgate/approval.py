"""
Human Approval Workflow
Escalates sensitive operations to human approvers and holds the caller
until a quorum decision, a rejection, or a timeout.

Each pending request owns a one-shot future and a cancellable timer.
Resolution removes the pending entry under the coordinator's lock before
anything else happens, so exactly one of (quorum, rejection, timeout,
caller cancellation) wins; every other path finds the entry gone and
becomes a no-op.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from agentgate.approval_router import ApprovalRouter
from agentgate.ledger import DecisionLedger
from agentgate.models import (
    DEFAULT_APPROVAL_TIMEOUT_MS,
    SYSTEM_APPROVER,
    TIMEOUT_REASON,
    ApprovalAction,
    ApprovalDecision,
    ApprovalProgress,
    ApprovalRequest,
    ApprovalRule,
    Approver,
    InvalidApprovalRequestError,
    utcnow,
)
from agentgate.notifications import ApprovalNotifier, LoggingNotifier

logger = logging.getLogger(__name__)

WITHDRAWN_REASON = "Approval request withdrawn"


@dataclass
class _PendingApproval:
    request: ApprovalRequest
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop
    timer: Optional[asyncio.TimerHandle] = None
    approvers: set[str] = field(default_factory=set)


class ApprovalCoordinator:
    """
    Owns the pending set, the decision ledger and the approver registry.

    ``request_approval`` must be awaited from an event loop.
    ``submit_approval`` may be called from any thread.
    """

    def __init__(
        self,
        router: ApprovalRouter | None = None,
        notifier: ApprovalNotifier | None = None,
        ledger: DecisionLedger | None = None,
        default_timeout_ms: int = DEFAULT_APPROVAL_TIMEOUT_MS,
    ):
        self.router = router or ApprovalRouter()
        self.notifier = notifier or LoggingNotifier()
        self.ledger = ledger or DecisionLedger()
        self.default_timeout_ms = default_timeout_ms
        self._pending: dict[str, _PendingApproval] = {}
        self._approvers: dict[str, Approver] = {}
        self._lock = threading.Lock()

    # -- request side -------------------------------------------------------

    def _build_request(self, request: Union[ApprovalRequest, dict[str, Any]]) -> ApprovalRequest:
        if isinstance(request, ApprovalRequest):
            data = request.model_dump(exclude={"id"})
        elif isinstance(request, dict):
            data = {k: v for k, v in request.items() if k != "id"}
            data.setdefault("timeout", self.default_timeout_ms)
        else:
            raise InvalidApprovalRequestError(
                f"Approval request must be a mapping, got {type(request).__name__}"
            )
        try:
            return ApprovalRequest.model_validate(data)
        except ValidationError as exc:
            raise InvalidApprovalRequestError(f"Invalid approval request: {exc}") from exc

    async def request_approval(self, request: Union[ApprovalRequest, dict[str, Any]]) -> ApprovalDecision:
        """
        Submit an operation for approval and wait for the outcome.

        Flow:
          1. Assign an id and validate the request shape.
          2. Route it: auto-approve / auto-reject return at once.
          3. Otherwise register it as pending, notify, and suspend until
             quorum, rejection or timeout.

        Rejections and timeouts are returned as decisions, never raised.
        Raises InvalidApprovalRequestError for malformed requests.
        """
        approval_request = self._build_request(request)
        logger.info("Approval requested: %s by %s",
                    approval_request.operation, approval_request.agent_name)

        routing = self.router.route(approval_request)
        if routing.action is ApprovalAction.APPROVE:
            return self._auto_resolve(approval_request, routing.rule, approved=True)
        if routing.action is ApprovalAction.REJECT:
            return self._auto_resolve(approval_request, routing.rule, approved=False)

        return await self._escalate(routing.request)

    def _auto_resolve(self, request: ApprovalRequest, rule: ApprovalRule,
                      approved: bool) -> ApprovalDecision:
        verb = "Auto-approved" if approved else "Auto-rejected"
        decision = ApprovalDecision(
            request_id=request.id,
            approved=approved,
            approver_id=SYSTEM_APPROVER,
            reason=f"{verb} by rule: {rule.name}",
        )
        self.ledger.open(request.id, decision.timestamp)
        self.ledger.resolve(decision)
        if approved:
            logger.info("%s: %s", verb, request.operation)
        else:
            logger.warning("%s: %s", verb, request.operation)
        return decision

    async def _escalate(self, request: ApprovalRequest) -> ApprovalDecision:
        loop = asyncio.get_running_loop()
        entry = _PendingApproval(request=request, future=loop.create_future(), loop=loop)
        entry.timer = loop.call_later(request.timeout / 1000.0, self._expire, request.id)

        self.ledger.open(request.id)
        with self._lock:
            self._pending[request.id] = entry
        self._notify("approval_requested", request)

        try:
            return await entry.future
        except asyncio.CancelledError:
            if self._take(request.id) is not None:
                entry.timer.cancel()
                self.ledger.resolve(ApprovalDecision(
                    request_id=request.id,
                    approved=False,
                    approver_id=SYSTEM_APPROVER,
                    reason=WITHDRAWN_REASON,
                ))
                logger.info("Approval request %s withdrawn by caller", request.id)
            raise

    def _expire(self, request_id: str) -> None:
        entry = self._take(request_id)
        if entry is None:
            return
        decision = ApprovalDecision(
            request_id=request_id,
            approved=False,
            approver_id=SYSTEM_APPROVER,
            reason=TIMEOUT_REASON,
        )
        logger.warning("Approval request timed out: %s", entry.request.operation)
        self._finish(entry, decision)

    # -- decision side ------------------------------------------------------

    def submit_approval(
        self,
        request_id: str,
        approver_id: str,
        approved: bool,
        reason: Optional[str] = None,
        conditions: Optional[list[str]] = None,
    ) -> bool:
        """
        Record one approver's vote.

        Returns False when the request is not pending (unknown id or already
        resolved). A rejection resolves the request immediately; an approval
        resolves it once the number of distinct approvers reaches
        ``required_approvers``.
        """
        decision = ApprovalDecision(
            request_id=request_id,
            approved=approved,
            approver_id=approver_id,
            reason=reason,
            conditions=conditions,
        )
        progress: Optional[ApprovalProgress] = None

        with self._lock:
            entry = self._pending.get(request_id)
            if entry is None:
                logger.warning("Approval request not found: %s", request_id)
                return False

            if approved:
                entry.approvers.add(approver_id)
                received = len(entry.approvers)
                required = entry.request.required_approvers
                resolved = received >= required
                if not resolved:
                    progress = ApprovalProgress(request_id, received, required)
            else:
                resolved = True

            if resolved:
                del self._pending[request_id]
            else:
                self.ledger.record(decision)

        if progress is not None:
            logger.info("Partial approval: %s (%d/%d)", entry.request.operation,
                        progress.approvals_received, progress.approvals_required)
            self._notify("approval_progress", progress)
            return True

        if approved:
            logger.info("Operation approved: %s by %s", entry.request.operation, approver_id)
        else:
            logger.warning("Operation rejected: %s by %s", entry.request.operation, approver_id)
        self._dispatch(entry, lambda: self._finish(entry, decision))
        return True

    def _take(self, request_id: str) -> Optional[_PendingApproval]:
        with self._lock:
            return self._pending.pop(request_id, None)

    def _finish(self, entry: _PendingApproval, decision: ApprovalDecision) -> None:
        """Runs on the entry's loop once the entry has been removed from the pending set."""
        if entry.timer is not None:
            entry.timer.cancel()
        self.ledger.resolve(decision)
        self._notify("approval_resolved", decision)
        if not entry.future.done():
            entry.future.set_result(decision)

    @staticmethod
    def _dispatch(entry: _PendingApproval, callback: Callable[[], None]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is entry.loop:
            callback()
        else:
            entry.loop.call_soon_threadsafe(callback)

    def _notify(self, event: str, payload: Any) -> None:
        try:
            getattr(self.notifier, event)(payload)
        except Exception:
            logger.exception("Approval notifier failed on %s", event)

    # -- read-only views ----------------------------------------------------

    def get_pending_approvals(self) -> list[ApprovalRequest]:
        with self._lock:
            return [entry.request for entry in self._pending.values()]

    def get_approval_history(self, limit: int = 100) -> list[ApprovalDecision]:
        return self.ledger.history(limit)

    def get_approval_stats(self, days: int = 30) -> dict[str, Any]:
        return self.ledger.stats(days)

    # -- rule and approver bookkeeping --------------------------------------

    def add_approval_rule(self, rule: Union[ApprovalRule, dict[str, Any]]) -> str:
        return self.router.add_rule(rule)

    def remove_approval_rule(self, rule_id: str) -> bool:
        return self.router.remove_rule(rule_id)

    def get_approval_rules(self) -> list[ApprovalRule]:
        return self.router.get_rules()

    def register_approver(self, approver_id: str, name: str, role: str) -> Approver:
        approver = Approver(id=approver_id, name=name, role=role)
        with self._lock:
            self._approvers[approver_id] = approver
        logger.info("Registered approver: %s (%s)", name, role)
        return approver

    def get_approvers(self) -> list[Approver]:
        with self._lock:
            return list(self._approvers.values())

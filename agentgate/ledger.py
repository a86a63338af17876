"""
Violation and Decision Ledgers
Append-only, in-memory history for the guardrail engine and the approval
workflow.

Both ledgers share one interface shape: writers append, readers get copies.
Every write happens under the ledger's own lock so concurrent callers never
lose an update.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from agentgate.models import ApprovalDecision, utcnow

DEFAULT_VIOLATION_LIMIT = 1000
DEFAULT_DECISION_LIMIT = 10_000


# ---------------------------------------------------------------------------
# Violations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ViolationRecord:
    timestamp: datetime
    rule_id: str
    input: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "rule_id": self.rule_id,
            "input": self.input,
        }


class ViolationLedger:
    """
    Per-identity log of rule violations, capped at ``limit`` entries per
    identity. The oldest entries are evicted first.
    """

    def __init__(self, limit: int = DEFAULT_VIOLATION_LIMIT):
        self.limit = limit
        self._entries: dict[str, deque[ViolationRecord]] = {}
        self._lock = threading.Lock()

    def record(self, identity: str, rule_id: str, payload: Any) -> ViolationRecord:
        entry = ViolationRecord(timestamp=utcnow(), rule_id=rule_id, input=payload)
        with self._lock:
            self._entries.setdefault(identity, deque(maxlen=self.limit)).append(entry)
        return entry

    def history(self, identity: Optional[str] = None) -> list[tuple[str, list[ViolationRecord]]]:
        """Return ``(identity, violations)`` pairs, oldest violation first."""
        with self._lock:
            if identity is not None:
                return [(identity, list(self._entries.get(identity, ())))]
            return [(ident, list(entries)) for ident, entries in self._entries.items()]

    def rule_ids(self) -> list[str]:
        with self._lock:
            return [v.rule_id for entries in self._entries.values() for v in entries]

    def __len__(self) -> int:
        with self._lock:
            return sum(len(entries) for entries in self._entries.values())


# ---------------------------------------------------------------------------
# Approval decisions
# ---------------------------------------------------------------------------

@dataclass
class _RequestHistory:
    requested_at: datetime
    decisions: list[ApprovalDecision] = field(default_factory=list)
    resolution: Optional[ApprovalDecision] = None


class DecisionLedger:
    """
    Every vote cast on every approval request, plus the decision that
    resolved it. A request with no resolution is still pending.

    At most ``limit`` requests are kept; past that the oldest resolved
    requests are evicted. Pending requests are never evicted.
    """

    def __init__(self, limit: int = DEFAULT_DECISION_LIMIT):
        self.limit = limit
        self._requests: dict[str, _RequestHistory] = {}
        self._lock = threading.Lock()

    def open(self, request_id: str, requested_at: Optional[datetime] = None) -> None:
        with self._lock:
            self._requests.setdefault(
                request_id, _RequestHistory(requested_at=requested_at or utcnow()),
            )
            self._evict()

    def record(self, decision: ApprovalDecision) -> None:
        """Append a vote that did not (yet) resolve its request."""
        with self._lock:
            self._history_for(decision).decisions.append(decision)

    def resolve(self, decision: ApprovalDecision) -> None:
        """Append the terminal decision. Later calls for the same request are ignored."""
        with self._lock:
            history = self._history_for(decision)
            if history.resolution is not None:
                return
            history.decisions.append(decision)
            history.resolution = decision

    def _history_for(self, decision: ApprovalDecision) -> _RequestHistory:
        history = self._requests.get(decision.request_id)
        if history is None:
            history = _RequestHistory(requested_at=decision.timestamp)
            self._requests[decision.request_id] = history
            self._evict()
        return history

    def _evict(self) -> None:
        """Caller holds the lock."""
        excess = len(self._requests) - self.limit
        if excess <= 0:
            return
        for request_id in [rid for rid, h in self._requests.items() if h.resolution][:excess]:
            del self._requests[request_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    def decisions_for(self, request_id: str) -> list[ApprovalDecision]:
        with self._lock:
            history = self._requests.get(request_id)
            return list(history.decisions) if history else []

    def resolution_for(self, request_id: str) -> Optional[ApprovalDecision]:
        with self._lock:
            history = self._requests.get(request_id)
            return history.resolution if history else None

    def history(self, limit: int = 100) -> list[ApprovalDecision]:
        """Resolving decisions, most recent first."""
        with self._lock:
            resolved = [h.resolution for h in self._requests.values() if h.resolution]
        resolved.sort(key=lambda d: d.timestamp, reverse=True)
        return resolved[:limit]

    def stats(self, days: int = 30) -> dict[str, Any]:
        """
        Totals over requests resolved within the last ``days`` days.

        ``average_approval_time_ms`` is the mean of (resolved_at - requested_at)
        over requests decided by a human; system decisions and timeouts are
        excluded.
        """
        cutoff = utcnow() - timedelta(days=days)
        with self._lock:
            resolved = [
                (h.requested_at, h.resolution)
                for h in self._requests.values()
                if h.resolution is not None and h.resolution.timestamp >= cutoff
            ]

        approved = sum(1 for _, d in resolved if d.approved and not d.is_system)
        timed_out = sum(1 for _, d in resolved if d.timed_out)
        rejected = sum(1 for _, d in resolved if not d.approved and not d.timed_out)
        auto_resolved = sum(1 for _, d in resolved if d.is_system and not d.timed_out)

        latencies = [
            (d.timestamp - requested_at).total_seconds() * 1000.0
            for requested_at, d in resolved
            if not d.is_system
        ]
        average = sum(latencies) / len(latencies) if latencies else 0.0

        return {
            "total_requests": len(resolved),
            "approved": approved,
            "rejected": rejected,
            "timed_out": timed_out,
            "auto_resolved": auto_resolved,
            "average_approval_time_ms": average,
        }

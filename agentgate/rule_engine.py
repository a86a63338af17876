"""
Guardrail Rule Engine
Classifies user input and proposed tool calls against an ordered list of
declarative rules.

Every enabled rule is evaluated in registration order and the effects are
cumulative: sanitizations compose, warnings accumulate, and the first block
ends evaluation. Detection (keywords, patterns, length) always looks at the
caller's raw content; redaction is applied to a working copy that each
sanitize rule passes on to the next.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union

from pydantic import ValidationError

from agentgate.ledger import ViolationLedger
from agentgate.models import (
    GuardrailRule,
    InvalidRuleError,
    RuleAction,
    RuleType,
    ToolInput,
    UserInput,
    ValidationResult,
)
from agentgate.patterns import (
    BLOCKED_KEYWORDS,
    COMMAND_INJECTION_PATTERNS,
    DEFAULT_REPLACEMENT,
    SENSITIVE_PATTERNS,
    SQL_INJECTION_PATTERNS,
    compile_patterns,
    redact,
)
from agentgate.rate_limiter import RateLimitStatus, SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 100
DEFAULT_WINDOW_MS = 60_000
RATE_LIMIT_REASON = "Rate limit exceeded"

# ---------------------------------------------------------------------------
# Default rule set
# ---------------------------------------------------------------------------

DEFAULT_GUARDRAIL_RULES: list[dict[str, Any]] = [
    {
        "id": "sensitive-data-filter",
        "name": "Sensitive Data Filter",
        "description": "Detect and sanitize sensitive personal data",
        "type": "content_filter",
        "severity": "high",
        "action": "sanitize",
        "config": {"replacement": DEFAULT_REPLACEMENT},
    },
    {
        "id": "harmful-content-blocker",
        "name": "Harmful Content Blocker",
        "description": "Block requests containing harmful or inappropriate content",
        "type": "content_filter",
        "severity": "critical",
        "conditions": {"keywords": BLOCKED_KEYWORDS},
        "action": "block",
    },
    {
        "id": "sql-injection-detector",
        "name": "SQL Injection Detector",
        "description": "Detect potential SQL injection attempts",
        "type": "security_check",
        "severity": "critical",
        "conditions": {"patterns": SQL_INJECTION_PATTERNS},
        "action": "block",
    },
    {
        "id": "rate-limiter",
        "name": "Rate Limiter",
        "description": "Limit request rate per user",
        "type": "rate_limit",
        "severity": "medium",
        "action": "block",
        "config": {"max_requests": DEFAULT_MAX_REQUESTS, "window_ms": DEFAULT_WINDOW_MS},
    },
    {
        "id": "command-injection-detector",
        "name": "Command Injection Detector",
        "description": "Detect potential command injection attempts",
        "type": "security_check",
        "severity": "critical",
        "conditions": {"patterns": COMMAND_INJECTION_PATTERNS},
        "action": "block",
    },
    {
        "id": "large-input-validator",
        "name": "Large Input Validator",
        "description": "Validate input size limits",
        "type": "data_validation",
        "severity": "medium",
        "action": "warn",
        "config": {"max_length": 10_000, "warn_length": 5_000},
    },
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@dataclass
class _Subject:
    """What a rule looks at: the normalized payload plus its scope attributes."""
    kind: str                     # "user_input" | "tool_execution"
    payload: dict[str, Any]
    content: str
    redact_fields: tuple[str, ...]
    agent_type: Optional[str] = None
    tool_name: Optional[str] = None
    user_role: Optional[str] = None

    def redact(self, working: dict[str, Any], patterns: list[re.Pattern[str]],
               replacement: str) -> dict[str, Any]:
        updated = dict(working)
        for key in self.redact_fields:
            if key in updated:
                updated[key] = _redact_value(updated[key], patterns, replacement)
        return updated


def _redact_value(value: Any, patterns: list[re.Pattern[str]], replacement: str) -> Any:
    if isinstance(value, str):
        return redact(value, patterns, replacement)
    if isinstance(value, dict):
        return {k: _redact_value(v, patterns, replacement) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact_value(v, patterns, replacement) for v in value]
    return value


def _active_keywords(rule: GuardrailRule) -> list[str]:
    return [k.strip() for k in (rule.conditions.keywords or []) if k and k.strip()]


def _describe_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


def coerce_rule(rule: Union[GuardrailRule, dict[str, Any]]) -> GuardrailRule:
    if isinstance(rule, GuardrailRule):
        return rule
    try:
        return GuardrailRule.model_validate(rule)
    except ValidationError as exc:
        raise InvalidRuleError(f"Invalid guardrail rule: {_describe_errors(exc)}") from exc


# ---------------------------------------------------------------------------
# GuardrailEngine
# ---------------------------------------------------------------------------

class GuardrailEngine:
    """
    Rule engine for user input and tool execution.

    Owns its rule list, its rate limiter and its violation ledger. Patterns
    are compiled once, when a rule is registered; a pattern that does not
    compile is rejected there and never reaches evaluation.
    """

    def __init__(
        self,
        rules: Optional[Iterable[Union[GuardrailRule, dict[str, Any]]]] = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        violations: ViolationLedger | None = None,
        sensitive_patterns: Optional[list[re.Pattern[str]]] = None,
    ):
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.violations = violations or ViolationLedger()
        self.sensitive_patterns = list(
            SENSITIVE_PATTERNS if sensitive_patterns is None else sensitive_patterns
        )
        self._rules: list[GuardrailRule] = []
        self._compiled: dict[str, list[re.Pattern[str]]] = {}
        self._lock = threading.Lock()

        for rule in (DEFAULT_GUARDRAIL_RULES if rules is None else rules):
            self._register(coerce_rule(rule))
        logger.info("Guardrail engine loaded %d rules", len(self._rules))

    # -- rule administration ------------------------------------------------

    def _register(self, rule: GuardrailRule) -> None:
        try:
            compiled = compile_patterns(rule.conditions.patterns or [])
        except re.error as exc:
            raise InvalidRuleError(
                f"Rule '{rule.name}' has an invalid pattern: {exc}"
            ) from exc

        with self._lock:
            if rule.id in self._compiled:
                raise InvalidRuleError(f"Duplicate rule id: {rule.id}")
            self._rules.append(rule)
            self._compiled[rule.id] = compiled

    def add_rule(self, rule: Union[GuardrailRule, dict[str, Any]]) -> str:
        """Register a new rule under a freshly generated id and return the id."""
        if isinstance(rule, GuardrailRule):
            data = rule.model_dump(exclude={"id"})
        elif isinstance(rule, dict):
            data = {k: v for k, v in rule.items() if k != "id"}
        else:
            raise InvalidRuleError(f"Rule must be a mapping, got {type(rule).__name__}")
        new_rule = coerce_rule(data)
        self._register(new_rule)
        logger.info("Added guardrail rule: %s (%s)", new_rule.name, new_rule.id)
        return new_rule.id

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            for index, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    del self._rules[index]
                    del self._compiled[rule_id]
                    logger.info("Removed guardrail rule: %s", rule.name)
                    return True
        return False

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> bool:
        with self._lock:
            for index, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    self._rules[index] = rule.model_copy(update={"enabled": enabled})
                    return True
        return False

    def get_rules(self) -> list[GuardrailRule]:
        with self._lock:
            return [rule.model_copy(deep=True) for rule in self._rules]

    def _snapshot(self) -> list[tuple[GuardrailRule, list[re.Pattern[str]]]]:
        with self._lock:
            return [(rule, self._compiled[rule.id]) for rule in self._rules if rule.enabled]

    # -- entry points -------------------------------------------------------

    def validate_user_input(self, input: Any, identity: Optional[str] = None) -> ValidationResult:
        """
        Validate chat / command / query input.

        Accepts a raw string or a mapping with a ``content`` field. Malformed
        input yields ``valid=False`` with a descriptive error; nothing raises.
        """
        result = ValidationResult(sanitized=input)
        try:
            payload = UserInput.model_validate(
                {"content": input} if isinstance(input, str) else input
            )
        except ValidationError as exc:
            result.valid = False
            result.errors.append(f"Input validation failed: {_describe_errors(exc)}")
            logger.warning("Input validation failed: %s", _describe_errors(exc))
            return result

        subject = _Subject(
            kind="user_input",
            payload=payload.model_dump(),
            content=payload.content,
            redact_fields=("content",),
            agent_type=payload.metadata.get("agent_type"),
            tool_name=payload.metadata.get("tool_name"),
            user_role=payload.metadata.get("user_role"),
        )
        result = self._run(subject, self._snapshot(), identity, identity or "anonymous", input)
        if result.valid:
            logger.debug("Input validation passed for %s", identity)
        return result

    def validate_tool_execution(self, input: Any, identity: Optional[str] = None) -> ValidationResult:
        """
        Validate a proposed tool call.

        Only rules scoped to this tool or agent, plus global rules (no
        ``tool_names`` and no ``agent_types``), are candidates.
        """
        result = ValidationResult(sanitized=input)
        try:
            tool_input = ToolInput.model_validate(input)
        except ValidationError as exc:
            result.valid = False
            result.errors.append(f"Tool validation failed: {_describe_errors(exc)}")
            logger.warning("Tool validation failed: %s", _describe_errors(exc))
            return result

        payload = tool_input.model_dump()
        subject = _Subject(
            kind="tool_execution",
            payload=payload,
            content=json.dumps(payload, default=str, ensure_ascii=False),
            redact_fields=("parameters", "context"),
            agent_type=tool_input.agent_name,
            tool_name=tool_input.tool_name,
            user_role=tool_input.context.get("user_role"),
        )
        candidates = [
            (rule, compiled) for rule, compiled in self._snapshot()
            if self._targets_tool(rule, tool_input)
        ]
        result = self._run(subject, candidates, identity, identity or "system", input)
        if result.valid:
            logger.debug("Tool validation passed: %s", tool_input.tool_name)
        return result

    # -- evaluation ---------------------------------------------------------

    def _run(self, subject: _Subject, rules, identity: Optional[str],
             ledger_identity: str, raw_input: Any) -> ValidationResult:
        if identity:
            limited = self._check_rate_limit(identity)
            if limited is not None:
                rule, status = limited
                result = ValidationResult(sanitized=subject.payload)
                result.block(RATE_LIMIT_REASON, "Too many requests. Please slow down.")
                result.matched_rules.append(rule.id)
                self._log_violation(ledger_identity, rule, raw_input)
                logger.warning("Rate limit exceeded for %s (%d requests in window)",
                               identity, status.count)
                return result
        return self._evaluate(subject, rules, ledger_identity, raw_input)

    def _check_rate_limit(self, identity: str) -> Optional[tuple[GuardrailRule, RateLimitStatus]]:
        """Consume one request for ``identity``; return the rule and status if over the limit."""
        rule = next(
            (r for r, _ in self._snapshot() if r.type is RuleType.RATE_LIMIT), None,
        )
        if rule is None:
            return None
        status = self.rate_limiter.check(
            identity,
            max_requests=int(rule.config.get("max_requests", DEFAULT_MAX_REQUESTS)),
            window_ms=int(rule.config.get("window_ms", DEFAULT_WINDOW_MS)),
        )
        return None if status.allowed else (rule, status)

    def _evaluate(self, subject: _Subject, rules, ledger_identity: str,
                  raw_input: Any) -> ValidationResult:
        result = ValidationResult(sanitized=subject.payload)
        working = subject.payload

        for rule, compiled in rules:
            if not self._applies(rule, subject):
                continue
            try:
                outcome = self._apply_rule(rule, compiled, subject, working)
            except Exception:
                logger.exception("Error applying guardrail rule %s", rule.name)
                result.warnings.append(f"Rule {rule.name} failed to execute")
                continue

            result.matched_rules.extend(outcome.matched_rules)
            if outcome.blocked:
                result.block(outcome.reason, outcome.errors[0] if outcome.errors else outcome.reason)
                result.errors.extend(outcome.errors[1:])
                self._log_violation(ledger_identity, rule, raw_input)
                return result

            if outcome.sanitized is not None:
                working = outcome.sanitized
                result.sanitized = working
            result.warnings.extend(outcome.warnings)
            result.requires_approval = result.requires_approval or outcome.requires_approval

        return result

    def _apply_rule(self, rule: GuardrailRule, compiled: list[re.Pattern[str]],
                    subject: _Subject, working: dict[str, Any]) -> ValidationResult:
        handlers: dict[RuleType, Callable[..., ValidationResult]] = {
            RuleType.CONTENT_FILTER: self._apply_content_filter,
            RuleType.SECURITY_CHECK: self._apply_security_check,
            RuleType.DATA_VALIDATION: self._apply_data_validation,
            RuleType.PERMISSION_CHECK: self._apply_permission_check,
        }
        handler = handlers.get(rule.type)
        if handler is None:
            # rate_limit rules are consulted before evaluation
            return ValidationResult()
        return handler(rule, compiled, subject, working)

    @staticmethod
    def _applies(rule: GuardrailRule, subject: _Subject) -> bool:
        conditions = rule.conditions
        if conditions.user_roles is not None and subject.user_role not in conditions.user_roles:
            return False
        if subject.kind == "tool_execution":
            return True
        if conditions.agent_types is not None and subject.agent_type not in conditions.agent_types:
            return False
        if conditions.tool_names is not None and subject.tool_name not in conditions.tool_names:
            return False
        return True

    @staticmethod
    def _targets_tool(rule: GuardrailRule, tool_input: ToolInput) -> bool:
        tool_names = rule.conditions.tool_names
        agent_types = rule.conditions.agent_types
        if tool_names is None and agent_types is None:
            return True
        return (tool_input.tool_name in (tool_names or [])
                or tool_input.agent_name in (agent_types or []))

    @staticmethod
    def _trigger(rule: GuardrailRule, outcome: ValidationResult, reason: str,
                 error: str, warning: str) -> None:
        """Apply the rule's action once its trigger has fired."""
        if rule.id not in outcome.matched_rules:
            outcome.matched_rules.append(rule.id)
        if rule.action is RuleAction.BLOCK:
            outcome.block(reason, error)
        elif rule.action is RuleAction.REQUIRE_APPROVAL:
            outcome.requires_approval = True
            outcome.warnings.append(f"{warning} (approval required by {rule.name})")
        else:
            outcome.warnings.append(warning)

    # -- rule types ---------------------------------------------------------

    def _apply_content_filter(self, rule, compiled, subject, working) -> ValidationResult:
        outcome = ValidationResult()
        content = subject.content.lower()

        for keyword in _active_keywords(rule):
            if keyword.lower() in content:
                self._trigger(
                    rule, outcome,
                    reason=f"Blocked by content filter: {rule.name}",
                    error=f"Content contains prohibited keyword: {keyword}",
                    warning=f"Content contains flagged keyword: {keyword}",
                )
                if outcome.blocked:
                    return outcome

        if rule.action is RuleAction.SANITIZE:
            replacement = str(rule.config.get("replacement", DEFAULT_REPLACEMENT))
            redacted = subject.redact(working, self.sensitive_patterns + compiled, replacement)
            if redacted != working:
                outcome.sanitized = redacted
                outcome.warnings.append("Sensitive data was sanitized")
                if rule.id not in outcome.matched_rules:
                    outcome.matched_rules.append(rule.id)
            return outcome

        for pattern in compiled:
            if pattern.search(subject.content):
                self._trigger(
                    rule, outcome,
                    reason=f"Blocked by content filter: {rule.name}",
                    error=f"Content matches pattern: {pattern.pattern}",
                    warning=f"Content matches flagged pattern: {pattern.pattern}",
                )
                break
        return outcome

    def _apply_security_check(self, rule, compiled, subject, working) -> ValidationResult:
        outcome = ValidationResult()
        for pattern in compiled:
            if pattern.search(subject.content):
                logger.warning("Security pattern %r matched for rule %s",
                               pattern.pattern, rule.name)
                self._trigger(
                    rule, outcome,
                    reason=f"Security violation detected: {rule.name} (pattern '{pattern.pattern}')",
                    error=f"Content matches security pattern: {pattern.pattern}",
                    warning=f"Content matches security pattern: {pattern.pattern}",
                )
                break
        return outcome

    def _apply_data_validation(self, rule, compiled, subject, working) -> ValidationResult:
        outcome = ValidationResult()
        length = len(subject.content)
        max_length = rule.config.get("max_length")
        warn_length = rule.config.get("warn_length")

        if max_length is not None and length > max_length:
            self._trigger(
                rule, outcome,
                reason="Input too large",
                error=f"Input exceeds maximum length of {max_length} characters",
                warning=f"Input exceeds maximum length of {max_length} characters",
            )
            if outcome.blocked:
                return outcome

        if warn_length is not None and length > warn_length:
            outcome.warnings.append(f"Input is large ({length} characters)")
        return outcome

    def _apply_permission_check(self, rule, compiled, subject, working) -> ValidationResult:
        # TODO: resolve user_roles against an external permission source once one is wired in
        return ValidationResult()

    # -- ledger and statistics ---------------------------------------------

    def _log_violation(self, identity: str, rule: GuardrailRule, raw_input: Any) -> None:
        self.violations.record(identity, rule.id, raw_input)
        logger.warning("Guardrail violation: identity=%s rule=%s", identity, rule.id)

    def get_violation_history(self, identity: Optional[str] = None) -> list[dict[str, Any]]:
        return [
            {"identity": ident, "violations": records}
            for ident, records in self.violations.history(identity)
        ]

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            types_by_id = {rule.id: rule.type.value for rule in self._rules}
            total_rules = len(self._rules)
            active_rules = sum(1 for rule in self._rules if rule.enabled)

        violations_by_type: dict[str, int] = {}
        rule_ids = self.violations.rule_ids()
        for rule_id in rule_ids:
            rule_type = types_by_id.get(rule_id)
            if rule_type is not None:
                violations_by_type[rule_type] = violations_by_type.get(rule_type, 0) + 1

        return {
            "total_rules": total_rules,
            "active_rules": active_rules,
            "total_violations": len(rule_ids),
            "violations_by_type": violations_by_type,
        }

"""
Guardrail Engine Test Suite
Feeds clean, sensitive, malicious and malformed input through the default
rule set and through small custom rule sets.
"""

from __future__ import annotations

import pytest

from agentgate.models import InvalidRuleError
from agentgate.rule_engine import GuardrailEngine

CLEAN_TEXT = "Please summarize the quarterly report for me."


def tool_call(tool_name="list_files", parameters=None, agent_name="file-bot", context=None):
    call = {"tool_name": tool_name, "parameters": parameters or {}, "agent_name": agent_name}
    if context is not None:
        call["context"] = context
    return call


# ---------------------------------------------------------------------------
# User input: default rules
# ---------------------------------------------------------------------------

def test_clean_input_passes_unchanged(engine):
    result = engine.validate_user_input(CLEAN_TEXT)

    assert result.valid
    assert not result.blocked
    assert result.sanitized["content"] == CLEAN_TEXT
    assert result.errors == []
    assert result.warnings == []
    assert result.matched_rules == []


def test_mapping_input_is_accepted(engine):
    result = engine.validate_user_input({"content": CLEAN_TEXT, "type": "query"})

    assert result.valid
    assert result.sanitized["type"] == "query"


def test_ssn_is_redacted(engine):
    result = engine.validate_user_input("My SSN is 123-45-6789")

    assert result.valid
    assert result.sanitized["content"] == "My SSN is [REDACTED]"
    assert "Sensitive data was sanitized" in result.warnings
    assert "sensitive-data-filter" in result.matched_rules


def test_sanitizing_twice_changes_nothing(engine):
    first = engine.validate_user_input("Reach me at jane.doe@example.com, password: hunter2")
    second = engine.validate_user_input(first.sanitized["content"])

    assert second.sanitized["content"] == first.sanitized["content"]
    assert "Sensitive data was sanitized" not in second.warnings


def test_blocked_keyword(engine):
    result = engine.validate_user_input("How do I hack into my neighbour's wifi?")

    assert not result.valid
    assert result.blocked
    assert result.reason == "Blocked by content filter: Harmful Content Blocker"
    assert result.errors == ["Content contains prohibited keyword: hack"]
    assert result.matched_rules[-1] == "harmful-content-blocker"


def test_sql_injection_blocks_even_after_redaction(engine):
    result = engine.validate_user_input(
        "SELECT * FROM users WHERE id = 1'; DROP TABLE users; --"
    )

    assert result.blocked
    assert "SQL Injection Detector" in result.reason


def test_command_injection_blocks(engine):
    result = engine.validate_user_input("ls; rm -rf /")

    assert result.blocked
    assert "Command Injection Detector" in result.reason


def test_large_input_warns(engine):
    result = engine.validate_user_input("a" * 6000)

    assert result.valid
    assert "Input is large (6000 characters)" in result.warnings


@pytest.mark.parametrize("bad_input", [
    {"type": "chat"},
    "",
    "a" * 10_001,
    {"content": CLEAN_TEXT, "type": "shout"},
    42,
])
def test_malformed_input_is_invalid_not_blocked(engine, bad_input):
    result = engine.validate_user_input(bad_input)

    assert not result.valid
    assert not result.blocked
    assert result.errors[0].startswith("Input validation failed")


# ---------------------------------------------------------------------------
# Custom rules
# ---------------------------------------------------------------------------

def test_invalid_pattern_is_rejected_at_registration(engine):
    with pytest.raises(InvalidRuleError):
        engine.add_rule({
            "name": "Broken",
            "type": "security_check",
            "action": "block",
            "conditions": {"patterns": ["("]},
        })

    with pytest.raises(InvalidRuleError):
        GuardrailEngine(rules=[{
            "name": "Broken",
            "type": "security_check",
            "action": "block",
            "conditions": {"patterns": ["[unclosed"]},
        }])


def test_structurally_invalid_rule_is_rejected(engine):
    with pytest.raises(InvalidRuleError):
        engine.add_rule({"name": "No type", "action": "block"})
    with pytest.raises(InvalidRuleError):
        engine.add_rule(["not", "a", "rule"])


def test_duplicate_rule_ids_are_rejected():
    rule = {"id": "dup", "name": "Dup", "type": "content_filter", "action": "warn"}
    with pytest.raises(InvalidRuleError):
        GuardrailEngine(rules=[rule, rule])


def test_blank_keywords_never_match():
    engine = GuardrailEngine(rules=[{
        "name": "Blank",
        "type": "content_filter",
        "action": "block",
        "conditions": {"keywords": ["", "   "]},
    }])

    assert engine.validate_user_input(CLEAN_TEXT).valid


def test_faulty_rule_degrades_to_warning():
    engine = GuardrailEngine(rules=[{
        "name": "Broken Size Check",
        "type": "data_validation",
        "action": "warn",
        "config": {"max_length": "abc"},
    }])

    result = engine.validate_user_input(CLEAN_TEXT)

    assert result.valid
    assert result.warnings == ["Rule Broken Size Check failed to execute"]


def test_max_length_block():
    engine = GuardrailEngine(rules=[{
        "name": "Tiny",
        "type": "data_validation",
        "action": "block",
        "config": {"max_length": 10},
    }])

    result = engine.validate_user_input(CLEAN_TEXT)

    assert result.blocked
    assert result.reason == "Input too large"


def test_require_approval_rule_flags_without_blocking():
    engine = GuardrailEngine(rules=[{
        "id": "prod-approval",
        "name": "Production Changes",
        "type": "content_filter",
        "action": "require_approval",
        "conditions": {"keywords": ["production"]},
    }])

    result = engine.validate_user_input("Restart the production cluster")

    assert result.valid
    assert result.requires_approval
    assert result.matched_rules == ["prod-approval"]
    assert result.warnings == [
        "Content contains flagged keyword: production (approval required by Production Changes)"
    ]


def test_user_input_scoping_uses_metadata():
    engine = GuardrailEngine(rules=[{
        "name": "Ops Only",
        "type": "content_filter",
        "action": "block",
        "conditions": {"keywords": ["deploy"], "agent_types": ["ops-bot"]},
    }])

    other = engine.validate_user_input({"content": "deploy now", "metadata": {"agent_type": "chat-bot"}})
    ops = engine.validate_user_input({"content": "deploy now", "metadata": {"agent_type": "ops-bot"}})

    assert other.valid
    assert ops.blocked


def test_permission_check_is_neutral():
    engine = GuardrailEngine(rules=[{
        "name": "Admins",
        "type": "permission_check",
        "action": "block",
        "conditions": {"user_roles": ["admin"]},
    }])

    result = engine.validate_user_input({"content": CLEAN_TEXT, "metadata": {"user_role": "admin"}})

    assert result.valid
    assert result.matched_rules == []


# ---------------------------------------------------------------------------
# Tool execution
# ---------------------------------------------------------------------------

def test_clean_tool_call_passes(engine):
    result = engine.validate_tool_execution(tool_call(parameters={"path": "/srv/reports"}))

    assert result.valid
    assert result.sanitized["tool_name"] == "list_files"


def test_tool_parameters_are_sanitized(engine):
    result = engine.validate_tool_execution(tool_call(
        tool_name="send_email",
        parameters={"to": "alice@example.com", "body": "hi", "cc": ["bob@example.com"]},
        agent_name="mailer",
    ))

    assert result.valid
    assert result.sanitized["parameters"]["to"] == "[REDACTED]"
    assert result.sanitized["parameters"]["cc"] == ["[REDACTED]"]
    assert result.sanitized["parameters"]["body"] == "hi"
    assert result.sanitized["tool_name"] == "send_email"
    assert "Sensitive data was sanitized" in result.warnings


def test_tool_injection_blocks(engine):
    result = engine.validate_tool_execution(tool_call(
        tool_name="shell", parameters={"cmd": "ls; rm -rf /tmp"}, agent_name="ops-bot",
    ))

    assert result.blocked
    assert "Command Injection Detector" in result.reason


def test_tool_scoped_rule_only_applies_to_its_tool():
    engine = GuardrailEngine(rules=[{
        "name": "No Prod Deploys",
        "type": "content_filter",
        "action": "block",
        "conditions": {"keywords": ["prod"], "tool_names": ["deploy"]},
    }])

    deploy = engine.validate_tool_execution(tool_call("deploy", {"env": "prod"}, "ops-bot"))
    listing = engine.validate_tool_execution(tool_call("list_files", {"dir": "prod"}, "ops-bot"))

    assert deploy.blocked
    assert listing.valid


def test_agent_scoped_rule_matches_agent_name():
    engine = GuardrailEngine(rules=[{
        "name": "Finance Bot Limits",
        "type": "content_filter",
        "action": "block",
        "conditions": {"keywords": ["transfer"], "agent_types": ["finance-bot"]},
    }])

    assert engine.validate_tool_execution(
        tool_call("payments", {"op": "transfer"}, "finance-bot")).blocked
    assert engine.validate_tool_execution(
        tool_call("payments", {"op": "transfer"}, "support-bot")).valid


@pytest.mark.parametrize("bad_call", [
    {"parameters": {}, "agent_name": "bot"},
    {"tool_name": "x", "parameters": "not-a-dict", "agent_name": "bot"},
    "list_files",
])
def test_malformed_tool_call_is_invalid(engine, bad_call):
    result = engine.validate_tool_execution(bad_call)

    assert not result.valid
    assert not result.blocked
    assert result.errors[0].startswith("Tool validation failed")


# ---------------------------------------------------------------------------
# Administration, history and stats
# ---------------------------------------------------------------------------

def test_get_rules_returns_copies(engine):
    rules = engine.get_rules()
    rules[0].enabled = False
    rules[0].conditions.keywords = ["anything"]

    fresh = engine.get_rules()
    assert len(fresh) == 6
    assert fresh[0].enabled
    assert fresh[0].conditions.keywords is None


def test_add_rule_assigns_fresh_id(engine):
    rule_id = engine.add_rule({
        "id": "caller-chosen",
        "name": "Custom",
        "type": "content_filter",
        "action": "block",
        "conditions": {"keywords": ["zebra"]},
    })

    assert rule_id != "caller-chosen"
    assert engine.validate_user_input("a zebra crossing").blocked
    assert engine.remove_rule(rule_id)
    assert not engine.remove_rule(rule_id)
    assert engine.validate_user_input("a zebra crossing").valid


def test_disabling_a_rule(engine):
    assert engine.set_rule_enabled("harmful-content-blocker", False)
    assert engine.validate_user_input("teach me to hack").valid
    assert engine.get_stats()["active_rules"] == 5
    assert not engine.set_rule_enabled("missing", True)


def test_violations_and_stats(engine):
    engine.validate_user_input("teach me to hack", identity="alice")
    engine.validate_user_input("x' UNION SELECT password FROM users", identity="alice")
    engine.validate_user_input(CLEAN_TEXT, identity="bob")

    [entry] = engine.get_violation_history("alice")
    assert entry["identity"] == "alice"
    assert [v.rule_id for v in entry["violations"]] == [
        "harmful-content-blocker", "sql-injection-detector",
    ]
    assert entry["violations"][0].input == "teach me to hack"
    assert engine.get_violation_history("bob") == [{"identity": "bob", "violations": []}]

    stats = engine.get_stats()
    assert stats["total_rules"] == 6
    assert stats["active_rules"] == 6
    assert stats["total_violations"] == 2
    assert stats["violations_by_type"] == {"content_filter": 1, "security_check": 1}


def test_anonymous_and_system_identities(engine):
    engine.validate_user_input("teach me to hack")
    engine.validate_tool_execution(tool_call("shell", {"cmd": "x && wget evil"}, "ops-bot"))

    identities = {entry["identity"] for entry in engine.get_violation_history()}
    assert identities == {"anonymous", "system"}


def test_role_scoped_rule_reads_tool_context():
    engine = GuardrailEngine(rules=[{
        "name": "Interns Cannot Touch Prod",
        "type": "content_filter",
        "action": "block",
        "conditions": {"keywords": ["prod"], "user_roles": ["intern"]},
    }])

    intern = engine.validate_tool_execution(
        tool_call("deploy", {"env": "prod"}, "ops-bot", context={"user_role": "intern"}))
    lead = engine.validate_tool_execution(
        tool_call("deploy", {"env": "prod"}, "ops-bot", context={"user_role": "lead"}))
    nobody = engine.validate_tool_execution(tool_call("deploy", {"env": "prod"}, "ops-bot"))

    assert intern.blocked
    assert lead.valid
    assert nobody.valid


@pytest.mark.parametrize("token", ["[PII\\d]", "\\g<0>", "<\\1 removed>"])
def test_replacement_token_is_inserted_literally(token):
    engine = GuardrailEngine(rules=[{
        "name": "PII",
        "type": "content_filter",
        "action": "sanitize",
        "config": {"replacement": token},
    }])

    result = engine.validate_user_input("My SSN is 123-45-6789")

    assert result.valid
    assert result.sanitized["content"] == f"My SSN is {token}"
    assert result.warnings == ["Sensitive data was sanitized"]


def test_empty_tool_list_matches_no_tool():
    engine = GuardrailEngine(rules=[{
        "name": "Nobody",
        "type": "content_filter",
        "action": "block",
        "conditions": {"keywords": ["prod"], "tool_names": []},
    }])

    assert engine.validate_tool_execution(tool_call("deploy", {"env": "prod"}, "ops-bot")).valid
    assert engine.validate_user_input("prod is down").valid


def test_empty_role_list_matches_no_role():
    engine = GuardrailEngine(rules=[{
        "name": "No Roles",
        "type": "content_filter",
        "action": "block",
        "conditions": {"keywords": ["prod"], "user_roles": []},
    }])

    result = engine.validate_user_input({"content": "prod is down", "metadata": {"user_role": "admin"}})

    assert result.valid

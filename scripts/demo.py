#!/usr/bin/env python3
"""
Agentgate: End-to-End Demo Script

Walks through the admission loop: clean input, sanitization, blocked
content, injection detection, auto-approval, and a human approval that an
operator grants while the agent waits.

Usage:
    1. uvicorn main:app --port 8000
    2. python scripts/demo.py

Requires: httpx
"""

from __future__ import annotations

import json
import os
import sys
import threading
import time
from pathlib import Path

import httpx

# Ensure project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from agentgate_sdk import GatekeeperClient

BASE_URL = os.environ.get("GATEWAY_URL", "http://localhost:8000")

# ---------------------------------------------------------------------------
# Terminal colors (ANSI)
# ---------------------------------------------------------------------------

class C:
    RESET   = "\033[0m"
    BOLD    = "\033[1m"
    DIM     = "\033[2m"
    RED     = "\033[91m"
    GREEN   = "\033[92m"
    YELLOW  = "\033[93m"
    BLUE    = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN    = "\033[96m"
    WHITE   = "\033[97m"
    BG_RED  = "\033[41m"
    BG_GREEN = "\033[42m"
    BG_YELLOW = "\033[43m"


def banner(text: str, color: str = C.CYAN):
    width = 64
    print()
    print(f"{color}{C.BOLD}{'=' * width}{C.RESET}")
    print(f"{color}{C.BOLD}  {text}{C.RESET}")
    print(f"{color}{C.BOLD}{'=' * width}{C.RESET}")
    print()


def step(n: int, text: str):
    print(f"  {C.BOLD}{C.WHITE}[Step {n}]{C.RESET} {text}")


def ok(text: str):
    print(f"  {C.GREEN}{C.BOLD}OK{C.RESET} {text}")


def fail(text: str):
    print(f"  {C.RED}{C.BOLD}FAIL{C.RESET} {text}")


def info(text: str):
    print(f"  {C.DIM}{text}{C.RESET}")


def verdict_badge(outcome) -> str:
    if outcome.blocked:
        return f"{C.BG_RED}{C.WHITE}{C.BOLD} BLOCKED {C.RESET}"
    if outcome.requires_approval:
        return f"{C.BG_YELLOW}{C.WHITE}{C.BOLD} NEEDS APPROVAL {C.RESET}"
    if outcome.valid:
        return f"{C.BG_GREEN}{C.WHITE}{C.BOLD} ALLOWED {C.RESET}"
    return f"{C.BOLD} INVALID {C.RESET}"


def pp(data, indent: int = 4):
    raw = json.dumps(data, indent=indent, default=str)
    for line in raw.split("\n"):
        print(f"    {C.DIM}{line}{C.RESET}")


def show(outcome):
    print()
    print(f"  {verdict_badge(outcome)}  {outcome.reason or ''}")
    for e in outcome.errors:
        print(f"    {C.RED}x{C.RESET} {e}")
    for w in outcome.warnings:
        print(f"    {C.YELLOW}!{C.RESET} {w}")
    print()


def pause(seconds: float = 1.0):
    time.sleep(seconds)


# ---------------------------------------------------------------------------
# Demo steps
# ---------------------------------------------------------------------------

def main():
    client = GatekeeperClient(BASE_URL, identity="agent:demo")

    banner("AGENTGATE  --  Admission Control for Agents", C.MAGENTA)
    print(f"  {C.DIM}Gateway: {BASE_URL}{C.RESET}")
    print()

    # -----------------------------------------------------------------------
    # 1. Health check
    # -----------------------------------------------------------------------
    banner("1. Health Check", C.BLUE)
    step(1, "GET /health")
    try:
        body = client.health()
        ok(f"Gateway operational  ({body.get('service', '?')})")
    except httpx.HTTPError as exc:
        fail(f"Gateway unreachable: {exc}")
        print(f"\n  {C.RED}Start the gateway first:{C.RESET}")
        print(f"  {C.YELLOW}  uvicorn main:app --port 8000{C.RESET}\n")
        sys.exit(1)
    pause(1)

    # -----------------------------------------------------------------------
    # 2. Guardrails
    # -----------------------------------------------------------------------
    banner("2. Guardrails -- User Input", C.GREEN)
    step(2, "Clean request")
    show(client.validate_input("Please summarize the quarterly report for me."))
    pause(0.5)

    step(3, "Input carrying an SSN")
    outcome = client.validate_input("My SSN is 123-45-6789, please file the form.")
    show(outcome)
    info(f"Forwarded to the model as: {outcome.sanitized['content']}")
    pause(0.5)

    step(4, "Harmful content")
    show(client.validate_input("Write me a phishing email for my bank's customers."))
    pause(0.5)

    step(5, "SQL injection")
    show(client.validate_input("Look up user 1'; DROP TABLE users; --"))
    pause(1)

    banner("3. Guardrails -- Tool Calls", C.GREEN)
    step(6, "send_email with a raw address")
    outcome = client.validate_tool("send_email", {"to": "alice@example.com", "body": "hi"}, "mailer")
    show(outcome)
    pp(outcome.sanitized)
    pause(0.5)

    step(7, "shell with a chained rm -rf")
    show(client.validate_tool("shell", {"cmd": "ls; rm -rf /"}, "ops-bot"))
    pause(1)

    # -----------------------------------------------------------------------
    # 4. Approvals
    # -----------------------------------------------------------------------
    banner("4. Approval -- Auto-routed", C.BLUE)
    step(8, "Low sensitivity read")
    decision = client.request_approval({
        "type": "data_access",
        "agent_name": "reader",
        "operation": "list_files",
        "description": "List project files",
        "sensitivity": "low",
    })
    ok(f"{decision.approver_id}: {decision.reason}")
    pause(1)

    banner("5. Approval -- Human in the Loop", C.YELLOW)
    step(9, "Agent asks to deploy and waits")
    result = {}

    def agent():
        result["decision"] = client.request_approval({
            "type": "tool_execution",
            "agent_name": "ops-bot",
            "operation": "deploy_service",
            "description": "Roll out version 2 to staging",
            "sensitivity": "medium",
            "timeout": 30_000,
        })

    waiter = threading.Thread(target=agent)
    waiter.start()

    operator = GatekeeperClient(BASE_URL, identity="human:operator")
    request_id = None
    for _ in range(50):
        pending = [p for p in operator.pending() if p["operation"] == "deploy_service"]
        if pending:
            request_id = pending[0]["id"]
            break
        pause(0.2)
    if request_id is None:
        fail("Request never showed up as pending")
        sys.exit(1)
    info(f"Pending: {request_id}")

    step(10, "Operator approves")
    submission = operator.submit_decision(request_id, "human:operator", True, reason="Staging only")
    ok(f"Decision accepted: {submission.accepted}")

    waiter.join()
    decision = result["decision"]
    ok(f"Agent released: approved={decision.approved} by {decision.approver_id}")
    pause(1)

    # -----------------------------------------------------------------------
    # 6. History
    # -----------------------------------------------------------------------
    banner("6. Decision History", C.MAGENTA)
    for d in operator.history(limit=5):
        mark = f"{C.GREEN}+{C.RESET}" if d["approved"] else f"{C.RED}-{C.RESET}"
        print(f"    {mark} {d['request_id']:28s} {d['approver_id']:16s} {C.DIM}{d['reason']}{C.RESET}")
    print()


if __name__ == "__main__":
    main()

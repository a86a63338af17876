from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from agentgate.rate_limiter import SlidingWindowRateLimiter
from agentgate.rule_engine import GuardrailEngine


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    return GuardrailEngine()


@pytest.fixture
def limited_engine(clock):
    """Default rules, but the limiter runs on a fake clock."""
    return GuardrailEngine(rate_limiter=SlidingWindowRateLimiter(clock=clock))

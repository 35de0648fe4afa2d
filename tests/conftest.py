"""
Pytest configuration and shared fixtures.

WHAT: Marker registration and small builders used across the suite
WHY: Keep attachment/orchestrator setup identical between unit and API tests
HOW: Plain fixtures over the fake vendor adapters in fake_providers.py
"""

import pytest

from app.llm.service.orchestrator import Orchestrator
from fake_providers import FakeClock, FakeProvider
from pkg.rate_limit.limiter import RateLimiter


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (isolated component tests)")
    config.addinivalue_line("markers", "integration: Integration tests (multiple components)")
    config.addinivalue_line("markers", "slow: Tests that take significant time to run")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(window_ms=60_000, max_requests=100, clock=clock)


@pytest.fixture
def openai_fake():
    return FakeProvider("openai", reply="reply from openai")


@pytest.fixture
def anthropic_fake():
    return FakeProvider("anthropic", reply="reply from anthropic")


@pytest.fixture
def google_fake():
    return FakeProvider("google", reply="reply from google")


@pytest.fixture
def orchestrator(openai_fake, anthropic_fake, google_fake, rate_limiter):
    return Orchestrator([openai_fake, anthropic_fake, google_fake], rate_limiter)

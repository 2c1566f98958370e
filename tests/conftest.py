"""Pytest configuration shared by the subsidy hub test suite."""

from __future__ import annotations

import os
from typing import Generator

import pytest

# Keep developer .env files out of the test run
os.environ.setdefault("SUBSIDY_ENV_FILE", os.devnull)

from subsidy_hub.config import get_settings  # noqa: E402
from subsidy_hub.infrastructure.gateway import GatewayContext, RateLimitedGateway  # noqa: E402
from subsidy_hub.io.connectors.tabular import RateLimitedTransport  # noqa: E402

from tests.fixtures.fake_tabular_source import FakeClock, FakeTabularSource  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings() -> Generator[None, None, None]:
    """Every test sees settings built from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_transport() -> Generator[RateLimitedTransport, None, None]:
    """Transport without spacing or backoff delays."""
    transport = RateLimitedTransport(
        max_concurrent=4,
        min_interval=0.0,
        call_timeout=5.0,
        max_retries=2,
        backoff_base=0.0,
        backoff_jitter=0.0,
        backoff_cap=0.0,
    )
    yield transport
    transport.close()


@pytest.fixture
def gateway_context(clock: FakeClock) -> Generator[GatewayContext, None, None]:
    context = GatewayContext(max_entries=50, refresh_workers=2, clock=clock)
    yield context
    context.close(wait_for_refreshes=True)


@pytest.fixture
def gateway(
    gateway_context: GatewayContext, fast_transport: RateLimitedTransport
) -> RateLimitedGateway:
    return RateLimitedGateway(
        gateway_context, fast_transport, fresh_ttl=300.0, stale_ttl=1800.0
    )


@pytest.fixture
def fake_source() -> FakeTabularSource:
    return FakeTabularSource()

"""
Pytest configuration and shared fixtures.

Tests never wait on real timers: components get a VirtualClock and
settings with the auto injector and the delayed response disabled, unless a
test opts back in.
"""

import pytest

# Clear settings cache before any app imports so each run reads a fresh environment
from chatfeed.config import Settings, get_settings
get_settings.cache_clear()

from chatfeed.clock import VirtualClock
from chatfeed.service import build_state


@pytest.fixture
def settings() -> Settings:
    """Deterministic settings: 30 seeded messages, no injector, no response delay."""
    return Settings(
        _env_file=None,
        LOG_LEVEL="DEBUG",
        SEED_MESSAGE_COUNT=30,
        AUTO_REPLY_ENABLED=False,
        RESPONSE_DELAY_MS=0,
    )


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def chat(settings, clock):
    """Fully wired chat state driven by the virtual clock."""
    return build_state(settings, clock)

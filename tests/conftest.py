"""
Pytest configuration and shared fixtures for the skillstack test suite.
"""

import pytest

from skillstack import RuntimeConfig, SkillRuntime
from skillstack.events import EventBus
from skillstack.extensions.manager import ExtensionManager
from skillstack.skills.registry import SkillRegistry

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]


@pytest.fixture
def config():
    # Keep simulated API latency negligible in tests.
    return RuntimeConfig(api_latency_ms=1)


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def registry(config, events):
    return SkillRegistry(config=config, events=events)


@pytest.fixture
def manager(registry, config, events):
    return ExtensionManager(registry, config=config, events=events)


@pytest.fixture
def runtime(config):
    return SkillRuntime(config)

"""
Pytest configuration and shared fixtures for RelayBot tests.
"""

import pytest

from relaybot.auto_reply.dispatch import DispatchConfig, Dispatcher
from relaybot.auto_reply.queue import ProcessingQueue, QueueConfig
from relaybot.auto_reply.ratelimit import RateLimiter
from relaybot.plugins.registry import CommandRegistry
from relaybot.security.permissions import PermissionGate

from tests.helpers import OWNER, RecordingTransport


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def registry():
    return CommandRegistry()


@pytest.fixture
def gate(tmp_path):
    """Permission gate backed by a temporary store."""
    gate = PermissionGate(tmp_path / "permissions.json", owner_id=OWNER)
    gate.load()
    return gate


@pytest.fixture
def limiter():
    return RateLimiter(max_requests=20, window_seconds=60.0)


@pytest.fixture
def queue():
    return ProcessingQueue(QueueConfig(max_size=100, max_concurrent=5, max_retries=3))


@pytest.fixture
def dispatcher(registry, queue, gate, limiter, transport):
    """Dispatcher over fresh components with no plugins loaded."""
    return Dispatcher(
        registry=registry,
        queue=queue,
        permissions=gate,
        rate_limiter=limiter,
        transport=transport,
        config=DispatchConfig(prefix=".", owner_id=OWNER),
    )


@pytest.fixture
def plugin_dir(tmp_path):
    """Create a temporary plugin directory."""
    directory = tmp_path / "plugins"
    directory.mkdir()
    return directory


@pytest.fixture
def config_dir(tmp_path):
    """Create a temporary config directory."""
    config = tmp_path / "config"
    config.mkdir()
    return config

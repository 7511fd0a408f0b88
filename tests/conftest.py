"""Pytest configuration and shared fixtures for the evalqueue test suite."""

import logging
import sys
from pathlib import Path
from typing import AsyncGenerator

import pytest

# Add the repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from evalqueue.session.config import QueueConfig
from evalqueue.session.manager import EvaluationManager
from tests.fixtures.targets import FakeTarget, FakeWatcher, RecordingSink


# Configure logging for tests
logging.basicConfig(level=logging.WARNING)


@pytest.fixture
def config(tmp_path) -> QueueConfig:
    """Fast timings and a private exchange directory."""
    return QueueConfig(
        poll_interval=0.01,
        ready_interval=0.01,
        sync_timeout=2.0,
        retry_delay=0.01,
        exchange_dir=str(tmp_path),
    )


@pytest.fixture
def watcher() -> FakeWatcher:
    return FakeWatcher()


@pytest.fixture
def target(watcher) -> FakeTarget:
    return FakeTarget(watcher)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
async def manager(target, sink, config, watcher) -> AsyncGenerator[EvaluationManager, None]:
    """Manager wired to the in-process fakes, shut down after the test."""
    manager = EvaluationManager(target, sink, config=config, watcher=watcher)
    yield manager
    await manager.shutdown()


# Test markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Tests using real files or subprocesses")
    config.addinivalue_line("markers", "slow: Tests that take >1s")


# Timeout configuration
def pytest_collection_modifyitems(config, items):
    """Add a timeout to every test based on its markers."""
    for item in items:
        if item.get_closest_marker("slow"):
            item.add_marker(pytest.mark.timeout(60))
        elif item.get_closest_marker("unit"):
            item.add_marker(pytest.mark.timeout(5))
        else:
            item.add_marker(pytest.mark.timeout(30))

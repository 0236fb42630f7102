# PATH: tests/conftest.py
"""
Pytest configuration and fixtures for keeper tests.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "tests"))

from fakes import FakeClock, FakePool, FakeWallet, POOL_ADDRESS  # noqa: E402


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pool(clock):
    return FakePool(clock=clock)


@pytest.fixture
def wallet(pool):
    return FakeWallet({POOL_ADDRESS: pool})


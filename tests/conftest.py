"""
Shared fixtures and helpers for the install candidate resolver test suite.
"""

import pytest

from tests.fake_codec import FakeCodec


@pytest.fixture
def codec():
    """Return an empty in-memory codec; tests register files on it."""
    return FakeCodec()


@pytest.fixture
def log_lines():
    """Collect resolver log lines instead of sending them to logging."""
    lines: list[str] = []
    return lines

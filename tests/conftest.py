"""Shared fixtures for ladder tests."""

import pytest

from botladder.storage import MemoryStore, SqlStore


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Each storage engine, empty."""
    if request.param == "memory":
        return MemoryStore()
    return SqlStore("sqlite://")


@pytest.fixture
def memory_store():
    return MemoryStore()

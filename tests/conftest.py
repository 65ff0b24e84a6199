"""
Pytest configuration and fixtures for the community board.
"""
import os

import pytest

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("JWT_SECRET", "test-secret")

from community.models import Caller
from community.repository import PostRepository
from community.store import MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def repo(store):
    return PostRepository(store)


@pytest.fixture
def alice():
    return Caller(user_id="u1", name="Alice")


@pytest.fixture
def bob():
    return Caller(user_id="u2", name="Bob")


@pytest.fixture
def admin():
    return Caller(user_id="mod", name="Moderator", role="admin")

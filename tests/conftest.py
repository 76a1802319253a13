"""Shared fixtures for docbridge tests."""

import pytest

from docbridge.execution import EngineConfig, WriteEngine
from docbridge.storage import MemoryDocumentStore, StoreContext


@pytest.fixture
def store():
    """Fresh in-memory document store."""
    return MemoryDocumentStore()


@pytest.fixture
def context(store):
    return StoreContext(store)


@pytest.fixture
def engine(context):
    """Engine over the in-memory store with default configuration."""
    return WriteEngine(context)


@pytest.fixture
def score_engine(engine):
    """Engine whose 'Game' collection holds the null/absent score documents."""
    engine.insert_one("Game", {"name": "a", "score": 5})
    engine.insert_one("Game", {"name": "b", "score": None})
    engine.insert_one("Game", {"name": "c"})
    return engine


@pytest.fixture
def small_pool_config():
    return EngineConfig(removal_workers=2)

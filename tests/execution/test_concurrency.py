"""
Concurrency tests for the optimistic write engine.

Covers:
- two updates racing on one document: exactly one DONE, one RETRY, no lost
  update after the loser retries
- field removal retrying documents that lost a version race
- bounded removal rounds
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from docbridge.errors import VersionConflictError
from docbridge.execution import EngineConfig, RetryPolicy, WriteEngine, retry_on_conflict
from docbridge.signals import RETRY
from docbridge.storage import MemoryDocumentStore, StoreContext
from docbridge.storage.memory import MemoryConnection


class RacingConnection(MemoryConnection):
    """Holds every reader at a barrier until all racers have read."""

    def find(self, *args, **kwargs):
        docs = super().find(*args, **kwargs)
        if self._store.barrier is not None:
            self._store.barrier.wait(timeout=5)
        return docs


class RacingStore(MemoryDocumentStore):
    def __init__(self):
        super().__init__()
        self.barrier = None

    def _acquire(self):
        with self._lock:
            self.open_connections += 1
            self.connections_opened += 1
        return RacingConnection(self)


class InterferingConnection(MemoryConnection):
    """Before the first write to each document, another writer gets in first."""

    def _interfere(self, collection, key, version):
        store = self._store
        with store._lock:
            if store.interfere and key not in store.interfered:
                store.interfered.add(key)
                current = store._collections[collection][key]
                # Concurrent writer: same content, new version
                super().replace(collection, key, version, dict(current.content))

    def replace(self, collection, key, version, content):
        self._interfere(collection, key, version)
        return super().replace(collection, key, version, content)

    def remove(self, collection, key, version):
        self._interfere(collection, key, version)
        return super().remove(collection, key, version)


class InterferingStore(MemoryDocumentStore):
    def __init__(self, interfere=True):
        super().__init__()
        self.interfere = interfere
        self.interfered = set()

    def _acquire(self):
        with self._lock:
            self.open_connections += 1
            self.connections_opened += 1
        return InterferingConnection(self)


class TestVersionRace:
    """Concurrent updates to one document are serialized by its version."""

    def test_one_done_one_retry_then_no_lost_update(self):
        store = RacingStore()
        engine = WriteEngine(StoreContext(store))
        engine.insert_one("Player", {"name": "ann", "wins": 0, "losses": 0})
        updates = [{"$inc": {"wins": 1}}, {"$inc": {"losses": 1}}]

        store.barrier = threading.Barrier(2)
        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(
                pool.map(
                    lambda update: engine.find_one_and_update("Player", {"name": "ann"}, update),
                    updates,
                )
            )
        store.barrier = None

        retried = [i for i, result in enumerate(results) if result is RETRY]
        done = [i for i, result in enumerate(results) if isinstance(result, dict)]
        assert len(retried) == 1
        assert len(done) == 1

        # The loser restarts from READ and re-applies its update
        loser_update = updates[retried[0]]
        final = retry_on_conflict(
            lambda: engine.find_one_and_update("Player", {"name": "ann"}, loser_update),
            RetryPolicy(max_attempts=3),
        )

        assert final == {"name": "ann", "wins": 1, "losses": 1}
        assert store.open_connections == 0

    def test_delete_race(self):
        store = RacingStore()
        engine = WriteEngine(StoreContext(store))
        engine.insert_one("Player", {"name": "ann"})

        store.barrier = threading.Barrier(2)
        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(
                pool.map(lambda _: engine.find_one_and_delete("Player", {"name": "ann"}), range(2))
            )
        store.barrier = None

        assert sorted(map(repr, results)) == sorted([repr({"name": "ann"}), repr(RETRY)])


class TestFieldRemovalRetries:
    """remove_fields keeps going until no document holds the field."""

    def test_conflicting_documents_are_retried(self, caplog):
        store = InterferingStore()
        engine = WriteEngine(StoreContext(store), EngineConfig(removal_workers=3))
        for i in range(6):
            engine.insert_one("Player", {"name": f"p{i}", "legacy": i})

        assert engine.remove_fields("Player", "legacy") == 6
        assert engine.count("Player", {"legacy": {"$exists": True}}) == 0
        assert len(store.interfered) == 6
        assert "conflict(s) in round 1" in caplog.text

    def test_round_limit(self):
        store = InterferingStore()
        engine = WriteEngine(StoreContext(store), EngineConfig(max_removal_rounds=1))
        engine.insert_one("Player", {"name": "ann", "legacy": 1})

        with pytest.raises(VersionConflictError):
            engine.remove_fields("Player", "legacy")

    def test_delete_many_retries_conflicts(self):
        store = InterferingStore()
        engine = WriteEngine(StoreContext(store))
        for i in range(4):
            engine.insert_one("Player", {"name": f"p{i}"})

        assert engine.delete_many("Player", {}) == 4
        assert engine.count("Player") == 0
        assert len(store.interfered) == 4

    def test_many_documents_in_parallel(self):
        store = MemoryDocumentStore()
        engine = WriteEngine(StoreContext(store), EngineConfig(removal_workers=8))
        for i in range(50):
            engine.insert_one("Player", {"name": f"p{i}", "legacy": {"nested": i}})

        assert engine.remove_fields("Player", "legacy") == 50
        assert all("legacy" not in doc.content for doc in store.documents("Player"))

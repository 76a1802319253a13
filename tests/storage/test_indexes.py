"""
Tests for docbridge.storage.indexes and docbridge.storage.context.
"""

import threading

from docbridge.execution import WriteEngine
from docbridge.execution.config import EngineConfig
from docbridge.storage.base import IndexSpec
from docbridge.storage.context import StoreContext
from docbridge.storage.indexes import IndexRegistry


class TestIndexRegistry:
    def test_primary_key_index_always_listed(self):
        assert IndexRegistry().snapshot() == ("_id_",)

    def test_add_and_remove(self):
        registry = IndexRegistry()
        registry.add("email_1")
        registry.add("email_1")

        assert registry.snapshot() == ("_id_", "email_1")

        registry.remove("email_1")
        registry.remove("_id_")

        assert registry.snapshot() == ("_id_",)

    def test_snapshot_is_immutable_copy(self):
        registry = IndexRegistry(["a_1"])
        snapshot = registry.snapshot()
        registry.add("b_1")

        assert snapshot == ("_id_", "a_1")
        assert "b_1" in registry
        assert len(registry) == 3

    def test_concurrent_adds(self):
        registry = IndexRegistry()
        threads = [
            threading.Thread(target=registry.add, args=(f"f{i}_1",)) for i in range(50)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 51


class TestStoreContext:
    def test_handles_are_cached(self, store):
        context = StoreContext(store)

        assert context.collection("Player") is context.collection("Player")
        assert context.list_collections() == ("Player",)

    def test_prefix_applied(self, store):
        context = StoreContext(store, EngineConfig(collection_prefix="app_"))

        assert context.collection("Player").native_name == "app_Player"

    def test_lazy_creation_with_primary_key_index(self, store):
        handle = StoreContext(store).collection("Player")

        with store.connection() as conn:
            handle.ensure_created(conn)
            handle.ensure_created(conn)

        assert store.index_names("Player") == ["_id_"]

    def test_primary_key_index_can_be_disabled(self, store):
        handle = StoreContext(store, EngineConfig(create_id_index=False)).collection("Player")

        with store.connection() as conn:
            handle.ensure_created(conn)

        assert store.index_names("Player") == []

    def test_forget(self, store):
        context = StoreContext(store)
        first = context.collection("Player")
        context.forget("Player")

        assert context.collection("Player") is not first

    def test_existing_indexes_are_loaded_on_first_use(self, store):
        with store.connection() as conn:
            conn.create_collection("Player")
            conn.create_index("Player", IndexSpec("email_1", ("email",)))

        handle = StoreContext(store).collection("Player")
        with store.connection() as conn:
            handle.ensure_created(conn)

        assert handle.indexes.snapshot() == ("_id_", "email_1")

    def test_engine_lists_indexes_created_by_an_earlier_context(self, store):
        WriteEngine(StoreContext(store)).create_index("User", ["team", "rank"], unique=False)

        fresh = WriteEngine(StoreContext(store))

        assert fresh.get_indexes("User") == ("_id_", "team_1_rank_1")

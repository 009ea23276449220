"""
Tests for the key/value stores backing the registry.

Tests cover:
- Buffered atomic batches and rollback on exceptions
- Nested batches joining the outer one
- Batch isolation from other threads and registries
- JSON file persistence across restarts
- Corrupt or malformed store documents
"""

import json
import os
import threading

import pytest

from sealvault.core.config import RegistryConfig
from sealvault.core.crypto_utils import hash_secret
from sealvault.core.exceptions import StorageError
from sealvault.core.registry import EnvelopeRegistry
from sealvault.core.storage import InMemoryStore, JsonFileStore

from tests.sealvault_tests.helpers import BENEFICIARY, OWNER, ManualClock, envelope_id


class FailingCommitStore(InMemoryStore):
    """Store whose batch commit blocks until released, then fails."""

    def __init__(self):
        super().__init__()
        self.committing = threading.Event()
        self.release = threading.Event()

    def _commit(self, writes):
        self.committing.set()
        self.release.wait(timeout=5)
        raise StorageError("disk full")


class TestAtomicBatches:
    def test_writes_visible_inside_batch_only_after_commit(self):
        store = InMemoryStore()
        with store.atomic():
            store.set("A", 1)
            assert store.get("A") == 1
            assert store.has("A")
            assert store.snapshot() == {}
        assert store.snapshot() == {"A": 1}

    def test_exception_discards_batch(self):
        store = InMemoryStore({"A": 1})
        with pytest.raises(RuntimeError):
            with store.atomic():
                store.set("A", 2)
                store.set("B", 3)
                raise RuntimeError("boom")
        assert store.snapshot() == {"A": 1}
        assert not store.has("B")

    def test_nested_batch_joins_outer(self):
        store = InMemoryStore()
        with pytest.raises(RuntimeError):
            with store.atomic():
                with store.atomic():
                    store.set("inner", True)
                raise RuntimeError("outer failure")
        assert store.snapshot() == {}

    def test_values_are_copied(self):
        store = InMemoryStore()
        payload = {"nested": [1, 2]}
        store.set("K", payload)
        payload["nested"].append(3)
        fetched = store.get("K")
        fetched["nested"].append(4)
        assert store.get("K") == {"nested": [1, 2]}

    def test_other_threads_never_see_or_join_an_open_batch(self):
        store = InMemoryStore()
        entered = threading.Event()
        release = threading.Event()
        observed = {}

        def failing_batch():
            try:
                with store.atomic():
                    store.set("A", 1)
                    entered.set()
                    release.wait(timeout=5)
                    raise RuntimeError("rollback")
            except RuntimeError:
                pass

        def outside_writer():
            observed["A"] = store.get("A")
            store.set("B", 2)

        batch = threading.Thread(target=failing_batch)
        batch.start()
        assert entered.wait(timeout=5)

        writer = threading.Thread(target=outside_writer)
        writer.start()
        writer.join(timeout=0.2)
        assert writer.is_alive()

        release.set()
        batch.join(timeout=5)
        writer.join(timeout=5)

        assert observed == {"A": None}
        assert store.snapshot() == {"B": 2}

    def test_default_for_missing_key(self):
        store = InMemoryStore()
        assert store.get("missing") is None
        assert store.get("missing", 5) == 5


class TestJsonFileStore:
    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "state" / "registry.json"
        store = JsonFileStore(str(path))
        store.set("OWNER", OWNER)

        reloaded = JsonFileStore(str(path))
        assert reloaded.get("OWNER") == OWNER
        assert json.loads(path.read_text())["OWNER"] == OWNER

    def test_failed_batch_leaves_file_untouched(self, tmp_path):
        path = tmp_path / "registry.json"
        store = JsonFileStore(str(path))
        store.set("A", 1)
        before = path.read_text()

        with pytest.raises(ValueError):
            with store.atomic():
                store.set("A", 2)
                raise ValueError("abort")
        assert path.read_text() == before
        assert JsonFileStore(str(path)).get("A") == 1

    def test_no_temp_files_left_behind(self, tmp_path):
        store = JsonFileStore(str(tmp_path / "registry.json"))
        store.set("A", 1)
        store.set("B", 2)
        assert sorted(os.listdir(tmp_path)) == ["registry.json"]

    def test_corrupt_file_raises_storage_error(self, tmp_path):
        path = tmp_path / "registry.json"
        path.write_text("{not json")
        with pytest.raises(StorageError) as exc_info:
            JsonFileStore(str(path))
        assert exc_info.value.recoverable is False

    def test_non_object_document_rejected(self, tmp_path):
        path = tmp_path / "registry.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(StorageError, match="not a JSON object"):
            JsonFileStore(str(path))

    def test_empty_path_rejected(self):
        with pytest.raises(ValueError):
            JsonFileStore("")

    def test_registry_survives_restart(self, tmp_path):
        path = str(tmp_path / "registry.json")
        clock = ManualClock()
        secret_hash = hash_secret("restart")

        first = EnvelopeRegistry(store=JsonFileStore(path), time_provider=clock)
        first.initialize(RegistryConfig(owner=OWNER))
        first.create_envelope(OWNER, envelope_id(1), BENEFICIARY, 800, secret_hash)
        first.create_envelope(OWNER, envelope_id(2), BENEFICIARY, 200, secret_hash)

        second = EnvelopeRegistry(store=JsonFileStore(path), time_provider=clock)
        assert second.owner == OWNER
        assert second.envelope_ids() == [envelope_id(1), envelope_id(2)]
        assert second.claim(BENEFICIARY, envelope_id(1), secret_hash) == 800

        third = EnvelopeRegistry(store=JsonFileStore(path), time_provider=clock)
        assert third.get_envelope(envelope_id(1)).claimed == 800


class TestRegistryIsolation:
    def test_accessors_do_not_report_uncommitted_bootstrap(self):
        store = FailingCommitStore()
        registry = EnvelopeRegistry(store=store, time_provider=ManualClock())
        errors = []
        observed = {}

        def bootstrap():
            try:
                registry.initialize(RegistryConfig(owner=OWNER))
            except StorageError as exc:
                errors.append(exc)

        def inspect():
            observed["initialized"] = registry.is_initialized

        initializer = threading.Thread(target=bootstrap)
        initializer.start()
        assert store.committing.wait(timeout=5)

        reader = threading.Thread(target=inspect)
        reader.start()
        reader.join(timeout=0.2)
        assert reader.is_alive()

        store.release.set()
        initializer.join(timeout=5)
        reader.join(timeout=5)

        assert len(errors) == 1
        assert observed == {"initialized": False}
        assert store.snapshot() == {}

    def test_second_registry_on_shared_store_sees_committed_state_only(self):
        store = FailingCommitStore()
        writer = EnvelopeRegistry(store=store, time_provider=ManualClock())
        reader = EnvelopeRegistry(store=store, time_provider=ManualClock())
        observed = {}

        def bootstrap():
            try:
                writer.initialize(RegistryConfig(owner=OWNER))
            except StorageError:
                pass

        def inspect():
            observed["initialized"] = reader.is_initialized

        initializer = threading.Thread(target=bootstrap)
        initializer.start()
        assert store.committing.wait(timeout=5)

        inspector = threading.Thread(target=inspect)
        inspector.start()
        store.release.set()
        initializer.join(timeout=5)
        inspector.join(timeout=5)

        assert observed == {"initialized": False}

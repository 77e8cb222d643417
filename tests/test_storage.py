"""
Tests for storage backends and nested atomic blocks
"""

import pytest
import tempfile
from pathlib import Path

from capped_ledger.storage import (
    InMemoryStorage, SQLiteStorage, StorageInterface, create_storage
)


test_data = {
    "id": "test_001",
    "account": "alice",
    "balance": 100
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    """Each backend under test"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(":memory:")
    yield backend
    backend.close()


class TestStorageInterface:
    """Test record access shared by all backends"""

    def test_basic_operations(self, storage):
        """Test save, load, load_all and count"""
        storage.save("test_table", "record_1", test_data)
        assert storage.load("test_table", "record_1") == test_data

        storage.save("test_table", "record_2", {"id": "record_2", "account": "bob", "balance": 0})
        assert [r["account"] for r in storage.load_all("test_table")] == ["alice", "bob"]
        assert storage.count("test_table") == 2
        assert storage.count("other_table") == 0

    def test_load_missing_record(self, storage):
        """Unknown ids load as None"""
        assert storage.load("test_table", "missing") is None

    def test_save_overwrites_in_place(self, storage):
        """Saving the same id replaces the record without moving it"""
        storage.save("test_table", "record_1", {"balance": 1})
        storage.save("test_table", "record_2", {"balance": 5})
        storage.save("test_table", "record_1", {"balance": 2})

        assert storage.count("test_table") == 2
        assert storage.load_all("test_table") == [{"balance": 2}, {"balance": 5}]

    def test_in_memory_returns_copies(self):
        """Mutating a loaded or saved dict does not change stored data"""
        storage = InMemoryStorage()
        data = {"balance": 5}
        storage.save("test_table", "record_1", data)
        data["balance"] = 6

        loaded = storage.load("test_table", "record_1")
        loaded["balance"] = 500

        assert storage.load("test_table", "record_1") == {"balance": 5}


class TestAtomicBlocks:
    """Test atomic() commit, rollback and nesting"""

    def test_commit(self, storage):
        """Writes inside a successful block persist"""
        with storage.atomic():
            storage.save("test_table", "record_1", test_data)
            storage.save("test_table", "record_2", {"id": "record_2"})

        assert storage.count("test_table") == 2
        assert not storage.in_transaction

    def test_rollback(self, storage):
        """A failing block leaves no trace"""
        storage.save("test_table", "record_1", {"balance": 1})

        with pytest.raises(ValueError, match="Simulated error"):
            with storage.atomic():
                storage.save("test_table", "record_1", {"balance": 99})
                storage.save("test_table", "record_1", {"balance": 98})
                storage.save("test_table", "record_2", {"balance": 2})
                raise ValueError("Simulated error")

        assert storage.load("test_table", "record_1") == {"balance": 1}
        assert storage.load("test_table", "record_2") is None
        assert storage.count("test_table") == 1
        assert not storage.in_transaction

    def test_inner_failure_keeps_outer_work(self, storage):
        """A caught inner failure only undoes the inner block"""
        with storage.atomic():
            storage.save("test_table", "outer", {"v": 1})
            try:
                with storage.atomic():
                    storage.save("test_table", "outer", {"v": 10})
                    storage.save("test_table", "inner", {"v": 2})
                    raise ValueError("inner failure")
            except ValueError:
                pass
            assert storage.in_transaction
            assert storage.load("test_table", "outer") == {"v": 1}

        assert storage.load("test_table", "outer") == {"v": 1}
        assert storage.load("test_table", "inner") is None

    def test_outer_failure_discards_inner_commit(self, storage):
        """Committed inner work is still discarded if the outer block fails"""
        storage.save("test_table", "shared", {"v": 0})

        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("test_table", "shared", {"v": 1})
                with storage.atomic():
                    storage.save("test_table", "shared", {"v": 2})
                    storage.save("test_table", "inner", {"v": 2})
                raise ValueError("outer failure")

        assert storage.load("test_table", "shared") == {"v": 0}
        assert storage.load("test_table", "inner") is None

    def test_rollback_only_touches_written_records(self):
        """Undo work depends on what the block wrote, not on the store size"""
        storage = InMemoryStorage()
        for i in range(1000):
            storage.save("history", f"event_{i}", {"n": i})

        storage.begin_transaction()
        storage.save("balances", "alice", {"balance": 1})
        storage.save("balances", "alice", {"balance": 2})
        assert storage._journals == [{("balances", "alice"): None}]
        storage.rollback()

        assert storage.load("balances", "alice") is None
        assert storage.count("history") == 1000

    def test_sqlite_commit_survives_reopen(self):
        """Committed data is durable across connections"""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "test.db"

            storage = SQLiteStorage(db_path)
            with storage.atomic():
                storage.save("test_table", "record_1", test_data)
            try:
                with storage.atomic():
                    storage.save("test_table", "record_2", {"id": "record_2"})
                    raise ValueError("Simulated error")
            except ValueError:
                pass
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("test_table", "record_1") == test_data
            assert reopened.load("test_table", "record_2") is None
            reopened.close()

    def test_sqlite_table_created_in_rolled_back_block(self):
        """A table first used inside a failed block can still be used afterwards"""
        storage = SQLiteStorage(":memory:")
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("fresh_table", "a", {"v": 1})
                raise RuntimeError("boom")

        storage.save("fresh_table", "b", {"v": 2})
        assert storage.load_all("fresh_table") == [{"v": 2}]
        storage.close()

class TestCreateStorage:
    """Test backend selection from a database URL"""

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_memory_url(self):
        storage = create_storage("sqlite:///:memory:")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"
        storage.close()

    def test_sqlite_file_url(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "ledger.db"
            storage = create_storage(f"sqlite:///{db_path}")
            assert isinstance(storage, StorageInterface)
            assert storage.db_path == str(db_path)
            storage.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_storage("postgresql://localhost/ledger")

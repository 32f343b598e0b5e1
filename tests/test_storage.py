"""
Tests for storage backends

Both backends must honour insert-only semantics and roll back every write of
a failed atomic block.
"""

import os
import tempfile
import pytest

from lending_core.storage import InMemoryStorage, SQLiteStorage, create_storage
from lending_core.errors import ConflictError


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    if request.param == "memory":
        backend = InMemoryStorage()
        yield backend
        backend.close()
    else:
        with tempfile.TemporaryDirectory() as tmp:
            backend = SQLiteStorage(os.path.join(tmp, "lending.db"))
            yield backend
            backend.close()


class TestBasicOperations:
    """Test CRUD operations on each backend"""

    def test_save_and_load(self, storage):
        storage.save("loans", "loan-1", {"id": "loan-1", "status": "active", "principal_minor": 10000})

        loaded = storage.load("loans", "loan-1")
        assert loaded == {"id": "loan-1", "status": "active", "principal_minor": 10000}
        assert storage.exists("loans", "loan-1")
        assert storage.load("loans", "missing") is None

    def test_save_overwrites(self, storage):
        storage.save("loans", "loan-1", {"id": "loan-1", "status": "active"})
        storage.save("loans", "loan-1", {"id": "loan-1", "status": "completed"})

        assert storage.load("loans", "loan-1")["status"] == "completed"
        assert storage.count("loans") == 1

    def test_insert_refuses_existing(self, storage):
        storage.insert("payment_events", "loan-1:1", {"id": "loan-1:1", "amount_minor": 100})
        with pytest.raises(ConflictError):
            storage.insert("payment_events", "loan-1:1", {"id": "loan-1:1", "amount_minor": 999})
        assert storage.load("payment_events", "loan-1:1")["amount_minor"] == 100

    def test_loaded_records_are_copies(self, storage):
        storage.save("loans", "loan-1", {"id": "loan-1", "tags": ["a"]})
        loaded = storage.load("loans", "loan-1")
        loaded["tags"].append("b")
        assert storage.load("loans", "loan-1")["tags"] == ["a"]

    def test_find(self, storage):
        storage.save("loans", "1", {"id": "1", "borrower_id": "b1", "status": "active"})
        storage.save("loans", "2", {"id": "2", "borrower_id": "b1", "status": "completed"})
        storage.save("loans", "3", {"id": "3", "borrower_id": "b2", "status": "active"})

        assert {r["id"] for r in storage.find("loans", {"borrower_id": "b1"})} == {"1", "2"}
        assert [r["id"] for r in storage.find("loans", {"borrower_id": "b1", "status": "active"})] == ["1"]
        assert storage.find("loans", {"borrower_id": "b9"}) == []

    def test_delete_and_clear(self, storage):
        storage.save("loans", "1", {"id": "1"})
        storage.save("loans", "2", {"id": "2"})

        assert storage.delete("loans", "1")
        assert not storage.delete("loans", "1")
        storage.clear_table("loans")
        assert storage.count("loans") == 0

    def test_empty_table(self, storage):
        assert storage.load_all("nothing") == []
        assert storage.count("nothing") == 0


class TestAtomic:
    """Test all-or-nothing blocks"""

    def test_commit(self, storage):
        with storage.atomic():
            storage.save("loans", "1", {"id": "1", "status": "active"})
            storage.insert("payment_events", "1:1", {"id": "1:1"})

        assert storage.exists("loans", "1")
        assert storage.exists("payment_events", "1:1")

    def test_rollback_restores_previous_values(self, storage):
        storage.save("loans", "1", {"id": "1", "status": "active"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("loans", "1", {"id": "1", "status": "completed"})
                storage.insert("payment_events", "1:1", {"id": "1:1"})
                storage.delete("loans", "1")
                raise RuntimeError("boom")

        assert storage.load("loans", "1") == {"id": "1", "status": "active"}
        assert not storage.exists("payment_events", "1:1")

    def test_nested_blocks_join_outer(self, storage):
        """An inner block's writes roll back with the outer block"""
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("loans", "1", {"id": "1"})
                storage.save("loans", "2", {"id": "2"})
                raise RuntimeError("boom")

        assert storage.count("loans") == 0

    def test_conflict_inside_block_rolls_back(self, storage):
        storage.insert("payment_events", "1:1", {"id": "1:1"})
        with pytest.raises(ConflictError):
            with storage.atomic():
                storage.save("loans", "1", {"id": "1"})
                storage.insert("payment_events", "1:1", {"id": "1:1"})

        assert not storage.exists("loans", "1")

    def test_rollback_listeners_fire_once_per_outer_block(self, storage):
        rollbacks = []
        storage.add_rollback_listener(lambda: rollbacks.append(True))

        with storage.atomic():
            storage.insert("loans", "1", {"id": "1"})
        assert rollbacks == []

        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.insert("loans", "2", {"id": "2"})
                raise RuntimeError("boom")
        assert rollbacks == [True]


class TestSQLitePersistence:
    """Test that SQLite survives reopening"""

    def test_reopen(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "lending.db")
            first = SQLiteStorage(path)
            first.save("loans", "1", {"id": "1", "status": "active"})
            first.close()

            second = SQLiteStorage(path)
            assert second.load("loans", "1") == {"id": "1", "status": "active"}
            second.close()

    def test_create_storage(self):
        assert isinstance(create_storage("memory"), InMemoryStorage)
        sqlite = create_storage("sqlite", ":memory:")
        assert isinstance(sqlite, SQLiteStorage)
        sqlite.close()
        with pytest.raises(ValueError):
            create_storage("postgres")

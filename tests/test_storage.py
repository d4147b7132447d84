"""
Tests for storage backends and unit-of-work support
"""

import pytest
import tempfile
import os
from datetime import datetime, timezone

from backoffice.storage import InMemoryStorage, SQLiteStorage, create_storage
from backoffice.errors import StorageFailure


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "status": "PENDING",
    "read": False,
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


class StorageContract:
    """Behaviour shared by every backend"""

    def make_storage(self):
        raise NotImplementedError

    def setup_method(self):
        self.storage = self.make_storage()

    def teardown_method(self):
        self.storage.close()

    def test_basic_operations(self):
        self.storage.save("records", "test_001", test_data)
        assert self.storage.load("records", "test_001") == test_data
        assert self.storage.exists("records", "test_001")
        assert not self.storage.exists("records", "missing")
        assert self.storage.load("records", "missing") is None

        self.storage.save("records", "test_002", {"id": "test_002", "status": "COMPLETED"})
        assert self.storage.count("records") == 2
        assert [r["id"] for r in self.storage.load_all("records")] == ["test_001", "test_002"]

    def test_find_filters(self):
        self.storage.save("records", "a", {"id": "a", "status": "PENDING", "read": False})
        self.storage.save("records", "b", {"id": "b", "status": "PENDING", "read": True})
        self.storage.save("records", "c", {"id": "c", "status": "REJECTED", "read": False})

        assert [r["id"] for r in self.storage.find("records", {"status": "PENDING"})] == ["a", "b"]
        assert [r["id"] for r in self.storage.find("records", {"read": False})] == ["a", "c"]
        assert self.storage.find("records", {"status": "PENDING", "read": True})[0]["id"] == "b"

    def test_update_keeps_insertion_order(self):
        self.storage.save("records", "a", {"id": "a", "n": 1})
        self.storage.save("records", "b", {"id": "b", "n": 1})
        self.storage.save("records", "a", {"id": "a", "n": 2})

        records = self.storage.load_all("records")
        assert [r["id"] for r in records] == ["a", "b"]
        assert records[0]["n"] == 2

    def test_update_where_matches(self):
        self.storage.save("records", "a", {"id": "a", "status": "PENDING"})

        assert self.storage.update_where(
            "records", "a", {"status": "PENDING"}, {"id": "a", "status": "COMPLETED"}
        )
        assert self.storage.load("records", "a")["status"] == "COMPLETED"

    def test_update_where_refuses_stale_expectation(self):
        self.storage.save("records", "a", {"id": "a", "status": "COMPLETED"})

        assert not self.storage.update_where(
            "records", "a", {"status": "PENDING"}, {"id": "a", "status": "REJECTED"}
        )
        assert self.storage.load("records", "a")["status"] == "COMPLETED"
        assert not self.storage.update_where(
            "records", "missing", {"status": "PENDING"}, {"id": "missing"}
        )
        assert not self.storage.exists("records", "missing")

    def test_atomic_commit(self):
        with self.storage.atomic():
            self.storage.save("records", "a", {"id": "a"})
            self.storage.save("other", "b", {"id": "b"})

        assert self.storage.exists("records", "a")
        assert self.storage.exists("other", "b")
        assert not self.storage.in_transaction

    def test_atomic_rollback_on_error(self):
        self.storage.save("records", "a", {"id": "a", "n": 1})

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("records", "a", {"id": "a", "n": 2})
                self.storage.save("records", "b", {"id": "b"})
                raise RuntimeError("boom")

        assert self.storage.load("records", "a")["n"] == 1
        assert not self.storage.exists("records", "b")
        assert not self.storage.in_transaction

    def test_nested_rollback_only_discards_inner_unit(self):
        with self.storage.atomic():
            self.storage.save("records", "outer", {"id": "outer"})
            with pytest.raises(RuntimeError):
                with self.storage.atomic():
                    self.storage.save("records", "inner", {"id": "inner"})
                    raise RuntimeError("inner failure")

        assert self.storage.exists("records", "outer")
        assert not self.storage.exists("records", "inner")

    def test_outer_failure_discards_committed_inner_unit(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                with self.storage.atomic():
                    self.storage.save("records", "inner", {"id": "inner"})
                raise RuntimeError("outer failure")

        assert not self.storage.exists("records", "inner")

    def test_after_commit_runs_once_committed(self):
        calls = []
        with self.storage.atomic():
            self.storage.after_commit(lambda: calls.append("outer"))
            with self.storage.atomic():
                self.storage.after_commit(lambda: calls.append("inner"))
            assert calls == []

        assert calls == ["outer", "inner"]

    def test_after_commit_dropped_on_rollback(self):
        calls = []
        with self.storage.atomic():
            with pytest.raises(RuntimeError):
                with self.storage.atomic():
                    self.storage.after_commit(lambda: calls.append("inner"))
                    raise RuntimeError("inner failure")
            self.storage.after_commit(lambda: calls.append("outer"))

        assert calls == ["outer"]

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.after_commit(lambda: calls.append("lost"))
                raise RuntimeError("outer failure")

        assert calls == ["outer"]

    def test_after_commit_outside_unit_runs_immediately(self):
        calls = []
        self.storage.after_commit(lambda: calls.append("now"))
        assert calls == ["now"]

    def test_failing_callback_is_swallowed(self):
        calls = []

        def broken():
            raise RuntimeError("side effect failed")

        with self.storage.atomic():
            self.storage.save("records", "a", {"id": "a"})
            self.storage.after_commit(broken)
            self.storage.after_commit(lambda: calls.append("next"))

        assert self.storage.exists("records", "a")
        assert calls == ["next"]

    def test_table_first_touched_in_rolled_back_unit_stays_usable(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                assert self.storage.load("fresh", "missing") is None
                raise RuntimeError("not found")

        self.storage.save("fresh", "a", {"id": "a"})
        assert self.storage.load("fresh", "a") == {"id": "a"}

    def test_table_first_touched_in_rolled_back_savepoint_stays_usable(self):
        with self.storage.atomic():
            with pytest.raises(RuntimeError):
                with self.storage.atomic():
                    self.storage.exists("fresh", "missing")
                    raise RuntimeError("inner failure")
            self.storage.save("fresh", "a", {"id": "a"})

        assert self.storage.count("fresh") == 1

    def test_load_last(self):
        assert self.storage.load_last("records") is None

        self.storage.save("records", "a", {"id": "a"})
        self.storage.save("records", "b", {"id": "b"})
        assert self.storage.load_last("records") == {"id": "b"}

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("records", "c", {"id": "c"})
                assert self.storage.load_last("records") == {"id": "c"}
                raise RuntimeError("abort")

        assert self.storage.load_last("records") == {"id": "b"}


class TestInMemoryStorage(StorageContract):

    def make_storage(self):
        return InMemoryStorage()

    def test_loaded_records_are_copies(self):
        self.storage.save("records", "a", {"id": "a", "tags": ["x"]})
        loaded = self.storage.load("records", "a")
        loaded["tags"].append("y")

        assert self.storage.load("records", "a")["tags"] == ["x"]


class TestSQLiteStorage(StorageContract):

    def make_storage(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        return SQLiteStorage(os.path.join(self.temp_dir.name, "test.db"))

    def teardown_method(self):
        self.storage.close()
        self.temp_dir.cleanup()

    def test_data_survives_reopen(self):
        path = self.storage.db_path
        self.storage.save("records", "a", {"id": "a", "amount": "10.00"})
        self.storage.close()

        self.storage = SQLiteStorage(path)
        assert self.storage.load("records", "a") == {"id": "a", "amount": "10.00"}

    def test_driver_errors_become_storage_failures(self):
        with pytest.raises(StorageFailure):
            self.storage._execute("SELECT * FROM no_such_table")


class TestCreateStorage:

    def test_memory_backend(self):
        assert isinstance(create_storage("memory"), InMemoryStorage)

    def test_sqlite_backend(self):
        storage = create_storage("sqlite", ":memory:")
        try:
            assert isinstance(storage, SQLiteStorage)
        finally:
            storage.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_storage("postgres")

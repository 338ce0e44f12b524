"""
Tests for the key-value store backends.
Every test runs against both the in-memory and the SQL backend.
"""
import time

import pytest
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from kvrecord.config import MapperSettings
from kvrecord.store import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore, create_store
from kvrecord.store.sql import Base, create_sql_engine


class TestHashes:
    """Tests for hash operations."""

    def test_hset_merges_fields(self, store):
        store.hset("h", {"a": "1"})
        store.hset("h", {"b": "2", "a": "3"})
        assert store.hgetall("h") == {"a": "3", "b": "2"}

    def test_hdel(self, store):
        store.hset("h", {"a": "1", "b": "2"})
        assert store.hdel("h", "a", "missing") == 1
        assert store.hgetall("h") == {"b": "2"}
        store.hdel("h", "b")
        assert not store.exists("h")

    def test_missing_hash(self, store):
        assert store.hgetall("nope") == {}


class TestSets:
    """Tests for set operations."""

    def test_sadd_srem_counts(self, store):
        assert store.sadd("s", "a", "b", "a") == 2
        assert store.sadd("s", "a") == 0
        assert store.scard("s") == 2
        assert store.srem("s", "a", "z") == 1
        assert store.smembers("s") == {"b"}
        assert store.sismember("s", "b")
        assert not store.sismember("s", "a")

    def test_empty_set_disappears(self, store):
        store.sadd("s", "a")
        store.srem("s", "a")
        assert not store.exists("s")
        assert store.keys() == []

    def test_sinter(self, store):
        store.sadd("x", "1", "2", "3")
        store.sadd("y", "2", "3")
        store.sadd("z", "3")
        assert store.sinter("x", "y") == {"2", "3"}
        assert store.sinter("x", "y", "z") == {"3"}
        assert store.sinter("x", "missing") == set()


class TestKeyspace:
    """Tests for keyspace-wide operations."""

    def test_keys_pattern_and_delete(self, store):
        store.hset("ns:1:attrs", {"a": "1"})
        store.sadd("ns::ids", "1")
        store.sadd("other::ids", "1")
        assert store.keys("ns:*") == ["ns:1:attrs", "ns::ids"]
        assert store.delete("ns:1:attrs", "ns::ids", "missing") == 2
        assert store.keys() == ["other::ids"]

    def test_clear(self, store):
        store.hset("h", {"a": "1"})
        store.sadd("s", "a")
        store.acquire_lock(["L"], "t", timeout=0, expiry=10, poll_interval=0.01)
        store.clear()
        assert store.keys() == []
        assert store.get_store_status()["held_locks"] == []

    def test_protocol(self, store):
        assert isinstance(store, KeyValueStore)


class TestSqlBackend:
    """Tests specific to the SQLAlchemy backend."""

    def test_status(self, sql_store):
        sql_store.hset("h", {"a": "1", "b": "2"})
        sql_store.sadd("s", "x")
        status = sql_store.get_store_status()
        assert status["store"] == "sql"
        assert status["hash_field_count"] == 2
        assert status["set_member_count"] == 1

    def test_errors_propagate_after_rollback(self, sql_store, caplog):
        """Test that a failing statement is rolled back, logged and re-raised."""
        def broken(session):
            session.execute_unknown()
        with pytest.raises(AttributeError):
            sql_store._run("broken", broken)
        assert "Error during broken" in caplog.text
        # the store is still usable
        sql_store.sadd("s", "x")
        assert sql_store.smembers("s") == {"x"}

    def test_file_database_shared_between_instances(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'kv.db'}"
        SqlKeyValueStore.from_url(url).sadd("s", "x")
        assert SqlKeyValueStore.from_url(url).smembers("s") == {"x"}


@pytest.fixture
def sql_engine():
    engine = create_sql_engine("sqlite://")
    Base.metadata.create_all(engine)
    return engine


def rival_insert(engine, table, sql, params):
    """Commit sql on the store's connection just before its first INSERT into table, as another writer would."""
    fired = []

    @event.listens_for(engine, "before_cursor_execute")
    def before_insert(conn, cursor, statement, parameters, context, executemany):
        if not fired and statement.lstrip().startswith(f"INSERT INTO {table}"):
            fired.append(statement)
            cursor.execute(sql, params)
            cursor.connection.commit()

    return fired


class TestSqlConcurrentWriters:
    """Tests for rows that another writer inserts between our read and our write."""

    def test_sadd_tolerates_existing_member(self, sql_engine):
        store = SqlKeyValueStore(sessionmaker(bind=sql_engine))
        fired = rival_insert(sql_engine, "kv_set_members",
                             'INSERT INTO kv_set_members ("key", member) VALUES (?, ?)', ("s", "x"))
        assert store.sadd("s", "x", "y") == 1
        assert fired
        assert store.smembers("s") == {"x", "y"}

    def test_hset_last_write_wins(self, sql_engine):
        store = SqlKeyValueStore(sessionmaker(bind=sql_engine))
        fired = rival_insert(sql_engine, "kv_hash_fields",
                             'INSERT INTO kv_hash_fields ("key", field, value) VALUES (?, ?, ?)', ("h", "a", "theirs"))
        store.hset("h", {"a": "ours", "b": "2"})
        assert fired
        assert store.hgetall("h") == {"a": "ours", "b": "2"}

    def test_lease_taken_after_read_is_not_stolen(self, sql_engine):
        """Test that a lease another holder commits mid-acquisition makes ours fail rather than overwrite it."""
        store = SqlKeyValueStore(sessionmaker(bind=sql_engine))
        fired = rival_insert(sql_engine, "kv_lock_leases",
                             "INSERT INTO kv_lock_leases (name, token, expires_at) VALUES (?, ?, ?)",
                             ("Rule", "other", time.time() + 60))
        assert not store.acquire_lock(["Rule"], "mine", timeout=0, expiry=10, poll_interval=0.01)
        assert fired
        assert store.get_store_status()["held_locks"] == ["Rule"]
        # the lease still belongs to the other holder
        assert store.release_lock(["Rule"], "mine") == ["Rule"]
        assert store.get_store_status()["held_locks"] == ["Rule"]
        assert store.release_lock(["Rule"], "other") == []


class TestCreateStore:
    """Tests for picking a backend from settings."""

    def test_memory_url(self):
        assert isinstance(create_store(MapperSettings()), InMemoryKeyValueStore)

    def test_sql_url(self):
        assert isinstance(create_store(MapperSettings(store_url="sqlite://")), SqlKeyValueStore)

    def test_bad_sql_url(self):
        with pytest.raises((SQLAlchemyError, ValueError)):
            create_store(MapperSettings(store_url="notadriver://"))

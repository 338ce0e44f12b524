"""
Common fixtures for kvrecord tests.
Provides the test schema, both store backends and a mapper over each.
"""
import pytest

from kvrecord.config import MapperSettings
from kvrecord.mapper import RecordMapper
from kvrecord.schema import SchemaRegistry
from kvrecord.store.memory import InMemoryKeyValueStore
from kvrecord.store.sql import SqlKeyValueStore

# ========================================================================
# Test schema
# ========================================================================

EXAMPLE = "Example"
EXAMPLE_CHILD = "ExampleChild"
EXAMPLE_NS = "flapjack/data/redis_record/example"
EXAMPLE_CHILD_NS = "flapjack/data/redis_record/example_child"

CHECK = "Check"
RULE = "Rule"
TAG = "Tag"
CONTACT = "Contact"
MEDIUM = "Medium"


def build_registry() -> SchemaRegistry:
    """Declare the test entity types; the caller decides when to freeze."""
    registry = SchemaRegistry()

    registry.define(
        EXAMPLE,
        {"name": "string", "email": "string", "active": "boolean"},
        namespace=EXAMPLE_NS,
    ).validates("name", presence=True) \
     .index_by("active") \
     .has_many("fdrr_children", EXAMPLE_CHILD)

    registry.define(EXAMPLE_CHILD, {"name": "string"}, namespace=EXAMPLE_CHILD_NS) \
        .validates("name", presence=True)

    registry.define(
        CHECK,
        {"name": "string", "enabled": "boolean", "count": "integer",
         "ratio": "float", "last_update": "timestamp"},
    ).index_by("enabled", "count")

    # a rule is referenced from contacts and media; destroying it must clean both
    registry.define(TAG, {"name": "string"})
    registry.define(RULE, {"name": "string"}) \
        .validates("name", presence=True) \
        .has_many("tags", TAG) \
        .cleans_up(CONTACT, MEDIUM)
    registry.define(CONTACT, {"name": "string"}).has_many("rules", RULE)
    registry.define(MEDIUM, {"address": "string"}).has_many("rules", RULE)
    return registry


# ========================================================================
# Fixtures
# ========================================================================

@pytest.fixture
def registry():
    """Provide a frozen registry with the test schema."""
    return build_registry().freeze()


@pytest.fixture
def settings():
    """Short lock timings so contention tests finish quickly."""
    return MapperSettings(lock_timeout=2.0, lock_expiry=10.0, lock_poll_interval=0.01)


@pytest.fixture
def memory_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def sql_store():
    """SQLite in-memory database behind the SQL backend."""
    return SqlKeyValueStore.from_url("sqlite://")


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Run the test once against each backend."""
    if request.param == "memory":
        return InMemoryKeyValueStore()
    return SqlKeyValueStore.from_url("sqlite://")


@pytest.fixture
def mapper(registry, store, settings):
    return RecordMapper(registry, store, settings)


@pytest.fixture
def memory_mapper(registry, memory_store, settings):
    """Mapper over the in-memory store, for multi-threaded tests."""
    return RecordMapper(registry, memory_store, settings)


@pytest.fixture
def examples(mapper):
    return mapper.model(EXAMPLE)


@pytest.fixture
def children(mapper):
    return mapper.model(EXAMPLE_CHILD)

"""Schema-aware record mapper over a hash-and-set key-value store."""
from kvrecord.coercion import AttributeType
from kvrecord.config import MapperSettings, configure_logging, load_settings
from kvrecord.errors import (
    InvalidState,
    LockTimeout,
    MapperError,
    NotFound,
    SchemaError,
    TypeMismatch,
    ValidationError,
)
from kvrecord.mapper import Model, RecordMapper
from kvrecord.record import Record, RecordState
from kvrecord.schema import SchemaRegistry
from kvrecord.store import InMemoryKeyValueStore, SqlKeyValueStore, create_store
from kvrecord.validation import ErrorSet, register_validator

__all__ = [
    "AttributeType",
    "ErrorSet",
    "InMemoryKeyValueStore",
    "InvalidState",
    "LockTimeout",
    "MapperError",
    "MapperSettings",
    "Model",
    "NotFound",
    "Record",
    "RecordMapper",
    "RecordState",
    "SchemaError",
    "SchemaRegistry",
    "SqlKeyValueStore",
    "TypeMismatch",
    "ValidationError",
    "configure_logging",
    "create_store",
    "load_settings",
    "register_validator",
]

"""
Conversion of typed attribute values to and from the store's string form.

Booleans are stored as "true"/"false", numbers as canonical decimal text and
timestamps as integer seconds since the epoch. None is never encoded: absent
values are removed from the attribute hash instead of written as "".
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from kvrecord.errors import TypeMismatch


class AttributeType(str, Enum):
    """Primitive attribute types an entity type may declare."""
    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    TIMESTAMP = "timestamp"


def as_attribute_type(attr_type: Union[AttributeType, str]) -> AttributeType:
    if isinstance(attr_type, AttributeType):
        return attr_type
    try:
        return AttributeType(str(attr_type).lower())
    except ValueError:
        raise TypeMismatch("attribute type", attr_type, "unknown attribute type") from None


def check(attr_type: AttributeType, value: Any) -> Any:
    """
    Validate a Python value for assignment to an attribute of attr_type.

    Returns the value normalised to the type's canonical Python form
    (timestamps become timezone-aware UTC datetimes, integers assigned to
    float attributes become floats). None is always accepted.
    """
    if value is None:
        return None
    if attr_type is AttributeType.STRING:
        if isinstance(value, str):
            return value
    elif attr_type is AttributeType.BOOLEAN:
        if isinstance(value, bool):
            return value
    elif attr_type is AttributeType.INTEGER:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif attr_type is AttributeType.FLOAT:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif attr_type is AttributeType.TIMESTAMP:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc).replace(microsecond=0)
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return datetime.fromtimestamp(value, tz=timezone.utc)
            except (ValueError, OverflowError, OSError) as e:
                raise TypeMismatch(attr_type.value, value, str(e)) from e
    raise TypeMismatch(attr_type.value, value)


def encode(attr_type: AttributeType, value: Any) -> str:
    """Render a typed value as the string stored in an attribute hash."""
    value = check(attr_type, value)
    if value is None:
        raise TypeMismatch(attr_type.value, value, "None is removed, not encoded")
    if attr_type is AttributeType.BOOLEAN:
        return "true" if value else "false"
    if attr_type is AttributeType.INTEGER:
        return str(value)
    if attr_type is AttributeType.FLOAT:
        return repr(value)
    if attr_type is AttributeType.TIMESTAMP:
        return str(int(value.timestamp()))
    return value


def decode(attr_type: AttributeType, raw: str) -> Any:
    """Parse a stored string back into a typed value; malformed text raises TypeMismatch."""
    if not isinstance(raw, str):
        raise TypeMismatch(attr_type.value, raw, "stored values are strings")
    if attr_type is AttributeType.STRING:
        return raw
    if attr_type is AttributeType.BOOLEAN:
        if raw == "true":
            return True
        if raw == "false":
            return False
        raise TypeMismatch(attr_type.value, raw)
    try:
        if attr_type is AttributeType.INTEGER:
            return int(raw)
        if attr_type is AttributeType.FLOAT:
            return float(raw)
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as e:
        raise TypeMismatch(attr_type.value, raw, str(e)) from e


def encode_index_value(attr_type: AttributeType, value: Any) -> str:
    """Index keys embed the same text as the attribute hash."""
    return encode(attr_type, value)

"""
Error taxonomy for the record mapper.

Every error raised by kvrecord derives from MapperError so that callers
(request gateways, notification filters) can catch mapper faults without
swallowing unrelated exceptions.
"""
from typing import Any, Optional, Sequence


class MapperError(Exception):
    """Base class for all record mapper errors."""


class SchemaError(MapperError):
    """Unknown entity type or attribute, or a declaration made after freeze."""


class TypeMismatch(MapperError, ValueError):
    """A value could not be converted to or from its declared attribute type."""

    def __init__(self, attr_type: Any, value: Any, detail: Optional[str] = None) -> None:
        self.attr_type = attr_type
        self.value = value
        message = f"cannot treat {value!r} as {attr_type}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NotFound(MapperError):
    """A lookup by id or by index yielded nothing."""

    def __init__(self, entity_type: str, criteria: Any) -> None:
        self.entity_type = entity_type
        self.criteria = criteria
        super().__init__(f"{entity_type} not found for {criteria!r}")


class InvalidState(MapperError):
    """The operation is not allowed in the record's current lifecycle state."""


class ValidationError(MapperError):
    """Raised by save_or_raise when a record fails validation."""

    def __init__(self, errors: Any) -> None:
        # errors is an ErrorSet; typed as Any to keep this module import-free
        self.errors = errors
        super().__init__(f"validation failed: {'; '.join(errors.full_messages())}")


class LockTimeout(MapperError):
    """A cross-type lock was not acquired within the configured bound."""

    def __init__(self, names: Sequence[str], timeout: float) -> None:
        self.names = tuple(names)
        self.timeout = timeout
        super().__init__(f"could not lock {', '.join(self.names)} within {timeout}s")

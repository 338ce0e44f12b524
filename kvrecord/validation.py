"""
Validation engine.

Validators are declared per attribute in the schema registry as
(kind, options) pairs and turned into callables here. A validator receives
the attribute's in-memory value and returns an error message, or None when
the value is acceptable. New kinds are added with register_validator()
without changing how validate() is called.
"""
import re
from collections.abc import Collection
from numbers import Number
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Mapping, Optional

from kvrecord.errors import SchemaError

if TYPE_CHECKING:
    from kvrecord.schema import EntityType, ValidatorSpec

Validator = Callable[[Any], Optional[str]]
ValidatorFactory = Callable[[Dict[str, Any]], Validator]


##############################
# 1) Error set
##############################

class ErrorSet(Mapping[str, List[str]]):
    """Attribute name -> ordered list of human-readable messages; empty means valid."""

    def __init__(self) -> None:
        self._errors: Dict[str, List[str]] = {}

    def add(self, attr: str, message: str) -> None:
        self._errors.setdefault(attr, []).append(message)

    def __getitem__(self, attr: str) -> List[str]:
        return list(self._errors[attr])

    def __iter__(self) -> Iterator[str]:
        return iter(self._errors)

    def __len__(self) -> int:
        return len(self._errors)

    def full_messages(self) -> List[str]:
        return [f"{attr} {msg}" for attr, msgs in self._errors.items() for msg in msgs]

    def to_dict(self) -> Dict[str, List[str]]:
        return {attr: list(msgs) for attr, msgs in self._errors.items()}

    def __repr__(self) -> str:
        return f"ErrorSet({self._errors!r})"


##############################
# 2) Built-in validator kinds
##############################

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _presence(options: Dict[str, Any]) -> Validator:
    message = options.get("message", "can't be blank")
    return lambda value: message if _is_blank(value) else None


def _format(options: Dict[str, Any]) -> Validator:
    if "with" not in options:
        raise SchemaError("format validation needs a 'with' pattern")
    try:
        pattern = re.compile(options["with"])
    except (re.error, TypeError) as e:
        raise SchemaError(f"invalid format pattern {options['with']!r}: {e}") from e
    message = options.get("message", "is invalid")
    allow_blank = options.get("allow_blank", True)

    def check(value: Any) -> Optional[str]:
        if _is_blank(value):
            return None if allow_blank else message
        return None if pattern.search(str(value)) else message
    return check


_NUMERIC_BOUNDS = {
    "greater_than": (lambda v, b: v > b, "must be greater than {}"),
    "greater_than_or_equal_to": (lambda v, b: v >= b, "must be greater than or equal to {}"),
    "less_than": (lambda v, b: v < b, "must be less than {}"),
    "less_than_or_equal_to": (lambda v, b: v <= b, "must be less than or equal to {}"),
}


def _numericality(options: Dict[str, Any]) -> Validator:
    unknown = set(options) - set(_NUMERIC_BOUNDS) - {"message"}
    if unknown:
        raise SchemaError(f"unknown numericality options {sorted(unknown)}")

    def check(value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, Number):
            return options.get("message", "is not a number")
        for name, (test, template) in _NUMERIC_BOUNDS.items():
            if name in options and not test(value, options[name]):
                return options.get("message", template.format(options[name]))
        return None
    return check


def _inclusion(options: Dict[str, Any]) -> Validator:
    allowed = options.get("in", options.get("with"))
    if not isinstance(allowed, Collection) or isinstance(allowed, str):
        raise SchemaError("inclusion validation needs an 'in' collection")
    message = options.get("message", "is not included in the list")
    return lambda value: None if value is None or value in allowed else message


def _length(options: Dict[str, Any]) -> Validator:
    minimum = options.get("minimum")
    maximum = options.get("maximum")
    if minimum is None and maximum is None:
        raise SchemaError("length validation needs 'minimum' or 'maximum'")

    def check(value: Any) -> Optional[str]:
        if value is None:
            return None
        size = len(value)
        if minimum is not None and size < minimum:
            return options.get("message", f"is too short (minimum is {minimum} characters)")
        if maximum is not None and size > maximum:
            return options.get("message", f"is too long (maximum is {maximum} characters)")
        return None
    return check


_VALIDATOR_FACTORIES: Dict[str, ValidatorFactory] = {
    "presence": _presence,
    "format": _format,
    "numericality": _numericality,
    "inclusion": _inclusion,
    "length": _length,
}


def register_validator(kind: str, factory: ValidatorFactory) -> None:
    """Make a new validator kind available to schema declarations."""
    if kind in _VALIDATOR_FACTORIES:
        raise SchemaError(f"validator kind '{kind}' already registered")
    _VALIDATOR_FACTORIES[kind] = factory


def build_validator(spec: "ValidatorSpec") -> Validator:
    try:
        factory = _VALIDATOR_FACTORIES[spec.kind]
    except KeyError:
        raise SchemaError(f"unknown validator kind '{spec.kind}'") from None
    return factory(dict(spec.options))


##############################
# 3) Engine
##############################

def validate_values(entity_type: "EntityType", values: Mapping[str, Any]) -> ErrorSet:
    """Run every declared validator against values (attribute name -> typed value)."""
    errors = ErrorSet()
    for attr, specs in entity_type.validators.items():
        value = values.get(attr)
        for spec in specs:
            message = build_validator(spec)(value)
            if message is not None:
                errors.add(attr, message)
    return errors


def validate(record: Any) -> ErrorSet:
    """Validate a record's in-memory (not yet persisted) attribute values."""
    return validate_values(record.entity_type, record.attributes)

"""
Record façade.

A Record is one stored instance of an entity type. It is configured by the
type's schema rather than generated per type: attribute reads and writes go
through the change tracker, save() validates then hands the changed values to
the index manager, and destroy() unwinds identity, index and association
state, inside a cross-type lock when the type declares collaborators.

Lifecycle: NEW -> PERSISTED -> DESTROYED. DESTROYED is terminal.
"""
import logging
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Set

from kvrecord import coercion
from kvrecord.config import LOGGER_PREFIX
from kvrecord.associations import AssociationHandle
from kvrecord.errors import InvalidState, ValidationError
from kvrecord.schema import EntityType
from kvrecord.tracker import ChangeTracker
from kvrecord.validation import ErrorSet, validate

if TYPE_CHECKING:
    from kvrecord.mapper import RecordMapper


class RecordState(str, Enum):
    NEW = "new"
    PERSISTED = "persisted"
    DESTROYED = "destroyed"


class Record:
    """
    Typed, change-tracked view of one record.

    Declared attributes are readable and writable as record.name or
    record["name"]; declared associations are reachable as record.children or
    record.association("children").
    """
    def __init__(
        self,
        mapper: "RecordMapper",
        entity_type: EntityType,
        record_id: Optional[str] = None,
        attributes: Optional[Mapping[str, Any]] = None,
        state: RecordState = RecordState.NEW,
    ) -> None:
        object.__setattr__(self, "_logger", logging.getLogger(f"{LOGGER_PREFIX}.RecordMapper"))
        object.__setattr__(self, "_mapper", mapper)
        object.__setattr__(self, "_entity_type", entity_type)
        object.__setattr__(self, "_id", str(record_id) if record_id is not None else uuid.uuid4().hex)
        object.__setattr__(self, "_state", state)
        object.__setattr__(self, "_errors", ErrorSet())
        blank = {name: None for name in entity_type.attributes}
        if state is RecordState.PERSISTED:
            object.__setattr__(self, "_tracker", ChangeTracker({**blank, **(attributes or {})}))
        else:
            object.__setattr__(self, "_tracker", ChangeTracker(blank))
            for attr, value in (attributes or {}).items():
                self.set(attr, value)

    ##############################
    # Identity and state
    ##############################

    @property
    def id(self) -> str:
        return self._id

    @property
    def entity_type(self) -> EntityType:
        return self._entity_type

    @property
    def state(self) -> RecordState:
        return self._state

    @property
    def persisted(self) -> bool:
        return self._state is RecordState.PERSISTED

    @property
    def destroyed(self) -> bool:
        return self._state is RecordState.DESTROYED

    @property
    def errors(self) -> ErrorSet:
        """Messages from the most recent validation run."""
        return self._errors

    @property
    def attributes(self) -> Dict[str, Any]:
        """In-memory attribute values, unsaved edits included."""
        return self._tracker.values()

    ##############################
    # Attribute access
    ##############################

    def get(self, attr: str) -> Any:
        self._entity_type.attribute(attr)
        return self._tracker.get(attr)

    def set(self, attr: str, value: Any) -> None:
        if self.destroyed:
            raise InvalidState(f"cannot modify destroyed {self!r}")
        spec = self._entity_type.attribute(attr)
        self._tracker.set(attr, coercion.check(spec.type, value))

    def __getitem__(self, attr: str) -> Any:
        return self.get(attr)

    def __setitem__(self, attr: str, value: Any) -> None:
        self.set(attr, value)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        entity_type = self._entity_type
        if name in entity_type.attributes:
            return self.get(name)
        if name in entity_type.associations:
            return self.association(name)
        raise AttributeError(f"{entity_type.name} has no attribute or association '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
        elif name in self._entity_type.attributes or not hasattr(type(self), name):
            self.set(name, value)
        else:
            # read-only members such as id
            object.__setattr__(self, name, value)

    def changed(self) -> Set[str]:
        return self._tracker.changed()

    def changes(self) -> Dict[str, List[Any]]:
        return self._tracker.changes()

    def association(self, name: str) -> AssociationHandle:
        self._entity_type.association(name)
        return AssociationHandle(self._mapper.associations, self, name, self._mapper.load_record)

    ##############################
    # Persistence
    ##############################

    def is_valid(self) -> bool:
        object.__setattr__(self, "_errors", validate(self))
        return not self._errors

    def save(self) -> bool:
        """
        Validate then persist.

        A persisted record with no changes is not validated and writes
        nothing.

        Returns:
            False with errors populated if validation fails (nothing is
            written), True otherwise
        """
        if self.destroyed:
            raise InvalidState(f"cannot save destroyed {self!r}")
        if self.persisted and not self._tracker.has_changes():
            self._logger.debug(f"Nothing to save for {self!r}")
            return True
        if not self.is_valid():
            self._logger.info(f"Not saving {self!r}: {self._errors.full_messages()}")
            return False

        indexes = self._mapper.indexes
        type_name = self._entity_type.name
        if self._state is RecordState.NEW:
            if indexes.exists(type_name, self._id):
                raise InvalidState(f"{type_name}({self._id}) already exists")
            indexes.create(type_name, self._id, self._tracker.values())
            object.__setattr__(self, "_state", RecordState.PERSISTED)
        else:
            current = self._tracker.values()
            indexes.update(
                type_name,
                self._id,
                self._tracker.loaded_values(),
                {attr: current[attr] for attr in self._tracker.changed()},
            )
        self._tracker.reset()
        return True

    def save_or_raise(self) -> "Record":
        if not self.save():
            raise ValidationError(self._errors)
        return self

    def update_attributes(self, **attrs: Any) -> bool:
        """Apply a partial patch then save."""
        for attr, value in attrs.items():
            self.set(attr, value)
        return self.save()

    def refresh(self) -> "Record":
        """Discard unsaved edits and reload from the store."""
        if not self.persisted:
            raise InvalidState(f"cannot refresh {self._state.value} {self!r}")
        loaded = self._mapper.indexes.find_by_id(self._entity_type.name, self._id)
        self._tracker.reset(loaded)
        object.__setattr__(self, "_errors", ErrorSet())
        return self

    def destroy(self) -> None:
        """
        Remove the record and everything that refers to it.

        Children linked through this record's associations are unlinked, not
        deleted. When the type declares collaborators, their associations drop
        this record's id, all under lock(type, *collaborators) unless the
        caller already holds a scope covering those names. A caller scope
        that covers only some of them raises InvalidState.
        """
        if not self.persisted:
            raise InvalidState(f"cannot destroy {self._state.value} {self!r}")
        collaborators = self._entity_type.collaborators
        locks = self._mapper.locks
        if collaborators and not locks.holds(self._entity_type.name, *collaborators):
            with locks.lock(self._entity_type.name, *collaborators):
                self._destroy()
        else:
            self._destroy()

    def _destroy(self) -> None:
        type_name = self._entity_type.name
        # index cleanup uses the stored values, not unsaved in-memory edits
        stored = self._mapper.indexes.find_by_id(type_name, self._id)
        for collaborator in self._entity_type.collaborators:
            self._mapper.associations.purge_references(collaborator, type_name, self._id)
        self._mapper.associations.delete_all(type_name, self._id)
        self._mapper.indexes.delete(type_name, self._id, stored)
        object.__setattr__(self, "_state", RecordState.DESTROYED)

    ##############################
    # Representation
    ##############################

    def as_dict(self) -> Dict[str, Any]:
        """Attributes plus links (association name -> child ids), as served to clients."""
        data: Dict[str, Any] = {"id": self._id}
        data.update(self._tracker.values())
        data["links"] = {name: self.association(name).ids() for name in self._entity_type.associations}
        return data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self._entity_type.name == other._entity_type.name and self._id == other._id

    def __hash__(self) -> int:
        return hash((self._entity_type.name, self._id))

    def __repr__(self) -> str:
        return f"{self._entity_type.name}({self._id})"

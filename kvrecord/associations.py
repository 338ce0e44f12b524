"""
Has-many association maintenance.

A parent's association is a set of child ids stored under
<namespace>:<parent id>:<assoc name>_ids. Linking and unlinking never touch
the child record itself: membership and existence are separate lifecycles.
"""
import logging
from typing import Any, Callable, Iterable, Iterator, List, Optional

from kvrecord import keys
from kvrecord.config import LOGGER_PREFIX
from kvrecord.errors import InvalidState, NotFound, SchemaError
from kvrecord.index import IndexManager
from kvrecord.schema import AssociationSpec, EntityType, SchemaRegistry
from kvrecord.store.base import KeyValueStore

Loader = Callable[[str, str], Any]


class LazyRecordSequence:
    """
    Child records of one association, fetched on iteration.

    Each iteration re-reads the id set and resolves every id through the
    loader, so the sequence always reflects the store at iteration time.
    """
    def __init__(self, manager: "AssociationManager", parent_type: str, parent_id: str,
                 name: str, loader: Loader) -> None:
        self._manager = manager
        self._parent_type = parent_type
        self._parent_id = parent_id
        self._name = name
        self._loader = loader

    def __iter__(self) -> Iterator[Any]:
        target = self._manager.target_of(self._parent_type, self._name)
        for child_id in self._manager.ids(self._parent_type, self._parent_id, self._name):
            try:
                yield self._loader(target, child_id)
            except NotFound:
                self._manager._logger.warning(
                    f"{self._parent_type}({self._parent_id}).{self._name} names missing "
                    f"{target}({child_id}); skipping"
                )

    def __len__(self) -> int:
        """Number of ids that still resolve, matching what iteration yields."""
        target = self._manager.target_of(self._parent_type, self._name)
        ids = self._manager.ids(self._parent_type, self._parent_id, self._name)
        return sum(1 for child_id in ids if self._manager._indexes.exists(target, child_id))

    def __repr__(self) -> str:
        return f"LazyRecordSequence({self._parent_type}({self._parent_id}).{self._name})"


class AssociationManager:
    """Adds, removes and resolves has-many links between records."""

    def __init__(self, store: KeyValueStore, registry: SchemaRegistry, indexes: IndexManager) -> None:
        self._logger = logging.getLogger(f"{LOGGER_PREFIX}.AssociationManager")
        self._store = store
        self._registry = registry
        self._indexes = indexes

    def _resolve(self, parent_type: str, name: str) -> "tuple[EntityType, AssociationSpec]":
        entity_type = self._registry.get(parent_type)
        return entity_type, entity_type.association(name)

    def _key(self, parent_type: str, parent_id: str, name: str) -> str:
        entity_type, assoc = self._resolve(parent_type, name)
        return keys.association_key(entity_type.namespace, str(parent_id), assoc.name)

    def target_of(self, parent_type: str, name: str) -> str:
        return self._resolve(parent_type, name)[1].target

    def add(self, parent_type: str, parent_id: str, name: str, child_id: str) -> None:
        """Link child_id to the parent; re-adding an existing link is a no-op."""
        target = self.target_of(parent_type, name)
        if not self._indexes.exists(parent_type, parent_id):
            raise InvalidState(f"{parent_type}({parent_id}) must be saved before linking children")
        if not self._indexes.exists(target, child_id):
            raise NotFound(target, str(child_id))
        added = self._store.sadd(self._key(parent_type, parent_id, name), str(child_id))
        if added:
            self._logger.info(f"Linked {target}({child_id}) to {parent_type}({parent_id}).{name}")
        else:
            self._logger.debug(f"{target}({child_id}) already linked to {parent_type}({parent_id}).{name}")

    def remove(self, parent_type: str, parent_id: str, name: str, child_id: str) -> None:
        """Unlink child_id; the child record itself is left alone."""
        removed = self._store.srem(self._key(parent_type, parent_id, name), str(child_id))
        self._logger.info(
            f"Unlinked {child_id} from {parent_type}({parent_id}).{name} (removed={removed})"
        )

    def ids(self, parent_type: str, parent_id: str, name: str) -> List[str]:
        return sorted(self._store.smembers(self._key(parent_type, parent_id, name)))

    def contains(self, parent_type: str, parent_id: str, name: str, child_id: str) -> bool:
        return self._store.sismember(self._key(parent_type, parent_id, name), str(child_id))

    def all(self, parent_type: str, parent_id: str, name: str,
            loader: Optional[Loader] = None) -> LazyRecordSequence:
        """
        Restartable sequence of child records.

        Args:
            loader: Resolves (type name, id) to a record; defaults to the typed
                attribute dict returned by IndexManager.find_by_id
        """
        self._resolve(parent_type, name)
        return LazyRecordSequence(self, parent_type, str(parent_id), name,
                                  loader or self._indexes.find_by_id)

    def delete_all(self, parent_type: str, parent_id: str) -> None:
        """Drop every outgoing association set of a parent being destroyed."""
        entity_type = self._registry.get(parent_type)
        assoc_keys = [
            keys.association_key(entity_type.namespace, str(parent_id), name)
            for name in entity_type.associations
        ]
        if assoc_keys:
            self._store.delete(*assoc_keys)
            self._logger.info(f"Dropped {len(assoc_keys)} association set(s) of {parent_type}({parent_id})")

    def purge_references(self, collaborator_type: str, target_type: str, target_id: str) -> int:
        """
        Remove target_id from every association of collaborator_type that targets target_type.

        Returns:
            Number of association entries removed
        """
        collaborator = self._registry.get(collaborator_type)
        removed = 0
        for assoc in collaborator.associations_targeting(target_type):
            for owner_id in self._indexes.all_ids(collaborator_type):
                key = keys.association_key(collaborator.namespace, owner_id, assoc.name)
                removed += self._store.srem(key, str(target_id))
        if removed:
            self._logger.info(
                f"Purged {removed} reference(s) to {target_type}({target_id}) from {collaborator_type}"
            )
        return removed


class AssociationHandle:
    """
    Live view of one has-many association on a record.

    Reads always go to the store. A record that has not been saved yet has
    no children; linking requires the parent to be persisted, and a
    destroyed parent rejects every operation.
    """
    def __init__(self, manager: AssociationManager, parent: Any, name: str, loader: Loader) -> None:
        self._manager = manager
        self._parent = parent
        self._name = name
        self._loader = loader

    @property
    def name(self) -> str:
        return self._name

    @property
    def target(self) -> str:
        return self._manager.target_of(self._parent.entity_type.name, self._name)

    def _check_parent(self, writing: bool) -> bool:
        if self._parent.destroyed:
            raise InvalidState(f"{self._parent!r} is destroyed")
        if not self._parent.persisted:
            if writing:
                raise InvalidState(f"{self._parent!r} must be saved before linking children")
            return False
        return True

    def _child_id(self, child: Any) -> str:
        entity_type = getattr(child, "entity_type", None)
        if entity_type is not None:
            if entity_type.name != self.target:
                raise SchemaError(f"{self._name} holds {self.target}, not {entity_type.name}")
            return child.id
        return str(child)

    def add(self, *children: Any) -> None:
        self._check_parent(writing=True)
        for child in children:
            self._manager.add(self._parent.entity_type.name, self._parent.id, self._name, self._child_id(child))

    def remove(self, *children: Any) -> None:
        self._check_parent(writing=True)
        for child in children:
            self._manager.remove(self._parent.entity_type.name, self._parent.id, self._name, self._child_id(child))

    def ids(self) -> List[str]:
        if not self._check_parent(writing=False):
            return []
        return self._manager.ids(self._parent.entity_type.name, self._parent.id, self._name)

    def all(self) -> Iterable[Any]:
        if not self._check_parent(writing=False):
            return []
        return self._manager.all(self._parent.entity_type.name, self._parent.id, self._name, self._loader)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.all())

    def __len__(self) -> int:
        if not self._check_parent(writing=False):
            return 0
        return len(self._manager.all(self._parent.entity_type.name, self._parent.id, self._name, self._loader))

    def __contains__(self, child: Any) -> bool:
        if not self._check_parent(writing=False):
            return False
        return self._manager.contains(
            self._parent.entity_type.name, self._parent.id, self._name, self._child_id(child)
        )

    def __repr__(self) -> str:
        return f"AssociationHandle({self._parent!r}.{self._name})"

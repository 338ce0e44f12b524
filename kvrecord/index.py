"""
Identity and secondary index maintenance.

For every entity type the store holds an all-ids set, one attribute hash per
record, and for each indexed attribute one set per distinct value. The three
kinds of key are written with separate store calls, so a crash between calls
can leave them briefly out of step. Writes are ordered so that what is left
behind is an extra index entry rather than a record missing from an index:

- create: index entries, then attribute hash, then all-ids membership
- update: add to new index sets, remove from old ones, then rewrite the hash
- delete: all-ids membership, then attribute hash, then index entries
"""
import logging
from typing import Any, Dict, List, Mapping

from kvrecord import coercion, keys
from kvrecord.config import LOGGER_PREFIX
from kvrecord.errors import InvalidState, NotFound, SchemaError
from kvrecord.schema import EntityType, SchemaRegistry
from kvrecord.store.base import KeyValueStore


class IndexManager:
    """Keeps all-ids sets and by-value index sets consistent with attribute writes."""

    def __init__(self, store: KeyValueStore, registry: SchemaRegistry) -> None:
        self._logger = logging.getLogger(f"{LOGGER_PREFIX}.IndexManager")
        self._store = store
        self._registry = registry

    def _index_key(self, entity_type: EntityType, attr: str, value: Any) -> str:
        spec = entity_type.attribute(attr)
        return keys.index_key(entity_type.namespace, attr, coercion.encode_index_value(spec.type, value))

    def _encode(self, entity_type: EntityType, attrs: Mapping[str, Any]) -> Dict[str, str]:
        return {
            attr: coercion.encode(entity_type.attribute(attr).type, value)
            for attr, value in attrs.items()
            if value is not None
        }

    ##############################
    # Writes
    ##############################

    def create(self, type_name: str, record_id: str, attrs: Mapping[str, Any]) -> None:
        entity_type = self._registry.get(type_name)
        encoded = self._encode(entity_type, attrs)
        if not encoded:
            # an empty hash is indistinguishable from a missing one
            raise InvalidState(f"cannot store {type_name}({record_id}) with every attribute unset")
        for attr in entity_type.indexed_attributes:
            value = attrs.get(attr)
            if value is not None:
                self._store.sadd(self._index_key(entity_type, attr, value), record_id)
        self._store.hset(keys.attrs_key(entity_type.namespace, record_id), encoded)
        self._store.sadd(keys.ids_key(entity_type.namespace), record_id)
        self._logger.info(f"Created {type_name}({record_id}) with fields {sorted(encoded)}")

    def update(
        self,
        type_name: str,
        record_id: str,
        old_attrs: Mapping[str, Any],
        new_attrs: Mapping[str, Any],
    ) -> None:
        """
        Persist changed attributes.

        Args:
            old_attrs: Values as last persisted, for at least the changed attributes
            new_attrs: Values to persist; None removes the field
        """
        entity_type = self._registry.get(type_name)
        hash_key = keys.attrs_key(entity_type.namespace, record_id)
        encoded = self._encode(entity_type, new_attrs)
        removed = [attr for attr, value in new_attrs.items() if value is None]
        if removed and not (set(self._store.hgetall(hash_key)) - set(removed)) | set(encoded):
            raise InvalidState(f"cannot unset every attribute of {type_name}({record_id})")

        moved = []
        for attr in entity_type.indexed_attributes:
            if attr not in new_attrs:
                continue
            old_value, new_value = old_attrs.get(attr), new_attrs[attr]
            if old_value == new_value:
                continue
            if new_value is not None:
                self._store.sadd(self._index_key(entity_type, attr, new_value), record_id)
            if old_value is not None:
                self._store.srem(self._index_key(entity_type, attr, old_value), record_id)
            moved.append(attr)

        self._store.hset(hash_key, encoded)
        if removed:
            self._store.hdel(hash_key, *removed)
        self._logger.info(
            f"Updated {type_name}({record_id}) fields {sorted(new_attrs)}; reindexed {moved}"
        )

    def delete(self, type_name: str, record_id: str, attrs: Mapping[str, Any]) -> None:
        """Remove a record; index entries are derived from attrs, the values being deleted."""
        entity_type = self._registry.get(type_name)
        self._store.srem(keys.ids_key(entity_type.namespace), record_id)
        self._store.delete(keys.attrs_key(entity_type.namespace, record_id))
        for attr in entity_type.indexed_attributes:
            value = attrs.get(attr)
            if value is not None:
                self._store.srem(self._index_key(entity_type, attr, value), record_id)
        self._logger.info(f"Deleted {type_name}({record_id})")

    ##############################
    # Reads
    ##############################

    def exists(self, type_name: str, record_id: str) -> bool:
        entity_type = self._registry.get(type_name)
        return self._store.sismember(keys.ids_key(entity_type.namespace), str(record_id))

    def find_by_id(self, type_name: str, record_id: str) -> Dict[str, Any]:
        """Typed attribute values of a stored record; raises NotFound if it does not exist."""
        entity_type = self._registry.get(type_name)
        record_id = str(record_id)
        if not self._store.sismember(keys.ids_key(entity_type.namespace), record_id):
            raise NotFound(type_name, record_id)
        raw = self._store.hgetall(keys.attrs_key(entity_type.namespace, record_id))
        self._logger.debug(f"Loaded {type_name}({record_id}) fields {sorted(raw)}")
        attrs: Dict[str, Any] = {name: None for name in entity_type.attributes}
        for field, text in raw.items():
            spec = entity_type.attributes.get(field)
            if spec is None:
                # written by a newer schema or by hand; not ours to interpret
                self._logger.warning(f"Ignoring undeclared field '{field}' on {type_name}({record_id})")
                continue
            attrs[field] = coercion.decode(spec.type, text)
        return attrs

    def find_by_index(self, type_name: str, attr: str, value: Any) -> List[str]:
        entity_type = self._registry.get(type_name)
        if not entity_type.attribute(attr).indexed:
            raise SchemaError(f"{type_name}.{attr} is not indexed")
        if value is None:
            return []
        ids = self._store.smembers(self._index_key(entity_type, attr, value))
        return sorted(ids)

    def intersect(self, type_name: str, criteria: Mapping[str, Any]) -> List[str]:
        """Ids matching every attr=value pair, computed as a set intersection of indexes."""
        entity_type = self._registry.get(type_name)
        if not criteria:
            return self.all_ids(type_name)
        index_keys = []
        for attr, value in criteria.items():
            if not entity_type.attribute(attr).indexed:
                raise SchemaError(f"{type_name}.{attr} is not indexed")
            if value is None:
                return []
            index_keys.append(self._index_key(entity_type, attr, value))
        return sorted(self._store.sinter(*index_keys))

    def all_ids(self, type_name: str) -> List[str]:
        entity_type = self._registry.get(type_name)
        return sorted(self._store.smembers(keys.ids_key(entity_type.namespace)))

    def count(self, type_name: str) -> int:
        entity_type = self._registry.get(type_name)
        return self._store.scard(keys.ids_key(entity_type.namespace))

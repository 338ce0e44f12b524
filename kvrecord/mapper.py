"""
Composition root of the record mapper.

```python
registry = build_registry().freeze()
mapper = RecordMapper(registry, settings=load_settings())
examples = mapper.model("Example")
example = examples.create(id="1", name="John Smith", active=True)
examples.find_by_index("active", True)   # ["1"]
```

The mapper is created once and passed by reference to consumers; there is
no module-level registry.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

from kvrecord.associations import AssociationManager
from kvrecord.config import LOGGER_PREFIX, MapperSettings
from kvrecord.errors import NotFound
from kvrecord.index import IndexManager
from kvrecord.locks import LockCoordinator
from kvrecord.record import Record, RecordState
from kvrecord.schema import EntityType, SchemaRegistry
from kvrecord.store import create_store
from kvrecord.store.base import KeyValueStore

T = TypeVar("T")


class Model:
    """Per-entity-type handle: builds new records and runs finders."""

    def __init__(self, mapper: "RecordMapper", entity_type: EntityType) -> None:
        self._mapper = mapper
        self._entity_type = entity_type

    @property
    def entity_type(self) -> EntityType:
        return self._entity_type

    @property
    def name(self) -> str:
        return self._entity_type.name

    def new(self, id: Optional[str] = None, **attrs: Any) -> Record:
        """Unsaved record; a uuid4 id is assigned when none is given."""
        return Record(self._mapper, self._entity_type, id, attrs)

    def create(self, id: Optional[str] = None, **attrs: Any) -> Record:
        """New record saved immediately; raises ValidationError if it is invalid."""
        return self.new(id, **attrs).save_or_raise()

    def find_by_id(self, record_id: str) -> Record:
        attrs = self._mapper.indexes.find_by_id(self.name, record_id)
        return Record(self._mapper, self._entity_type, record_id, attrs, state=RecordState.PERSISTED)

    def find_by_index(self, attr: str, value: Any) -> List[str]:
        return self._mapper.indexes.find_by_index(self.name, attr, value)

    def _load_all(self, ids: List[str]) -> List[Record]:
        records = []
        for record_id in ids:
            try:
                records.append(self.find_by_id(record_id))
            except NotFound:
                # index entry outlived its record
                self._mapper._logger.debug(f"Skipping stale index entry {self.name}({record_id})")
        return records

    def find_by(self, attr: str, value: Any) -> List[Record]:
        return self._load_all(self.find_by_index(attr, value))

    def intersect(self, **criteria: Any) -> List[Record]:
        """Records matching every indexed attr=value pair."""
        return self._load_all(self._mapper.indexes.intersect(self.name, criteria))

    def all(self) -> List[Record]:
        return self._load_all(self.ids())

    def ids(self) -> List[str]:
        return self._mapper.indexes.all_ids(self.name)

    def count(self) -> int:
        return self._mapper.indexes.count(self.name)

    def exists(self, record_id: str) -> bool:
        return self._mapper.indexes.exists(self.name, record_id)

    def __repr__(self) -> str:
        return f"Model({self.name})"


class RecordMapper:
    """
    Holds the schema registry, store and the managers built on them.

    Attributes:
        registry: Frozen schema registry
        store: Key-value store backend
        settings: Runtime settings
        indexes: Identity and secondary index manager
        associations: Has-many association manager
        locks: Cross-type lock coordinator
    """
    def __init__(
        self,
        registry: SchemaRegistry,
        store: Optional[KeyValueStore] = None,
        settings: Optional[MapperSettings] = None,
    ) -> None:
        self._logger = logging.getLogger(f"{LOGGER_PREFIX}.RecordMapper")
        if not registry.frozen:
            registry.freeze()
        self.registry = registry
        self.settings = settings or MapperSettings()
        self.store = store if store is not None else create_store(self.settings)
        self.indexes = IndexManager(self.store, registry)
        self.associations = AssociationManager(self.store, registry, self.indexes)
        self.locks = LockCoordinator(self.store, self.settings)
        self._models: Dict[str, Model] = {}
        self._logger.info(f"RecordMapper ready over {type(self.store).__name__} with types {registry.names()}")

    def model(self, type_name: str) -> Model:
        if type_name not in self._models:
            self._models[type_name] = Model(self, self.registry.get(type_name))
        return self._models[type_name]

    def load_record(self, type_name: str, record_id: str) -> Record:
        return self.model(type_name).find_by_id(record_id)

    def lock(self, primary: str, *others: str):
        return self.locks.lock(primary, *others)

    def with_lock(self, primary: str, *others: str, block: Callable[[], T]) -> T:
        return self.locks.with_lock(primary, *others, block=block)

    def get_status(self) -> Dict[str, Any]:
        return {
            "types": {name: self.indexes.count(name) for name in self.registry.names()},
            "store": self.store.get_store_status(),
            "locks": self.locks.get_status(),
        }

"""
Schema registry.

Entity types are declared once at process start:

```python
registry = SchemaRegistry()
registry.define("flapjack.data.Example", {"name": "string", "email": "string", "active": "boolean"}) \\
    .validates("name", presence=True) \\
    .index_by("active") \\
    .has_many("children", "flapjack.data.ExampleChild")
registry.define("flapjack.data.ExampleChild", {"name": "string"})
registry.freeze()
```

After freeze() the registry is read-only and is handed by reference to the
mapper and to anything else that needs schema lookups.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from kvrecord.config import LOGGER_PREFIX
from kvrecord.coercion import AttributeType, as_attribute_type
from kvrecord.errors import SchemaError, TypeMismatch
from kvrecord.keys import namespace_for

##############################
# 1) Schema data
##############################

class AttributeSpec(BaseModel):
    """A declared attribute: name, primitive type, and whether it is indexed."""
    name: str
    type: AttributeType
    indexed: bool = False

    model_config = ConfigDict(frozen=True)


class ValidatorSpec(BaseModel):
    """A declared validation rule; kind selects the implementation in kvrecord.validation."""
    kind: str
    options: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class AssociationSpec(BaseModel):
    """A has-many association from the declaring type to target."""
    name: str
    target: str

    model_config = ConfigDict(frozen=True)


class EntityType(BaseModel):
    """
    Immutable schema for one class of records.

    Attributes:
        name: Registered type name
        namespace: Store key prefix (lower-cased, path-qualified)
        attributes: Declared attributes in declaration order
        validators: Validation rules keyed by attribute name
        associations: Has-many associations keyed by association name
        collaborators: Types whose associations are reconciled when a record
            of this type is destroyed
    """
    name: str
    namespace: str
    attributes: Dict[str, AttributeSpec]
    validators: Dict[str, Tuple[ValidatorSpec, ...]] = Field(default_factory=dict)
    associations: Dict[str, AssociationSpec] = Field(default_factory=dict)
    collaborators: Tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)

    def attribute(self, name: str) -> AttributeSpec:
        try:
            return self.attributes[name]
        except KeyError:
            raise SchemaError(f"{self.name} has no attribute '{name}'") from None

    def association(self, name: str) -> AssociationSpec:
        try:
            return self.associations[name]
        except KeyError:
            raise SchemaError(f"{self.name} has no association '{name}'") from None

    @property
    def indexed_attributes(self) -> List[str]:
        return [a.name for a in self.attributes.values() if a.indexed]

    def associations_targeting(self, target: str) -> List[AssociationSpec]:
        return [a for a in self.associations.values() if a.target == target]

    def __repr__(self) -> str:
        return f"EntityType({self.name})"


def check_member_name(type_name: str, name: str) -> None:
    """Reject attribute and association names that Record itself answers to."""
    from kvrecord.record import Record

    if name.startswith("_") or hasattr(Record, name):
        raise SchemaError(f"{type_name}: '{name}' is reserved by Record and cannot be declared")


##############################
# 2) Declaration builder
##############################

class EntityTypeBuilder:
    """Chainable declarations for one entity type; each call republishes the schema."""

    def __init__(self, registry: "SchemaRegistry", entity_type: EntityType) -> None:
        self._registry = registry
        self._name = entity_type.name

    @property
    def entity_type(self) -> EntityType:
        return self._registry.get(self._name)

    def _update(self, **changes: Any) -> "EntityTypeBuilder":
        self._registry._replace(self.entity_type.model_copy(update=changes))
        return self

    def index_by(self, *attrs: str) -> "EntityTypeBuilder":
        current = self.entity_type
        attributes = dict(current.attributes)
        for attr in attrs:
            spec = current.attribute(attr)
            attributes[attr] = spec.model_copy(update={"indexed": True})
        return self._update(attributes=attributes)

    def has_many(self, name: str, target: str) -> "EntityTypeBuilder":
        current = self.entity_type
        if name in current.associations:
            raise SchemaError(f"{current.name} already declares association '{name}'")
        if name in current.attributes:
            raise SchemaError(f"{current.name}: association '{name}' clashes with an attribute")
        check_member_name(current.name, name)
        associations = dict(current.associations)
        associations[name] = AssociationSpec(name=name, target=target)
        return self._update(associations=associations)

    def validates(self, attr: str, **rules: Any) -> "EntityTypeBuilder":
        """
        Attach validation rules to an attribute.

        Each keyword names a validator kind; True means "with default options",
        a dict supplies options, anything else is passed as the 'with' option
        (e.g. format=r"^\\S+@\\S+$").
        """
        from kvrecord.validation import build_validator

        current = self.entity_type
        current.attribute(attr)
        specs = list(current.validators.get(attr, ()))
        for kind, value in rules.items():
            if value is False or value is None:
                continue
            if value is True:
                options: Dict[str, Any] = {}
            elif isinstance(value, Mapping):
                options = dict(value)
            else:
                options = {"with": value}
            spec = ValidatorSpec(kind=kind, options=options)
            build_validator(spec)
            specs.append(spec)
        validators = dict(current.validators)
        validators[attr] = tuple(specs)
        return self._update(validators=validators)

    def cleans_up(self, *type_names: str) -> "EntityTypeBuilder":
        """Declare collaborator types whose associations must drop a destroyed record's id."""
        current = self.entity_type
        merged = list(current.collaborators)
        for name in type_names:
            if name == current.name:
                raise SchemaError(f"{current.name} cannot list itself as a collaborator")
            if name not in merged:
                merged.append(name)
        return self._update(collaborators=tuple(merged))


##############################
# 3) Registry
##############################

class SchemaRegistry:
    """
    Explicit registry of entity types, populated at startup then frozen.
    """
    def __init__(self) -> None:
        self._logger = logging.getLogger(f"{LOGGER_PREFIX}.SchemaRegistry")
        self._types: Dict[str, EntityType] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def define(
        self,
        name: str,
        attributes: Mapping[str, Union[AttributeType, str]],
        namespace: Optional[str] = None,
    ) -> EntityTypeBuilder:
        """Declare an entity type with its ordered attribute table."""
        self._check_mutable()
        if name in self._types:
            raise SchemaError(f"entity type '{name}' already defined")
        specs: Dict[str, AttributeSpec] = {}
        for attr, attr_type in attributes.items():
            check_member_name(name, attr)
            try:
                specs[attr] = AttributeSpec(name=attr, type=as_attribute_type(attr_type))
            except TypeMismatch as e:
                raise SchemaError(f"{name}.{attr}: {e}") from e
        entity_type = EntityType(name=name, namespace=namespace or namespace_for(name), attributes=specs)
        self._types[name] = entity_type
        self._logger.info(f"Defined entity type {name} ({entity_type.namespace}) with {len(specs)} attributes")
        return EntityTypeBuilder(self, entity_type)

    def _replace(self, entity_type: EntityType) -> None:
        self._check_mutable()
        self._types[entity_type.name] = entity_type

    def _check_mutable(self) -> None:
        if self._frozen:
            raise SchemaError("schema registry is frozen; declare entity types at startup")

    def freeze(self) -> "SchemaRegistry":
        """Resolve cross-type references and make the registry read-only."""
        for entity_type in self._types.values():
            for assoc in entity_type.associations.values():
                if assoc.target not in self._types:
                    raise SchemaError(
                        f"{entity_type.name}.{assoc.name} targets undeclared type '{assoc.target}'"
                    )
            for collaborator in entity_type.collaborators:
                if collaborator not in self._types:
                    raise SchemaError(f"{entity_type.name} cleans up undeclared type '{collaborator}'")
        namespaces = [t.namespace for t in self._types.values()]
        if len(set(namespaces)) != len(namespaces):
            raise SchemaError(f"entity type namespaces collide: {sorted(namespaces)}")
        self._frozen = True
        self._logger.info(f"Schema registry frozen with {len(self._types)} entity types")
        return self

    def get(self, name: str) -> EntityType:
        try:
            return self._types[name]
        except KeyError:
            raise SchemaError(f"unknown entity type '{name}'") from None

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def names(self) -> List[str]:
        return list(self._types)

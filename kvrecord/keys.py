"""
Store key layout.

| Purpose          | Key pattern                                  |
|------------------|----------------------------------------------|
| Attribute hash   | <namespace>:<id>:attrs                       |
| All-ids set      | <namespace>::ids                             |
| Secondary index  | <namespace>::by_<attr>:<value>               |
| Has-many linkage | <namespace>:<parent id>:<assoc name>_ids     |
"""
import re

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def underscore(name: str) -> str:
    """ExampleChild -> example_child"""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def namespace_for(type_name: str) -> str:
    """
    Derive the lower-cased, path-qualified namespace of an entity type.

    'flapjack.data.redis_record.ExampleChild' -> 'flapjack/data/redis_record/example_child'
    """
    parts = [p for p in re.split(r"\.|::|/", type_name) if p]
    return "/".join(underscore(p) for p in parts)


def attrs_key(namespace: str, record_id: str) -> str:
    return f"{namespace}:{record_id}:attrs"


def ids_key(namespace: str) -> str:
    return f"{namespace}::ids"


def index_key(namespace: str, attr: str, encoded_value: str) -> str:
    return f"{namespace}::by_{attr}:{encoded_value}"


def association_key(namespace: str, parent_id: str, assoc_name: str) -> str:
    return f"{namespace}:{parent_id}:{assoc_name}_ids"

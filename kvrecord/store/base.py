"""
Key-value store protocol.

The mapper only needs hashes (field -> string maps) and sets of strings, plus
a lease-based lock primitive. Each method is atomic on its own; nothing here
promises atomicity across calls.
"""
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Sequence, Set, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """
    Generic interface for the hash/set store the record mapper persists into.
    """
    # hashes
    def hgetall(self, key: str) -> Dict[str, str]: ...
    def hset(self, key: str, mapping: Mapping[str, str]) -> None: ...
    def hdel(self, key: str, *fields: str) -> int: ...

    # sets
    def sadd(self, key: str, *members: str) -> int: ...
    def srem(self, key: str, *members: str) -> int: ...
    def smembers(self, key: str) -> Set[str]: ...
    def sismember(self, key: str, member: str) -> bool: ...
    def scard(self, key: str) -> int: ...
    def sinter(self, *keys: str) -> Set[str]: ...

    # keyspace
    def delete(self, *keys: str) -> int: ...
    def exists(self, key: str) -> bool: ...
    def keys(self, pattern: str = "*") -> List[str]: ...
    def clear(self) -> None: ...

    # locks
    def acquire_lock(
        self,
        names: Sequence[str],
        token: str,
        timeout: float,
        expiry: float,
        poll_interval: float,
    ) -> bool: ...
    def release_lock(self, names: Sequence[str], token: str) -> List[str]: ...

    def get_store_status(self) -> Dict[str, Any]: ...


def as_members(members: Iterable[Any]) -> List[str]:
    """Distinct string members in call order."""
    seen: Dict[str, None] = {}
    for m in members:
        seen.setdefault(str(m), None)
    return list(seen)

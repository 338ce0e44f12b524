"""
In-process key-value store.

Keeps hashes and sets in dictionaries guarded by a re-entrant lock so every
call is atomic with respect to other threads. Empty hashes and sets are
dropped, matching Redis keyspace semantics.
"""
import time
import logging
import threading
from fnmatch import fnmatchcase
from typing import Any, Dict, List, Mapping, Sequence, Set, Tuple

from kvrecord.config import LOGGER_PREFIX
from kvrecord.store.base import KeyValueStore, as_members


class InMemoryKeyValueStore(KeyValueStore):
    """
    In-memory storage using Python dictionaries.
    """
    def __init__(self) -> None:
        self._logger = logging.getLogger(f"{LOGGER_PREFIX}.InMemoryKeyValueStore")
        self._mutex = threading.RLock()
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._sets: Dict[str, Set[str]] = {}
        # lock name -> (owner token, monotonic expiry)
        self._locks: Dict[str, Tuple[str, float]] = {}
        self._lock_changed = threading.Condition(self._mutex)

    # hashes

    def hgetall(self, key: str) -> Dict[str, str]:
        with self._mutex:
            return dict(self._hashes.get(key, {}))

    def hset(self, key: str, mapping: Mapping[str, str]) -> None:
        if not mapping:
            return
        with self._mutex:
            self._hashes.setdefault(key, {}).update({str(k): str(v) for k, v in mapping.items()})

    def hdel(self, key: str, *fields: str) -> int:
        with self._mutex:
            current = self._hashes.get(key)
            if current is None:
                return 0
            removed = 0
            for f in fields:
                if current.pop(f, None) is not None:
                    removed += 1
            if not current:
                del self._hashes[key]
            return removed

    # sets

    def sadd(self, key: str, *members: str) -> int:
        to_add = as_members(members)
        if not to_add:
            return 0
        with self._mutex:
            current = self._sets.setdefault(key, set())
            before = len(current)
            current.update(to_add)
            return len(current) - before

    def srem(self, key: str, *members: str) -> int:
        with self._mutex:
            current = self._sets.get(key)
            if current is None:
                return 0
            before = len(current)
            current.difference_update(as_members(members))
            removed = before - len(current)
            if not current:
                del self._sets[key]
            return removed

    def smembers(self, key: str) -> Set[str]:
        with self._mutex:
            return set(self._sets.get(key, set()))

    def sismember(self, key: str, member: str) -> bool:
        with self._mutex:
            return str(member) in self._sets.get(key, set())

    def scard(self, key: str) -> int:
        with self._mutex:
            return len(self._sets.get(key, set()))

    def sinter(self, *keys: str) -> Set[str]:
        if not keys:
            return set()
        with self._mutex:
            result = set(self._sets.get(keys[0], set()))
            for key in keys[1:]:
                result &= self._sets.get(key, set())
            return result

    # keyspace

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._mutex:
            for key in keys:
                if self._hashes.pop(key, None) is not None:
                    removed += 1
                if self._sets.pop(key, None) is not None:
                    removed += 1
        return removed

    def exists(self, key: str) -> bool:
        with self._mutex:
            return key in self._hashes or key in self._sets

    def keys(self, pattern: str = "*") -> List[str]:
        with self._mutex:
            names = set(self._hashes) | set(self._sets)
        return sorted(k for k in names if fnmatchcase(k, pattern))

    def clear(self) -> None:
        with self._mutex:
            self._hashes.clear()
            self._sets.clear()
            self._locks.clear()
            self._lock_changed.notify_all()

    # locks

    def acquire_lock(
        self,
        names: Sequence[str],
        token: str,
        timeout: float,
        expiry: float,
        poll_interval: float,
    ) -> bool:
        """Grant all names to token at once, or none of them."""
        deadline = time.monotonic() + timeout
        with self._lock_changed:
            while True:
                now = time.monotonic()
                for name in names:
                    held = self._locks.get(name)
                    if held is not None and held[1] <= now:
                        self._logger.warning(f"Lock '{name}' held by {held[0]} expired, reclaiming")
                        del self._locks[name]
                if all(name not in self._locks or self._locks[name][0] == token for name in names):
                    for name in names:
                        self._locks[name] = (token, now + expiry)
                    return True
                remaining = deadline - now
                if remaining <= 0:
                    return False
                self._lock_changed.wait(min(remaining, poll_interval))

    def release_lock(self, names: Sequence[str], token: str) -> List[str]:
        """Drop token's leases on names; return the names whose lease had already lapsed."""
        lost = []
        with self._lock_changed:
            now = time.monotonic()
            for name in names:
                held = self._locks.get(name)
                if held is None or held[0] != token:
                    lost.append(name)
                    continue
                if held[1] <= now:
                    lost.append(name)
                del self._locks[name]
            self._lock_changed.notify_all()
        return lost

    def get_store_status(self) -> Dict[str, Any]:
        with self._mutex:
            return {
                "store": "in_memory",
                "hash_count": len(self._hashes),
                "set_count": len(self._sets),
                "held_locks": sorted(self._locks),
            }

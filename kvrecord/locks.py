"""
Cross-type lock coordination for cascading mutations.

A lock scope covers a set of entity type names. The names are sorted and
handed to the store in a single acquisition which grants all of them or none,
so two scopes that share any type name exclude each other and no holder can
wait on another while keeping part of its set.

```python
with mapper.locks.lock("Rule", "Contact", "Medium", "Tag", "Route", "Check"):
    rule.destroy()
```
"""
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Set, TypeVar

from kvrecord.config import LOGGER_PREFIX, MapperSettings
from kvrecord.errors import InvalidState, LockTimeout
from kvrecord.store.base import KeyValueStore

T = TypeVar("T")


class LockCoordinator:
    """
    Acquires and releases store-backed locks over entity type names.

    Each thread holds at most one scope at a time. A nested scope whose names
    are all covered by the held scope runs without touching the store. A
    nested scope that needs names the thread does not hold raises
    InvalidState: taking them while keeping the outer ones would reintroduce
    hold-and-wait, so callers must open the full union up front.

    Leases are not renewed. lock_expiry must exceed the longest block run
    under a lock; a lease found expired at release is logged as a warning.
    """
    def __init__(self, store: KeyValueStore, settings: MapperSettings) -> None:
        self._logger = logging.getLogger(f"{LOGGER_PREFIX}.LockCoordinator")
        self._store = store
        self._settings = settings
        self._local = threading.local()

    def _held(self) -> Set[str]:
        if not hasattr(self._local, "held"):
            self._local.held = set()
            self._local.token = None
        return self._local.held

    @staticmethod
    def lock_names(primary: str, *others: str) -> List[str]:
        return sorted({primary, *others})

    def holds(self, *names: str) -> bool:
        """True when the calling thread already holds every one of names."""
        return set(names) <= self._held()

    @contextmanager
    def lock(self, primary: str, *others: str) -> Iterator[List[str]]:
        names = self.lock_names(primary, *others)
        held = self._held()
        if held:
            if not set(names) <= held:
                raise InvalidState(
                    f"cannot extend held lock scope {sorted(held)} with "
                    f"{sorted(set(names) - held)}; lock the full set at once"
                )
            self._logger.debug(f"Re-entering lock scope {names}")
            yield names
            return

        token = uuid.uuid4().hex
        self._logger.debug(f"Acquiring {names} with token {token}")
        acquired = self._store.acquire_lock(
            names,
            token,
            timeout=self._settings.lock_timeout,
            expiry=self._settings.lock_expiry,
            poll_interval=self._settings.lock_poll_interval,
        )
        if not acquired:
            self._logger.warning(f"Timed out after {self._settings.lock_timeout}s waiting for {names}")
            raise LockTimeout(names, self._settings.lock_timeout)

        self._local.token = token
        held.update(names)
        self._logger.info(f"Locked {names}")
        try:
            yield names
        finally:
            lost = self._store.release_lock(names, token)
            held.clear()
            self._local.token = None
            if lost:
                self._logger.warning(
                    f"Lease on {lost} expired before release; raise lock_expiry above "
                    f"the longest locked operation"
                )
            self._logger.info(f"Released {names}")

    def with_lock(self, primary: str, *others: str, block: Callable[[], T]) -> T:
        """Run block inside lock(primary, *others) and return its result."""
        with self.lock(primary, *others):
            return block()

    def get_status(self) -> Any:
        return {"held": sorted(self._held()), "token": self._local.token}

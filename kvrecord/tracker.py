"""
Per-record change tracking.

The tracker keeps the attribute values as last loaded (or saved) and the
in-memory values, and remembers an [old, new] pair for every attribute
touched since then.
"""
from copy import deepcopy
from typing import Any, Dict, List, Mapping, Optional, Set


class ChangeTracker:
    """Diff between loaded and in-memory attribute values for one record."""

    def __init__(self, loaded: Optional[Mapping[str, Any]] = None) -> None:
        self._loaded: Dict[str, Any] = dict(loaded or {})
        self._current: Dict[str, Any] = dict(self._loaded)
        self._changes: Dict[str, List[Any]] = {}

    def get(self, attr: str) -> Any:
        return self._current.get(attr)

    def set(self, attr: str, value: Any) -> None:
        """Record a change; the first set since reset fixes the 'old' side."""
        if attr in self._changes:
            self._changes[attr][1] = value
        else:
            self._changes[attr] = [self._current.get(attr), value]
        self._current[attr] = value

    def changed(self) -> Set[str]:
        return set(self._changes)

    def changes(self) -> Dict[str, List[Any]]:
        return {attr: list(pair) for attr, pair in self._changes.items()}

    def has_changes(self) -> bool:
        return bool(self._changes)

    def values(self) -> Dict[str, Any]:
        """In-memory attribute values, including unsaved edits."""
        return dict(self._current)

    def loaded_values(self) -> Dict[str, Any]:
        """Values as of the last load, refresh or save."""
        return dict(self._loaded)

    def reset(self, loaded: Optional[Mapping[str, Any]] = None) -> None:
        """
        Forget all changes.

        With loaded, replace both sides with freshly read values (refresh);
        without, accept the in-memory values as persisted (successful save).
        """
        if loaded is None:
            self._loaded = deepcopy(self._current)
        else:
            self._loaded = dict(loaded)
            self._current = dict(loaded)
        self._changes.clear()

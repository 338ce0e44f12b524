"""Key-value store protocol and backends."""
import logging
from typing import Optional

from kvrecord.config import LOGGER_PREFIX, MapperSettings
from kvrecord.store.base import KeyValueStore
from kvrecord.store.memory import InMemoryKeyValueStore
from kvrecord.store.sql import SqlKeyValueStore


def create_store(settings: Optional[MapperSettings] = None) -> KeyValueStore:
    """Pick a backend from settings.store_url: memory:// or any SQLAlchemy URL."""
    settings = settings or MapperSettings()
    url = settings.store_url
    if url.startswith("memory://"):
        store: KeyValueStore = InMemoryKeyValueStore()
    else:
        store = SqlKeyValueStore.from_url(url)
    logging.getLogger(LOGGER_PREFIX).info(f"Using {type(store).__name__} for {url.split('@')[-1]}")
    return store


__all__ = ["KeyValueStore", "InMemoryKeyValueStore", "SqlKeyValueStore", "create_store"]

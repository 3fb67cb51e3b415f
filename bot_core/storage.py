import json
import logging
from typing import Any, Dict, Iterable, Optional, Union

from botbuilder.core import Storage
from pydantic import BaseModel

from bot_core.errors import StorageError

log = logging.getLogger(__name__)

KeyOrKeys = Union[str, Iterable[str]]


def _as_key_list(keys: Optional[KeyOrKeys]) -> list:
    if keys is None:
        return []
    if isinstance(keys, str):
        return [keys]
    return [key for key in keys if key]


def _to_serializable(value: Any) -> Any:
    """Dumps pydantic models (at the top level or one level down in a dict) to JSON-ready data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode='json')
    if isinstance(value, dict):
        return {
            item_key: item_val.model_dump(mode='json') if isinstance(item_val, BaseModel) else item_val
            for item_key, item_val in value.items()
        }
    return value


class MemoryStore(Storage):
    """
    An in-process Storage provider holding property bags as JSON strings.

    Every write is serialized and every read deserialized, so a bag returned to
    one turn is never the same object another turn (or the store itself) holds.
    Writes are last-writer-wins per key; there is no eTag concurrency check.
    Nothing survives a process restart.
    """

    def __init__(self):
        super().__init__()
        self._memory: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._memory)

    def __contains__(self, key: str) -> bool:
        return key in self._memory

    async def read(self, keys: KeyOrKeys) -> Dict[str, Any]:
        """
        Reads property bags from the store.

        Args:
            keys: A key or iterable of keys to read.

        Returns:
            A dict of the keys that were found, mapped to fresh copies of their bags.
            Missing keys are left out.
        """
        key_list = _as_key_list(keys)
        state: Dict[str, Any] = {}
        for key in key_list:
            raw = self._memory.get(key)
            if raw is None:
                log.debug(f"MemoryRead: Key '{key}' not found.")
                continue
            state[key] = json.loads(raw)
        log.debug(f"MemoryRead: Read {len(state)} of {len(key_list)} requested items.")
        return state

    async def write(self, changes: Dict[str, Any]):
        """
        Writes property bags to the store, replacing whatever each key held.

        Args:
            changes: A dict of key to bag. Bags may be dicts or pydantic models.

        Raises:
            StorageError: If a bag cannot be serialized to JSON. Nothing from
                the batch is written in that case.
        """
        if not changes:
            return

        serialized: Dict[str, str] = {}
        for key, bag in changes.items():
            if not key:
                raise StorageError("Cannot write a property bag without a key.")
            try:
                serialized[key] = json.dumps(_to_serializable(bag))
            except (TypeError, ValueError) as e:
                log.error(f"Failed to serialize item for key '{key}' to JSON. Object type: {type(bag)}. Error: {e}", exc_info=True)
                raise StorageError(f"Serialization failed for key '{key}': {e}") from e

        self._memory.update(serialized)
        log.debug(f"MemoryWrite: Wrote {len(serialized)} items.")

    async def delete(self, keys: KeyOrKeys):
        """
        Deletes property bags from the store. Unknown keys are ignored.

        Args:
            keys: A key or iterable of keys to delete.
        """
        deleted = 0
        for key in _as_key_list(keys):
            if self._memory.pop(key, None) is not None:
                deleted += 1
        log.debug(f"MemoryDelete: Deleted {deleted} items.")

    async def get(self, scope: str) -> Dict[str, Any]:
        """Returns the bag stored for a single scope key, or an empty dict."""
        items = await self.read([scope])
        return items.get(scope) or {}

    async def set(self, scope: str, bag: Any):
        await self.write({scope: bag})

    async def clear(self):
        self._memory.clear()

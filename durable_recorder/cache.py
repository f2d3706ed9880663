"""In-flight task sharing and versioned result caches."""

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InflightRegistry(Generic[T]):
    """Shares one running task per key between concurrent callers.

    The first caller for a key starts the work as an ``asyncio.Task``; later
    callers await that same task until it settles. The entry is dropped once
    the task finishes, whether it succeeded or failed. A caller that stops
    waiting does not cancel the shared task.
    """

    def __init__(self, name: str):
        self.name = name
        self._tasks: Dict[Hashable, "asyncio.Task[T]"] = {}

    def __contains__(self, key: Hashable) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
            task.add_done_callback(lambda _t, k=key: self._forget(k, _t))
        else:
            logger.debug(f"[{self.name}] joining in-flight task for {key}")
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: "asyncio.Task[T]") -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        # Mark the exception retrieved when every caller has walked away
        if not task.cancelled():
            task.exception()


class VersionedCache(Generic[T]):
    """One cached value per owner, valid only while its version key matches.

    There is no invalidation call: a changed key simply misses, and ``put``
    replaces whatever the owner held before. With ``max_entries`` set, the
    least recently used owner is evicted once the limit is exceeded.
    """

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries
        self._entries: "OrderedDict[Hashable, Tuple[Any, T]]" = OrderedDict()

    def get(self, owner: Hashable, key: Any) -> Optional[T]:
        entry = self._entries.get(owner)
        if entry is None or entry[0] != key:
            return None
        self._entries.move_to_end(owner)
        return entry[1]

    def put(self, owner: Hashable, key: Any, value: T) -> None:
        self._entries[owner] = (key, value)
        self._entries.move_to_end(owner)
        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cached entry for {evicted}")

    def discard(self, owner: Hashable) -> None:
        self._entries.pop(owner, None)

    def __contains__(self, owner: Hashable) -> bool:
        return owner in self._entries

    def __len__(self) -> int:
        return len(self._entries)

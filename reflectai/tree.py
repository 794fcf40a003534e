"""
Hierarchical key-value tree used as the journal's storage backend.

A tree is addressed by slash-separated paths (`journal_entries/u1/e1`). Values are
JSON-like: mappings become child nodes, everything else is a leaf. `None` and empty
mappings are never stored, so writing them removes the node. Backends persist only
the leaves, keyed by full path, and rebuild subtrees on read.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .errors import StorageError

logger = logging.getLogger(__name__)

SEPARATOR = "/"


# --- Path helpers ---

def split_path(path: str) -> List[str]:
    parts = path.strip(SEPARATOR).split(SEPARATOR)
    if not parts or any(not p for p in parts):
        raise StorageError(f"Invalid tree path: {path!r}")
    return parts


def join_path(*parts: str) -> str:
    return SEPARATOR.join(str(p).strip(SEPARATOR) for p in parts)


def normalize_path(path: str) -> str:
    return SEPARATOR.join(split_path(path))


def ancestors(path: str) -> List[str]:
    """Proper ancestors of `path`, nearest last: `a/b/c` -> [`a`, `a/b`]."""
    parts = split_path(path)
    return [SEPARATOR.join(parts[:i]) for i in range(1, len(parts))]


def is_within(path: str, root: str) -> bool:
    return path == root or path.startswith(root + SEPARATOR)


def paths_overlap(a: str, b: str) -> bool:
    return is_within(a, b) or is_within(b, a)


# --- Leaf encoding ---

def flatten(value: Any, prefix: str) -> Dict[str, Any]:
    """Turn a value written at `prefix` into `{leaf_path: scalar}` rows."""
    leaves: Dict[str, Any] = {}
    if value is None:
        return leaves
    if isinstance(value, dict):
        for key, child in value.items():
            key = str(key)
            if not key or SEPARATOR in key:
                raise StorageError(f"Invalid key {key!r} under {prefix!r}")
            leaves.update(flatten(child, join_path(prefix, key)))
        return leaves
    leaves[prefix] = value
    return leaves


def assemble(rows: Iterable[Tuple[str, Any]], root: str) -> Any:
    """Rebuild the value at `root` from leaf rows at or below it. Missing -> None."""
    result: Optional[Dict[str, Any]] = None
    for path, value in rows:
        if path == root:
            return value
        if not path.startswith(root + SEPARATOR):
            continue
        relative = path[len(root) + 1:].split(SEPARATOR)
        if result is None:
            result = {}
        node = result
        for part in relative[:-1]:
            node = node.setdefault(part, {})
        node[relative[-1]] = value
    return result


def _sorted_mapping(value: Any) -> Dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    return {k: value[k] for k in sorted(value)}


# --- Live subscriptions ---

_CLOSED = object()


class Subscription:
    """
    A standing query over one subtree.

    Iterating yields a new snapshot (passed through `transform`) every time the
    subtree changes, starting with the current value. `close()` stops delivery,
    discards undelivered snapshots and removes the listener from the backend.
    """

    def __init__(self, backend: "TreeBackend", path: str, transform: Optional[Callable[[Any], Any]] = None):
        self.path = path
        self._backend = backend
        self._transform = transform
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self.closed = False

    def _deliver(self, raw: Any) -> None:
        if self.closed:
            return
        snapshot = self._transform(raw) if self._transform else raw
        self._queue.put_nowait(snapshot)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Any:
        if self.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def next_snapshot(self, timeout: Optional[float] = None) -> Any:
        return await asyncio.wait_for(self.__anext__(), timeout)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._backend._unsubscribe(self)
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


# --- Backends ---

class TreeBackend:
    """
    Base class for tree stores.

    Subclasses implement the leaf-level primitives (`_read_rows`, `_write`,
    `_remove`); the query and subscription layer is shared.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []

    async def _read_rows(self, path: str) -> List[Tuple[str, Any]]:
        """All leaf rows at or below `path`."""
        raise NotImplementedError

    async def _write(self, path: str, leaves: Dict[str, Any]) -> None:
        """Atomically drop everything at/below `path` and at its ancestors, then insert `leaves`."""
        raise NotImplementedError

    async def _remove(self, path: str) -> None:
        raise NotImplementedError

    async def get(self, path: str) -> Any:
        path = normalize_path(path)
        return assemble(await self._read_rows(path), path)

    async def set(self, path: str, value: Any) -> None:
        path = normalize_path(path)
        await self._write(path, flatten(value, path))
        await self._notify(path)

    async def delete(self, path: str) -> None:
        path = normalize_path(path)
        await self._remove(path)
        await self._notify(path)

    async def exists(self, path: str) -> bool:
        return (await self.get(path)) is not None

    async def children(self, path: str) -> Dict[str, Any]:
        """Child nodes of `path` ordered by key."""
        return _sorted_mapping(await self.get(path))

    async def child_keys(self, path: str) -> List[str]:
        return list((await self.children(path)).keys())

    async def query(self, path: str, field: str, value: Any, limit: Optional[int] = None) -> Dict[str, Any]:
        """Children of `path` whose `field` equals `value`, in key order, optionally limited."""
        matches: Dict[str, Any] = {}
        for key, child in (await self.children(path)).items():
            if isinstance(child, dict) and child.get(field) == value:
                matches[key] = child
                if limit is not None and len(matches) >= limit:
                    break
        return matches

    async def subscribe(self, path: str, transform: Optional[Callable[[Any], Any]] = None) -> Subscription:
        path = normalize_path(path)
        subscription = Subscription(self, path, transform)
        self._subscriptions.append(subscription)
        try:
            raw = await self.get(path)
        except StorageError as e:
            logger.warning(f"Initial read for subscription on {path} failed: {e}")
            raw = None
        subscription._deliver(raw)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def _notify(self, changed_path: str) -> None:
        for subscription in list(self._subscriptions):
            if subscription.closed or not paths_overlap(subscription.path, changed_path):
                continue
            try:
                raw = await self.get(subscription.path)
            except StorageError as e:
                logger.warning(f"Could not refresh subscription on {subscription.path}: {e}")
                continue
            subscription._deliver(raw)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.close()


class MemoryTreeBackend(TreeBackend):
    """In-process tree, used for tests and local development."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        super().__init__()
        self._leaves: Dict[str, Any] = {}
        if initial:
            for key, value in initial.items():
                self._leaves.update(flatten(value, normalize_path(key)))

    async def _read_rows(self, path: str) -> List[Tuple[str, Any]]:
        return [(leaf, value) for leaf, value in self._leaves.items() if is_within(leaf, path)]

    async def _write(self, path: str, leaves: Dict[str, Any]) -> None:
        self._drop(path)
        for ancestor in ancestors(path):
            self._leaves.pop(ancestor, None)
        self._leaves.update(leaves)

    async def _remove(self, path: str) -> None:
        self._drop(path)

    def _drop(self, path: str) -> None:
        for leaf in [leaf for leaf in self._leaves if is_within(leaf, path)]:
            del self._leaves[leaf]

    def dump(self) -> Dict[str, Any]:
        """Every leaf in the tree, for debugging and tests."""
        return dict(self._leaves)

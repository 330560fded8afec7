from __future__ import annotations
import asyncio
import json
import logging
from typing import Any, Optional, Set

from .local_store import LocalStore
from .mirror_client import RealtimeMirror

logger = logging.getLogger(__name__)


class PersistenceGateway:
    """
    Local store is the system of record; the mirror, when attached, receives
    a best-effort copy of every write that names a collection.

    ``lock`` serializes shared-state updates so that a remote overwrite and a
    local submission never interleave.
    """

    def __init__(self, local: LocalStore) -> None:
        self.local = local
        self.lock = asyncio.Lock()
        self._mirror: Optional[RealtimeMirror] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def mirror_connected(self) -> bool:
        return self._mirror is not None and not self._mirror.closed

    def attach_mirror(self, mirror: RealtimeMirror) -> None:
        self._mirror = mirror

    def detach_mirror(self) -> None:
        self._mirror = None

    def load(self, key: str, default: Any = None) -> Any:
        raw = self.local.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Stored value for %s is corrupt; treating as absent", key)
            return default

    def store(self, key: str, value: Any, *, mirror_to: Optional[str] = None, mirror_limit: Optional[int] = None) -> None:
        self.local.set(key, json.dumps(value, ensure_ascii=False))
        if mirror_to is not None:
            self.push(mirror_to, value, limit=mirror_limit)

    def overwrite_from_remote(self, key: str, value: Any) -> None:
        # Never echoed back to the mirror
        self.local.set(key, json.dumps(value, ensure_ascii=False))

    def push(self, collection: str, value: Any, *, limit: Optional[int] = None) -> Optional[asyncio.Task]:
        """Fire-and-forget write to the mirror. Returns the task, or None when offline."""
        mirror = self._mirror
        if mirror is None or mirror.closed:
            return None
        if limit is not None and isinstance(value, list):
            value = value[:limit]
        try:
            task = asyncio.get_running_loop().create_task(self._push(mirror, collection, value))
        except RuntimeError:
            logger.debug("No running loop; skipping mirror push to %s", collection)
            return None
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _push(self, mirror: RealtimeMirror, collection: str, value: Any) -> None:
        try:
            await mirror.write(collection, value)
        except Exception as exc:
            logger.warning("Mirror push to %s failed: %s", collection, exc)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

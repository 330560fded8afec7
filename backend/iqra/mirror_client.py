"""
Realtime mirror client.

Talks to a Firebase-style realtime database through its REST interface:
plain PUT/GET for writes and point reads, and a Server-Sent Events stream
for change subscriptions. Each subscription keeps the full collection
snapshot and hands it to the listener after every event, so listeners
always see whole values (never deltas).
"""

from __future__ import annotations
import asyncio
import contextlib
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .errors import MirrorError, SyncErrorCategory
from .schemas import CloudConfig

logger = logging.getLogger(__name__)

ChangeListener = Callable[[Any], Awaitable[None]]


def classify_error(exc: BaseException) -> MirrorError:
    if isinstance(exc, MirrorError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (401, 403):
            return MirrorError(SyncErrorCategory.INVALID_KEY, "Invalid access key")
        return MirrorError(SyncErrorCategory.UNKNOWN, f"Mirror responded with HTTP {status}")
    if isinstance(exc, httpx.RequestError):
        return MirrorError(SyncErrorCategory.NETWORK_FAILURE, "Network request failed; check the connection")
    message = str(exc) or exc.__class__.__name__
    if "api key" in message.lower():
        return MirrorError(SyncErrorCategory.INVALID_KEY, "Invalid access key")
    return MirrorError(SyncErrorCategory.UNKNOWN, message)


# ---------------------------------------------------------------------------
# Snapshot maintenance for streamed put/patch events
# ---------------------------------------------------------------------------

def _split_path(path: str) -> List[str]:
    return [p for p in (path or "").split("/") if p]


def _as_dict(node: Any) -> Dict[str, Any]:
    if isinstance(node, list):
        return {str(i): v for i, v in enumerate(node) if v is not None}
    if isinstance(node, dict):
        return dict(node)
    return {}


def _normalize(node: Dict[str, Any]) -> Any:
    # Dense integer keys come back as a list, as the database itself does
    if node and all(k.isdigit() for k in node):
        indices = sorted(int(k) for k in node)
        if indices == list(range(len(indices))):
            return [node[str(i)] for i in indices]
    return node


def _set_at(node: Any, parts: List[str], value: Any) -> Any:
    if not parts:
        return value
    head, rest = parts[0], parts[1:]
    children = _as_dict(node)
    child = _set_at(children.get(head), rest, value)
    if child is None:
        children.pop(head, None)
    else:
        children[head] = child
    return _normalize(children) if children else None


def _get_at(node: Any, parts: List[str]) -> Any:
    for part in parts:
        node = _as_dict(node).get(part)
        if node is None:
            return None
    return node


def ordered_values(node: Dict[str, Any]) -> List[Any]:
    """Values of a sparse array node in index order; non-numeric keys follow, sorted."""
    keys = sorted(node, key=lambda k: (0, int(k), "") if str(k).isdigit() else (1, 0, str(k)))
    return [node[k] for k in keys if node[k] is not None]


def apply_event(snapshot: Any, event: str, path: str, data: Any) -> Any:
    """Return the snapshot after applying one streamed ``put`` or ``patch`` event."""
    parts = _split_path(path)
    if event == "put":
        return _set_at(snapshot, parts, data)
    merged: Any = _get_at(snapshot, parts)
    for key, value in (data or {}).items():
        merged = _set_at(merged, _split_path(key), value)
    return _set_at(snapshot, parts, merged)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class Subscription:
    """Handle for one change stream; ``unsubscribe`` cancels and awaits it."""

    def __init__(self, collection: str) -> None:
        self.collection = collection
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def unsubscribe(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


class RealtimeMirror:
    def __init__(
        self,
        config: CloudConfig,
        *,
        timeout: float = 15.0,
        retry_delay: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self._base_url = config.database_url.rstrip("/")
        self._params = {"auth": config.api_key}
        self._client = client or httpx.AsyncClient(timeout=timeout)
        # Streams stay open indefinitely; only the connect phase is bounded
        self._stream_timeout = httpx.Timeout(timeout, read=None)
        self._retry_delay = retry_delay
        self._subscriptions: List[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _url(self, collection: str) -> str:
        return f"{self._base_url}/{collection.strip('/')}.json" if collection else f"{self._base_url}/.json"

    async def open(self) -> None:
        """Probe the store so bad keys and unreachable hosts surface at connect time."""
        try:
            r = await self._client.get(self._url(""), params={**self._params, "shallow": "true"})
            r.raise_for_status()
        except Exception as exc:
            raise classify_error(exc) from exc
        logger.info("Mirror reachable at %s", self._base_url)

    async def write(self, collection: str, value: Any) -> None:
        try:
            r = await self._client.put(self._url(collection), params=self._params, json=value)
            r.raise_for_status()
        except Exception as exc:
            raise classify_error(exc) from exc

    async def read_once(self, collection: str) -> Any:
        try:
            r = await self._client.get(self._url(collection), params=self._params)
            r.raise_for_status()
            return r.json()
        except Exception as exc:
            raise classify_error(exc) from exc

    def subscribe(self, collection: str, on_change: ChangeListener) -> Subscription:
        if self._closed:
            raise MirrorError(SyncErrorCategory.UNKNOWN, "Mirror connection is closed")
        sub = Subscription(collection)
        sub._task = asyncio.create_task(self._listen(collection, on_change), name=f"mirror:{collection}")
        self._subscriptions.append(sub)
        return sub

    async def aclose(self) -> None:
        self._closed = True
        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            await sub.unsubscribe()
        await self._client.aclose()

    async def _listen(self, collection: str, on_change: ChangeListener) -> None:
        attempt = 0
        while not self._closed:
            try:
                await self._stream(collection, on_change)
                attempt = 0
                # Server closed the stream; reopening replays the full snapshot
                await asyncio.sleep(self._retry_delay)
            except httpx.HTTPStatusError as exc:
                logger.error("Mirror stream for %s rejected (HTTP %s); giving up", collection, exc.response.status_code)
                return
            except httpx.RequestError as exc:
                attempt += 1
                delay = min(30.0, self._retry_delay * (2 ** (attempt - 1)))
                logger.warning("Mirror stream for %s dropped (%s); reconnecting in %.1fs", collection, exc, delay)
                await asyncio.sleep(delay)
            except _StreamStopped as stop:
                logger.warning("Mirror stream for %s stopped: %s", collection, stop)
                return

    async def _stream(self, collection: str, on_change: ChangeListener) -> None:
        snapshot: Any = None
        headers = {"Accept": "text/event-stream"}
        async with self._client.stream(
            "GET", self._url(collection), params=self._params, headers=headers, timeout=self._stream_timeout,
        ) as r:
            r.raise_for_status()
            event: Optional[str] = None
            data_lines: List[str] = []
            async for line in r.aiter_lines():
                if line.startswith("event:"):
                    event = line[6:].strip()
                elif line.startswith("data:"):
                    data_lines.append(line[5:].strip())
                elif line == "":
                    if event is not None:
                        snapshot = await self._dispatch(collection, event, "\n".join(data_lines), snapshot, on_change)
                    event, data_lines = None, []

    async def _dispatch(self, collection: str, event: str, raw: str, snapshot: Any, on_change: ChangeListener) -> Any:
        if event == "keep-alive":
            return snapshot
        if event in ("cancel", "auth_revoked"):
            raise _StreamStopped(event)
        if event not in ("put", "patch"):
            return snapshot
        try:
            payload = json.loads(raw)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            logger.warning("Ignoring undecodable %s event on %s", event, collection)
            return snapshot
        snapshot = apply_event(snapshot, event, payload.get("path", "/"), payload.get("data"))
        try:
            await on_change(snapshot)
        except Exception:
            logger.exception("Change listener for %s failed", collection)
        return snapshot


class _StreamStopped(Exception):
    pass

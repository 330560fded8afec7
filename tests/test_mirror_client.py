import asyncio
import json

import httpx
import pytest

from iqra.errors import MirrorError, SyncErrorCategory
from iqra.mirror_client import RealtimeMirror, apply_event
from iqra.schemas import CloudConfig

from conftest import GOOD_CONFIG


def test_put_at_root_replaces_snapshot() -> None:
    assert apply_event([1, 2], "put", "/", {"a": 1}) == {"a": 1}
    assert apply_event({"a": 1}, "put", "/", None) is None


def test_put_at_child_path_updates_list_entry() -> None:
    snapshot = [{"id": "a"}, {"id": "b"}]
    assert apply_event(snapshot, "put", "/1/id", "c") == [{"id": "a"}, {"id": "c"}]
    assert apply_event(snapshot, "put", "/2", {"id": "d"}) == [{"id": "a"}, {"id": "b"}, {"id": "d"}]


def test_patch_merges_children() -> None:
    snapshot = {"schoolNameEn": "Old", "logoUrl": "x"}
    patched = apply_event(snapshot, "patch", "/", {"schoolNameEn": "New"})
    assert patched == {"schoolNameEn": "New", "logoUrl": "x"}


def _mirror(handler, **kwargs) -> RealtimeMirror:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RealtimeMirror(CloudConfig.model_validate(GOOD_CONFIG), client=client, **kwargs)


async def test_write_and_read_use_collection_urls() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, request.url.params.get("auth")))
        if request.method == "PUT":
            return httpx.Response(200, json=json.loads(request.content))
        return httpx.Response(200, json=[{"id": "n1"}])

    mirror = _mirror(handler)
    await mirror.write("news", [{"id": "n1"}])
    assert await mirror.read_once("news") == [{"id": "n1"}]
    await mirror.aclose()

    assert seen == [("PUT", "/news.json", "AIzaSyExampleKey"), ("GET", "/news.json", "AIzaSyExampleKey")]
    assert mirror.closed


@pytest.mark.parametrize(
    "handler,category",
    [
        (lambda request: httpx.Response(401, json={"error": "Permission denied"}), SyncErrorCategory.INVALID_KEY),
        (lambda request: httpx.Response(500), SyncErrorCategory.UNKNOWN),
    ],
)
async def test_open_classifies_http_errors(handler, category) -> None:
    mirror = _mirror(handler)
    with pytest.raises(MirrorError) as info:
        await mirror.open()
    assert info.value.category is category
    await mirror.aclose()


async def test_open_classifies_network_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    mirror = _mirror(handler)
    with pytest.raises(MirrorError) as info:
        await mirror.open()
    assert info.value.category is SyncErrorCategory.NETWORK_FAILURE
    await mirror.aclose()


async def test_subscription_delivers_full_snapshots() -> None:
    body = (
        "event: put\n"
        'data: {"path": "/", "data": [{"id": "r1"}]}\n\n'
        "event: keep-alive\n"
        "data: null\n\n"
        "event: put\n"
        'data: {"path": "/1", "data": {"id": "r2"}}\n\n'
        "event: keep-alive\n"
        "data: null\n\n"
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["accept"] == "text/event-stream"
        return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})

    received = []
    done = asyncio.Event()

    async def on_change(snapshot) -> None:
        received.append(snapshot)
        if len(received) == 2:
            done.set()

    mirror = _mirror(handler, retry_delay=10.0)
    sub = mirror.subscribe("history", on_change)
    await asyncio.wait_for(done.wait(), 2.0)
    await sub.unsubscribe()
    await mirror.aclose()

    assert received == [[{"id": "r1"}], [{"id": "r1"}, {"id": "r2"}]]
    assert not sub.active

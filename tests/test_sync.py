import asyncio
import json
import os

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from waallet.storage.observable_store import ObservableStore
from waallet.storage.sync import (
    SYNC_STORAGE_ACTION,
    StateFileWriter,
    attach_sync,
    load_state,
)


class WebhookReceiver:
    def __init__(self, status=200):
        self.status = status
        self.received = []
        self.server = None

    async def _handle(self, request):
        self.received.append(await request.json())
        return web.Response(status=self.status)

    async def start(self):
        app = web.Application()
        app.router.add_post("/sync", self._handle)
        self.server = TestServer(app)
        await self.server.start_server()

    @property
    def url(self):
        return str(self.server.make_url("/sync"))


@pytest_asyncio.fixture
async def receiver():
    receiver = WebhookReceiver()
    await receiver.start()
    yield receiver
    await receiver.server.close()


class RecordingStateFileWriter(StateFileWriter):
    def __init__(self, state_file):
        super().__init__(state_file)
        self.writes = []

    def _write(self, state):
        self.writes.append(state)
        super()._write(state)


async def read_state_file(state_file, expected):
    for _ in range(100):
        if os.path.exists(state_file):
            with open(state_file) as file:
                state = json.load(file)
            if state == expected:
                return state
        await asyncio.sleep(0.01)
    raise AssertionError(f"{state_file} never reached {expected}")


@pytest.mark.asyncio
async def test_state_file_follows_updates(tmp_path):
    state_file = str(tmp_path / "state.json")
    storage = ObservableStore({"userOpPool": {}})
    storage.subscribe(StateFileWriter(state_file))

    storage.set(lambda state: state["userOpPool"].update({"id": {"n": 1}}))

    await read_state_file(state_file, {"userOpPool": {"id": {"n": 1}}})


@pytest.mark.asyncio
async def test_state_file_coalesces_burst_of_updates(tmp_path):
    state_file = str(tmp_path / "state.json")
    storage = ObservableStore({"n": 0})
    writer = RecordingStateFileWriter(state_file)
    storage.subscribe(writer)

    for n in range(1, 4):
        storage.set(lambda state, n=n: state.update({"n": n}))

    await read_state_file(state_file, {"n": 3})
    assert len(writer.writes) < 3
    assert writer.writes[-1] == {"n": 3}


def test_load_state_merges_stored_state(tmp_path):
    state_file = tmp_path / "state.json"
    state_file.write_text(json.dumps({"userOpPool": {"id": {"n": 1}}}))

    state = load_state(str(state_file), {"userOpPool": {}, "account": {}})

    assert state == {"userOpPool": {"id": {"n": 1}}, "account": {}}


def test_load_state_without_file(tmp_path):
    default_state = {"userOpPool": {}}
    assert load_state(str(tmp_path / "missing.json"), default_state) == (
        default_state)


@pytest.mark.asyncio
async def test_webhook_receives_patches(receiver):
    storage = ObservableStore({"userOpPool": {}})
    attach_sync(storage, sync_webhook_url=receiver.url)

    storage.set(lambda state: state["userOpPool"].update({"id": {"n": 1}}))

    for _ in range(100):
        if receiver.received:
            break
        await asyncio.sleep(0.01)
    assert receiver.received == [{
        "action": SYNC_STORAGE_ACTION,
        "patches": [
            {"op": "add", "path": "/userOpPool/id", "value": {"n": 1}}],
    }]


@pytest.mark.asyncio
async def test_webhook_failure_is_logged(receiver, caplog):
    receiver.status = 500
    storage = ObservableStore({"a": 1})
    attach_sync(storage, sync_webhook_url=receiver.url)

    storage.set(lambda state: state.update({"a": 2}))

    for _ in range(100):
        if "Storage sync" in caplog.text:
            break
        await asyncio.sleep(0.01)
    assert "status 500" in caplog.text
    assert storage.get() == {"a": 2}


@pytest.mark.asyncio
async def test_unreachable_webhook_does_not_break_store(
    caplog, unused_tcp_port
):
    storage = ObservableStore({"a": 1})
    attach_sync(
        storage, sync_webhook_url=f"http://127.0.0.1:{unused_tcp_port}/sync")

    storage.set(lambda state: state.update({"a": 2}))

    for _ in range(200):
        if "Storage sync" in caplog.text:
            break
        await asyncio.sleep(0.01)
    assert "Storage sync" in caplog.text
    assert storage.get() == {"a": 2}

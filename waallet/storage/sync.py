import asyncio
import json
import logging
import os

from aiohttp import ClientError, ClientSession, ClientTimeout

from waallet.utils.eth_client_utils import DEFAULT_REQUEST_TIMEOUT
from .observable_store import ObservableStore, Patch, State

SYNC_STORAGE_ACTION = "SyncStorage"


def load_state(state_file: str, default_state: State) -> State:
    """Stored state merged over ``default_state`` at the top level."""
    state = dict(default_state)
    if not os.path.exists(state_file):
        return state
    with open(state_file) as file:
        stored_state = json.load(file)
    state.update(stored_state)
    logging.info(f"State loaded from {state_file}")
    return state


class StateFileWriter:
    """Writes the newest state to ``state_file`` from a worker thread.

    Updates that arrive while a write is running collapse into a single
    follow-up write of the latest state.
    """

    def __init__(self, state_file: str):
        self.state_file = state_file
        self._latest: State | None = None
        self._lock = asyncio.Lock()

    async def __call__(self, state: State, _patches: list[Patch]) -> None:
        self._latest = state
        async with self._lock:
            if self._latest is None:
                return
            state, self._latest = self._latest, None
            await asyncio.get_running_loop().run_in_executor(
                None, self._write, state)

    def _write(self, state: State) -> None:
        tmp_file = self.state_file + ".tmp"
        with open(tmp_file, "w") as file:
            json.dump(state, file, indent=2)
        os.replace(tmp_file, self.state_file)


class WebhookSync:
    """Posts every store update to ``url`` as
    ``{"action": "SyncStorage", "patches": [...]}``.

    Delivery is best effort, failures are only logged.
    """

    def __init__(self, url: str):
        self.url = url

    async def __call__(self, _state: State, patches: list[Patch]) -> None:
        payload = {
            "action": SYNC_STORAGE_ACTION,
            "patches": [patch.to_json() for patch in patches],
        }
        try:
            async with ClientSession(
                timeout=ClientTimeout(total=DEFAULT_REQUEST_TIMEOUT)
            ) as session:
                async with session.post(self.url, json=payload) as response:
                    if response.status >= 400:
                        logging.warning(
                            f"Storage sync to {self.url} failed with "
                            f"status {response.status}"
                        )
        except (ClientError, asyncio.TimeoutError) as excp:
            logging.warning(f"Storage sync to {self.url} failed: {excp}")


def attach_sync(
    storage: ObservableStore,
    state_file: str | None = None,
    sync_webhook_url: str | None = None,
) -> None:
    if state_file is not None:
        storage.subscribe(StateFileWriter(state_file))
    if sync_webhook_url is not None:
        storage.subscribe(WebhookSync(sync_webhook_url))

"""
Observable state container used as the single persistence and broadcast
surface of a wallet instance.

Writers pass a recipe that mutates a draft copy of the state. The store
diffs the draft against the current state into a list of json patches,
swaps the draft in and only then notifies subscribers, so a subscriber
always sees a fully applied update.

Subscribers register with a path prefix and are only called when at least
one patch touches that prefix. Each handler gets the full state and the
patches that matched.
"""

import asyncio
import copy
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

Path = tuple[str, ...]
State = dict[str, Any]


class PatchOperation(Enum):
    add = "add"
    replace = "replace"
    remove = "remove"

    def __str__(self):
        return self.value


@dataclass
class Patch:
    op: PatchOperation
    path: Path
    value: Any = None

    def to_json(self) -> dict[str, Any]:
        patch_json = {
            "op": self.op.value,
            "path": "/" + "/".join(self.path),
        }
        if self.op != PatchOperation.remove:
            patch_json["value"] = self.value
        return patch_json


Handler = Callable[[State, list[Patch]], None | Awaitable[None]]


class StorageClosedException(Exception):
    pass


class Subscription:
    def __init__(
        self,
        store: "ObservableStore",
        handler: Handler,
        path: Path,
        on_close: Callable[[], None] | None,
    ):
        self._store = store
        self.handler = handler
        self.path = path
        self.on_close = on_close
        self.closed = False

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._store._remove(self)

    def matches(self, patches: list[Patch]) -> list[Patch]:
        return [patch for patch in patches if _is_related(self.path, patch.path)]


class ObservableStore:
    def __init__(self, state: State | None = None):
        self._state: State = copy.deepcopy(state) if state is not None else {}
        self._subscriptions: list[Subscription] = []
        self._tasks: set[asyncio.Task] = set()
        self.closed = False

    def get(self) -> State:
        return copy.deepcopy(self._state)

    def set(self, recipe: Callable[[State], None]) -> list[Patch]:
        if self.closed:
            raise StorageClosedException("storage is closed")
        draft = copy.deepcopy(self._state)
        recipe(draft)
        patches = diff(self._state, draft)
        if len(patches) == 0:
            return patches
        self._state = draft
        self._notify(patches)
        return patches

    def subscribe(
        self,
        handler: Handler,
        path: Path = (),
        on_close: Callable[[], None] | None = None,
    ) -> Subscription:
        if self.closed:
            raise StorageClosedException("storage is closed")
        subscription = Subscription(self, handler, tuple(path), on_close)
        self._subscriptions.append(subscription)
        return subscription

    def close(self) -> None:
        """Tear down every subscription. Further writes are rejected."""
        if self.closed:
            return
        self.closed = True
        subscriptions = self._subscriptions
        self._subscriptions = []
        for subscription in subscriptions:
            subscription.closed = True
            if subscription.on_close is not None:
                try:
                    subscription.on_close()
                except Exception as excp:
                    logging.warning(
                        f"storage subscriber close callback failed: {excp}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _notify(self, patches: list[Patch]) -> None:
        for subscription in list(self._subscriptions):
            if subscription.closed:
                continue
            matched_patches = subscription.matches(patches)
            if len(matched_patches) == 0:
                continue
            try:
                result = subscription.handler(self.get(), matched_patches)
            except Exception as excp:
                logging.warning(f"storage subscriber failed: {excp}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        excp = task.exception()
        if excp is not None:
            logging.warning(f"storage subscriber failed: {excp}")


def _is_related(prefix: Path, path: Path) -> bool:
    length = min(len(prefix), len(path))
    return prefix[:length] == path[:length]


def diff(old: Any, new: Any, path: Path = ()) -> list[Patch]:
    if isinstance(old, dict) and isinstance(new, dict):
        patches = []
        for key in old:
            if key not in new:
                patches.append(Patch(PatchOperation.remove, path + (key,)))
        for key, value in new.items():
            if key not in old:
                patches.append(
                    Patch(PatchOperation.add, path + (key,), copy.deepcopy(value)))
            else:
                patches.extend(diff(old[key], value, path + (key,)))
        return patches
    if old != new or type(old) is not type(new):
        return [Patch(PatchOperation.replace, path, copy.deepcopy(new))]
    return []

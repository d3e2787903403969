import logging

from prometheus_client import Counter, start_http_server

from waallet.pool.user_operation_pool import POOL_KEY
from waallet.storage.observable_store import (
    ObservableStore,
    Patch,
    PatchOperation,
    State,
    Subscription,
)

USER_OPERATION_STATUS = Counter(
    "waallet_user_operations_total",
    "UserOperation pool entries that reached a status",
    ["status"],
)


def count_status_patches(_state: State, patches: list[Patch]) -> None:
    for patch in patches:
        if patch.op == PatchOperation.remove:
            continue
        # a new entry is one add patch at ("userOpPool", id)
        if len(patch.path) == 2 and isinstance(patch.value, dict):
            status = patch.value.get("status")
        elif len(patch.path) == 3 and patch.path[2] == "status":
            status = patch.value
        else:
            continue
        if status is not None:
            USER_OPERATION_STATUS.labels(status).inc()


def attach_pool_metrics(storage: ObservableStore) -> Subscription:
    return storage.subscribe(count_status_patches, (POOL_KEY,))


def run_metrics_server(host="localhost", port=8000):
    """
    run prometheus metrics server for the RPC timers and pool counters
    """
    logging.info(f"Starting Metrics Http Server at: {host}:{port}")
    start_http_server(port, addr=host)

import asyncio
import logging

from waallet.network.bundler import BundlerMode
from waallet.network.network_manager import NetworkManager
from waallet.typing import UserOperationId
from .models import (
    UserOperationReceipt,
    UserOperationStatement,
    UserOperationStatus,
)
from .user_operation_pool import UserOperationPool

DEFAULT_POLL_INTERVAL = 1.5


class ReceiptPoller:
    """Moves Sent pool entries to Succeeded or Failed.

    Every tick queries the bundler receipt of each Sent entry. Entries are
    polled concurrently but an entry is never queried twice at once.
    """

    pool: UserOperationPool
    network_manager: NetworkManager
    poll_interval: float

    def __init__(
        self,
        pool: UserOperationPool,
        network_manager: NetworkManager,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.pool = pool
        self.network_manager = network_manager
        self.poll_interval = poll_interval
        self._in_flight: set[UserOperationId] = set()
        self._bundle_requested: set[UserOperationId] = set()

    async def start(self) -> None:
        logging.info(
            f"Starting receipt poller with interval {self.poll_interval}s")
        while True:
            await self.poll()
            await asyncio.sleep(self.poll_interval)

    async def poll(self) -> None:
        tasks = []
        for statement in self.pool.list(UserOperationStatus.Sent):
            if statement.id in self._in_flight:
                continue
            self._in_flight.add(statement.id)
            tasks.append(self._poll_statement(statement))
        await asyncio.gather(*tasks)

    async def _poll_statement(self, statement: UserOperationStatement) -> None:
        try:
            await self._update_statement(statement)
        except Exception as excp:
            logging.warning(
                f"Failed to fetch receipt of UserOperation {statement.id}: "
                f"{excp}"
            )
        finally:
            self._in_flight.discard(statement.id)

    async def _update_statement(self, statement: UserOperationStatement) -> None:
        bundler = self.network_manager.get(statement.network_id).bundler
        user_operation_hash = statement.user_operation_hash

        if (
            bundler.mode == BundlerMode.manual and
            statement.id not in self._bundle_requested
        ):
            self._bundle_requested.add(statement.id)
            await bundler.debug_send_bundle_now()

        bundler_receipt = await bundler.get_user_operation_receipt(
            user_operation_hash)
        if bundler_receipt is None:
            return

        receipt = UserOperationReceipt.from_bundler_receipt(
            user_operation_hash, bundler_receipt)
        if bundler_receipt["success"]:
            self.pool.succeed(statement.id, receipt)
            logging.info(f"UserOperation {statement.id} succeeded")
        else:
            self.pool.fail(statement.id, receipt, receipt.error_message)
            logging.info(
                f"UserOperation {statement.id} failed: {receipt.error_message}")
        self._bundle_requested.discard(statement.id)

import asyncio
import logging
from enum import Enum
from typing import Any

from waallet.typing import Address, TransactionHash, UserOperationHash
from waallet.user_operation.user_operation import is_address_equal
from waallet.user_operation.user_operation_v6 import UserOperationV6
from waallet.utils.eth_client_utils import (
    NUMBER_OF_RETRY_ATTEMPTS,
    JsonRpcClient,
    RequestTimeoutError,
)

DEFAULT_WAIT_POLL_INTERVAL = 1.0
SEND_LOOKUP_ATTEMPTS = 3


class BundlerMode(Enum):
    manual = "manual"
    auto = "auto"

    def __str__(self):
        return self.value


class BundlerRpcMethod(Enum):
    eth_chainId = "eth_chainId"
    eth_supportedEntryPoints = "eth_supportedEntryPoints"
    eth_estimateUserOperationGas = "eth_estimateUserOperationGas"
    eth_sendUserOperation = "eth_sendUserOperation"
    eth_getUserOperationByHash = "eth_getUserOperationByHash"
    eth_getUserOperationReceipt = "eth_getUserOperationReceipt"
    debug_bundler_sendBundleNow = "debug_bundler_sendBundleNow"
    debug_bundler_clearState = "debug_bundler_clearState"
    debug_bundler_dumpMempool = "debug_bundler_dumpMempool"
    debug_bundler_setBundlingMode = "debug_bundler_setBundlingMode"

    @classmethod
    def has_method(cls, method: str) -> bool:
        return method in cls._value2member_map_


class BundlerClient(JsonRpcClient):
    mode: BundlerMode
    poll_interval: float
    supported_entry_points: list[Address] | None

    def __init__(
        self,
        url: str,
        mode: BundlerMode = BundlerMode.auto,
        poll_interval: float = DEFAULT_WAIT_POLL_INTERVAL,
        retry_attempts: int = NUMBER_OF_RETRY_ATTEMPTS,
    ):
        super().__init__(url, retry_attempts)
        self.mode = mode
        self.poll_interval = poll_interval
        self.supported_entry_points = None

    async def get_chain_id(self) -> int:
        chain_id = await self.send(BundlerRpcMethod.eth_chainId.value, [])
        return int(chain_id, 16)

    async def get_supported_entry_points(self) -> list[Address]:
        entry_points = await self.send(
            BundlerRpcMethod.eth_supportedEntryPoints.value, [])
        self.supported_entry_points = [
            Address(entry_point) for entry_point in entry_points]
        return self.supported_entry_points

    async def is_supported_entry_point(self, entry_point: Address) -> bool:
        if self.supported_entry_points is None:
            await self.get_supported_entry_points()
        return any(
            is_address_equal(entry_point, supported)
            for supported in self.supported_entry_points
        )

    async def estimate_user_operation_gas(
        self, user_operation_json: dict[str, str], entry_point: Address
    ) -> dict[str, str]:
        return await self.send(
            BundlerRpcMethod.eth_estimateUserOperationGas.value,
            [user_operation_json, entry_point],
        )

    async def send_user_operation(
        self, user_operation_json: dict[str, str], entry_point: Address
    ) -> UserOperationHash:
        """Sent once, never retried: a resend of an operation the bundler
        already holds is refused as a duplicate.

        When the bundler takes the request but does not answer in time,
        the outcome is settled by looking the locally computed hash up with
        eth_getUserOperationByHash, which bundlers also answer for
        operations still in their mempool.
        """
        try:
            user_operation_hash = await self.send(
                BundlerRpcMethod.eth_sendUserOperation.value,
                [user_operation_json, entry_point],
                retry_attempts=1,
            )
        except RequestTimeoutError:
            user_operation_hash = UserOperationV6.from_json(
                user_operation_json).hash(entry_point, await self.get_chain_id())
            logging.warning(
                "No answer to eth_sendUserOperation, looking up UserOperation "
                f"{user_operation_hash}"
            )
            await self._confirm_sent(user_operation_hash)
        logging.info(f"UserOperation sent to bundler: {user_operation_hash}")
        return UserOperationHash(user_operation_hash)

    async def _confirm_sent(self, user_operation_hash: UserOperationHash) -> None:
        for _ in range(SEND_LOOKUP_ATTEMPTS):
            if await self.get_user_operation_by_hash(user_operation_hash):
                return
            await asyncio.sleep(self.poll_interval)
        raise ConnectionError(
            f"UserOperation {user_operation_hash} unknown to bundler after "
            "eth_sendUserOperation timed out"
        )

    async def get_user_operation_by_hash(
        self, user_operation_hash: UserOperationHash
    ) -> dict[str, Any] | None:
        return await self.send(
            BundlerRpcMethod.eth_getUserOperationByHash.value,
            [user_operation_hash],
        )

    async def get_user_operation_receipt(
        self, user_operation_hash: UserOperationHash
    ) -> dict[str, Any] | None:
        return await self.send(
            BundlerRpcMethod.eth_getUserOperationReceipt.value,
            [user_operation_hash],
        )

    async def debug_send_bundle_now(self) -> Any:
        return await self.send(
            BundlerRpcMethod.debug_bundler_sendBundleNow.value, [])

    async def wait(
        self, user_operation_hash: UserOperationHash
    ) -> TransactionHash:
        """Poll until the bundler knows the transaction that included the
        operation. There is no timeout, wrap in asyncio.wait_for if needed.
        """
        if self.mode == BundlerMode.manual:
            await self.debug_send_bundle_now()
        while True:
            await asyncio.sleep(self.poll_interval)
            result = await self.get_user_operation_by_hash(user_operation_hash)
            # mempool entries come back with a null transactionHash
            if result and result.get("transactionHash"):
                return TransactionHash(result["transactionHash"])

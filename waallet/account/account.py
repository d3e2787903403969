from abc import ABC, abstractmethod
from typing import Any

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from waallet.network.node import NodeClient
from waallet.typing import Address, UserOperationHash
from waallet.user_operation.user_operation import verify_and_get_address
from waallet.user_operation.user_operation_v6 import UserOperationV6

GET_NONCE_SELECTOR = function_signature_to_4byte_selector(
    "getNonce(address,uint192)")
ENTRY_POINT_SELECTOR = function_signature_to_4byte_selector("entryPoint()")
EXECUTE_SELECTOR = function_signature_to_4byte_selector(
    "execute(address,uint256,bytes)")


class Account(ABC):
    """Smart contract account able to build and sign UserOperations.

    Subclasses provide the owner specific parts: the counterfactual
    address, the factory call deploying the account and the signature.
    """

    node: NodeClient
    entry_point: Address | None

    def __init__(self, node: NodeClient, entry_point: Address | None = None):
        self.node = node
        self.entry_point = entry_point

    @abstractmethod
    async def get_address(self) -> Address:
        pass

    @abstractmethod
    async def sign(
        self, user_operation_hash: UserOperationHash, metadata: Any = None
    ) -> bytes:
        pass

    @abstractmethod
    async def _get_factory_init_code(self) -> bytes:
        pass

    async def get_entry_point(self) -> Address:
        if self.entry_point is None:
            result = await self.node.call(
                await self.get_address(), "0x" + ENTRY_POINT_SELECTOR.hex())
            self.entry_point = decode_address(result)
        return self.entry_point

    async def get_nonce(self) -> int:
        # key 0 is the sequential nonce channel
        call_data = GET_NONCE_SELECTOR + encode(
            ["address", "uint192"],
            [to_checksum_address(await self.get_address()), 0],
        )
        result = await self.node.call(
            await self.get_entry_point(), "0x" + call_data.hex())
        return decode(["uint256"], bytes.fromhex(result[2:]))[0]

    async def get_init_code(self) -> bytes:
        if await self.node.is_contract_deployed(await self.get_address()):
            return b""
        return await self._get_factory_init_code()

    def get_call_data(self, to: Address, value: int, data: bytes) -> bytes:
        return EXECUTE_SELECTOR + encode(
            ["address", "uint256", "bytes"],
            [to_checksum_address(to), value, data],
        )

    async def build_execution(
        self,
        to: Address,
        value: int = 0,
        data: bytes = b"",
        nonce: int | None = None,
    ) -> UserOperationV6:
        verify_and_get_address("to", to)
        if nonce is None:
            nonce = await self.get_nonce()
        return UserOperationV6(
            sender=await self.get_address(),
            nonce=nonce,
            init_code=await self.get_init_code(),
            call_data=self.get_call_data(to, value, data),
        )


def decode_address(call_result: str) -> Address:
    address = decode(["address"], bytes.fromhex(call_result[2:]))[0]
    return Address(to_checksum_address(address))

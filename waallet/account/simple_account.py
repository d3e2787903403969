from typing import Any

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from waallet.exceptions import ValidationException, ValidationExceptionCode
from waallet.network.node import NodeClient
from waallet.typing import Address, UserOperationHash
from waallet.utils.signer import address_from_private_key, sign_message_hash
from .account import ENTRY_POINT_SELECTOR, Account, decode_address

CREATE_ACCOUNT_SELECTOR = function_signature_to_4byte_selector(
    "createAccount(address,uint256)")
GET_ADDRESS_SELECTOR = function_signature_to_4byte_selector(
    "getAddress(address,uint256)")
ACCOUNT_IMPLEMENTATION_SELECTOR = function_signature_to_4byte_selector(
    "accountImplementation()")


class SimpleAccount(Account):
    """eth-infinitism SimpleAccount owned by an EOA private key.

    Either the deployed ``address`` or a ``factory_address`` (with ``salt``)
    is required. With a factory the address is derived counterfactually and
    the first operation carries the deployment initCode.
    """

    owner_private_key: str
    owner: Address
    address: Address | None
    factory_address: Address | None
    salt: int

    def __init__(
        self,
        node: NodeClient,
        owner_private_key: str,
        address: Address | None = None,
        factory_address: Address | None = None,
        salt: int = 0,
        entry_point: Address | None = None,
    ):
        if address is None and factory_address is None:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                "SimpleAccount needs an address or a factory address",
            )
        super().__init__(node, entry_point)
        self.owner_private_key = owner_private_key
        self.owner = address_from_private_key(owner_private_key)
        self.address = address
        self.factory_address = factory_address
        self.salt = salt

    async def get_address(self) -> Address:
        if self.address is None:
            result = await self.node.call(
                self.factory_address,
                "0x" + (GET_ADDRESS_SELECTOR + self._factory_arguments()).hex(),
            )
            self.address = decode_address(result)
        return self.address

    async def get_entry_point(self) -> Address:
        if (
            self.entry_point is None and
            self.factory_address is not None and
            not await self.node.is_contract_deployed(await self.get_address())
        ):
            # ask the implementation behind the factory
            implementation = decode_address(
                await self.node.call(
                    self.factory_address,
                    "0x" + ACCOUNT_IMPLEMENTATION_SELECTOR.hex(),
                )
            )
            self.entry_point = decode_address(
                await self.node.call(
                    implementation, "0x" + ENTRY_POINT_SELECTOR.hex())
            )
        return await super().get_entry_point()

    async def sign(
        self, user_operation_hash: UserOperationHash, metadata: Any = None
    ) -> bytes:
        return sign_message_hash(user_operation_hash, self.owner_private_key)

    async def _get_factory_init_code(self) -> bytes:
        if self.factory_address is None:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"SimpleAccount {self.address} is not deployed and has no factory",
            )
        return (
            bytes.fromhex(self.factory_address[2:]) +
            CREATE_ACCOUNT_SELECTOR +
            self._factory_arguments()
        )

    def _factory_arguments(self) -> bytes:
        return encode(
            ["address", "uint256"],
            [to_checksum_address(self.owner), self.salt],
        )

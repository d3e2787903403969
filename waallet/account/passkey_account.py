from abc import ABC, abstractmethod
from typing import Any

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector

from waallet.exceptions import ValidationException, ValidationExceptionCode
from waallet.network.node import NodeClient
from waallet.typing import Address, UserOperationHash
from .account import Account, decode_address

CREATE_ACCOUNT_SELECTOR = function_signature_to_4byte_selector(
    "createAccount(string,uint256,uint256,uint256)")
GET_ADDRESS_SELECTOR = function_signature_to_4byte_selector(
    "getAddress(string,uint256,uint256,uint256)")


class PasskeyOwner(ABC):
    """WebAuthn authenticator holding the account's P-256 key."""

    @abstractmethod
    def use(self, credential_id: str) -> None:
        pass

    @abstractmethod
    async def sign(self, challenge: bytes, metadata: Any = None) -> bytes:
        """Return the account specific encoding of the WebAuthn assertion."""
        pass


class PasskeyAccount(Account):
    owner: PasskeyOwner
    credential_id: str
    public_key: tuple[int, int]
    address: Address | None
    factory_address: Address | None
    salt: int

    def __init__(
        self,
        node: NodeClient,
        owner: PasskeyOwner,
        credential_id: str,
        public_key: tuple[int, int],
        address: Address | None = None,
        factory_address: Address | None = None,
        salt: int = 0,
        entry_point: Address | None = None,
    ):
        if address is None and factory_address is None:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                "PasskeyAccount needs an address or a factory address",
            )
        super().__init__(node, entry_point)
        self.owner = owner
        self.credential_id = credential_id
        self.public_key = public_key
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

    async def sign(
        self, user_operation_hash: UserOperationHash, metadata: Any = None
    ) -> bytes:
        self.owner.use(self.credential_id)
        return await self.owner.sign(
            bytes.fromhex(user_operation_hash[2:]), metadata)

    async def _get_factory_init_code(self) -> bytes:
        if self.factory_address is None:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"PasskeyAccount {self.address} is not deployed and has no factory",
            )
        return (
            bytes.fromhex(self.factory_address[2:]) +
            CREATE_ACCOUNT_SELECTOR +
            self._factory_arguments()
        )

    def _factory_arguments(self) -> bytes:
        x, y = self.public_key
        return encode(
            ["string", "uint256", "uint256", "uint256"],
            [self.credential_id, x, y, self.salt],
        )

import time

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from waallet.typing import Address
from waallet.user_operation.user_operation_v6 import UserOperationV6
from waallet.utils.signer import sign_message_hash
from .paymaster import FeeQuotingPaymaster

DEFAULT_EXPIRATION_SECS = 300
# valid length ecdsa signature used while estimating gas
DUMMY_SIGNATURE = bytes.fromhex(
    "fffffffffffffffffffffffffffffff000000000000000000000000000000007"
    "aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa1c"
)


class VerifyingPaymaster(FeeQuotingPaymaster):
    """Sponsoring paymaster in the style of the EntryPoint v0.6 sample
    VerifyingPaymaster: an off-chain signer approves each operation for a
    limited time window.

    paymasterAndData layout:
        paymaster address (20 bytes)
        abi.encode(uint48 validUntil, uint48 validAfter) (64 bytes)
        owner signature (65 bytes)
    """

    address: Address
    owner_private_key: str
    chain_id: int
    expiration_secs: int

    def __init__(
        self,
        address: Address,
        owner_private_key: str,
        chain_id: int,
        expiration_secs: int = DEFAULT_EXPIRATION_SECS,
    ):
        self.address = Address(to_checksum_address(address))
        self.owner_private_key = owner_private_key
        self.chain_id = chain_id
        self.expiration_secs = expiration_secs

    async def request_paymaster_and_data(
        self, user_operation: UserOperationV6, is_gas_estimation: bool = False
    ) -> bytes:
        valid_until = int(time.time()) + self.expiration_secs
        valid_after = 0
        if is_gas_estimation:
            signature = DUMMY_SIGNATURE
        else:
            signature = sign_message_hash(
                self.get_hash(user_operation, valid_until, valid_after),
                self.owner_private_key,
            )
        return (
            bytes.fromhex(self.address[2:]) +
            encode(["uint48", "uint48"], [valid_until, valid_after]) +
            signature
        )

    async def quote_fee(self, gas_cost: int, token: Address | None = None) -> int:
        return 0

    def get_hash(
        self,
        user_operation: UserOperationV6,
        valid_until: int,
        valid_after: int,
    ) -> bytes:
        return keccak(
            encode(
                [
                    "address",
                    "uint256",
                    "bytes32",
                    "bytes32",
                    "uint256",
                    "uint256",
                    "uint256",
                    "uint256",
                    "uint256",
                    "uint256",
                    "address",
                    "uint48",
                    "uint48",
                ],
                [
                    to_checksum_address(user_operation.sender),
                    user_operation.nonce,
                    keccak(user_operation.init_code),
                    keccak(user_operation.call_data),
                    user_operation.call_gas_limit,
                    user_operation.verification_gas_limit,
                    user_operation.pre_verification_gas,
                    user_operation.max_fee_per_gas,
                    user_operation.max_priority_fee_per_gas,
                    self.chain_id,
                    self.address,
                    valid_until,
                    valid_after,
                ],
            )
        )

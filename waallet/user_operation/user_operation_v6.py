from dataclasses import dataclass, field

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from waallet.exceptions import ValidationException, ValidationExceptionCode
from waallet.typing import Address, UserOperationHash
from .user_operation import (
    is_address_equal,
    verify_and_get_address,
    verify_and_get_bytes,
    verify_and_get_uint,
)

USER_OPERATION_FIELDS = [
    "sender",
    "nonce",
    "initCode",
    "callData",
    "callGasLimit",
    "verificationGasLimit",
    "preVerificationGas",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "paymasterAndData",
    "signature",
]


@dataclass
class UserOperationV6:
    """EntryPoint v0.6 UserOperation.

    Gas and fee fields start at zero and are filled in place by the gas
    manager, the paymaster and the authorizer, in that order. Once the
    operation is handed to a bundler it is frozen and every setter raises.
    """
    sender: Address
    nonce: int
    call_data: bytes
    init_code: bytes = b""
    call_gas_limit: int = 0
    verification_gas_limit: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    paymaster_and_data: bytes = b""
    signature: bytes = b""
    _frozen: bool = field(default=False, repr=False, compare=False)

    @classmethod
    def from_json(cls, json_dict: dict[str, str]) -> "UserOperationV6":
        if not isinstance(json_dict, dict):
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                "Invalid UserOperation",
            )
        for required_field in ["sender", "nonce", "callData"]:
            if json_dict.get(required_field) is None:
                raise ValidationException(
                    ValidationExceptionCode.InvalidFields,
                    f"UserOperation missing {required_field} field",
                )
        for key in json_dict:
            if key not in USER_OPERATION_FIELDS:
                raise ValidationException(
                    ValidationExceptionCode.InvalidFields,
                    f"UserOperation has unknown field {key}",
                )

        def _uint(name: str) -> int:
            value = json_dict.get(name)
            return 0 if value is None else verify_and_get_uint(name, value)

        def _bytes(name: str) -> bytes:
            value = json_dict.get(name)
            return b"" if value is None else verify_and_get_bytes(name, value)

        return cls(
            sender=verify_and_get_address("sender", json_dict["sender"]),
            nonce=verify_and_get_uint("nonce", json_dict["nonce"]),
            call_data=verify_and_get_bytes("callData", json_dict["callData"]),
            init_code=_bytes("initCode"),
            call_gas_limit=_uint("callGasLimit"),
            verification_gas_limit=_uint("verificationGasLimit"),
            pre_verification_gas=_uint("preVerificationGas"),
            max_fee_per_gas=_uint("maxFeePerGas"),
            max_priority_fee_per_gas=_uint("maxPriorityFeePerGas"),
            paymaster_and_data=_bytes("paymasterAndData"),
            signature=_bytes("signature"),
        )

    def data(self) -> dict[str, str]:
        return {
            "sender": self.sender,
            "nonce": hex(self.nonce),
            "initCode": "0x" + self.init_code.hex(),
            "callData": "0x" + self.call_data.hex(),
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "paymasterAndData": "0x" + self.paymaster_and_data.hex(),
            "signature": "0x" + self.signature.hex(),
        }

    def to_list(self) -> list[Address | int | bytes]:
        return [
            self.sender,
            self.nonce,
            self.init_code,
            self.call_data,
            self.call_gas_limit,
            self.verification_gas_limit,
            self.pre_verification_gas,
            self.max_fee_per_gas,
            self.max_priority_fee_per_gas,
            self.paymaster_and_data,
            self.signature,
        ]

    def hash(self, entry_point: Address, chain_id: int) -> UserOperationHash:
        return get_user_operation_hash(self.to_list(), entry_point, chain_id)

    def set_call_gas_limit(self, call_gas_limit: int | str) -> None:
        self._verify_not_frozen()
        self.call_gas_limit = verify_and_get_uint(
            "callGasLimit", call_gas_limit)

    def set_gas_limit(
        self,
        call_gas_limit: int | str,
        verification_gas_limit: int | str,
        pre_verification_gas: int | str,
    ) -> None:
        self._verify_not_frozen()
        self.call_gas_limit = verify_and_get_uint(
            "callGasLimit", call_gas_limit)
        self.verification_gas_limit = verify_and_get_uint(
            "verificationGasLimit", verification_gas_limit)
        self.pre_verification_gas = verify_and_get_uint(
            "preVerificationGas", pre_verification_gas)

    def set_gas_fee(
        self,
        max_fee_per_gas: int | str,
        max_priority_fee_per_gas: int | str,
    ) -> None:
        self._verify_not_frozen()
        self.max_fee_per_gas = verify_and_get_uint(
            "maxFeePerGas", max_fee_per_gas)
        self.max_priority_fee_per_gas = verify_and_get_uint(
            "maxPriorityFeePerGas", max_priority_fee_per_gas)

    def set_paymaster_and_data(self, paymaster_and_data: bytes | str) -> None:
        self._verify_not_frozen()
        self.paymaster_and_data = verify_and_get_bytes(
            "paymasterAndData", paymaster_and_data)

    def set_signature(self, signature: bytes | str) -> None:
        self._verify_not_frozen()
        self.signature = verify_and_get_bytes("signature", signature)

    def calculate_gas_fee(self) -> int:
        # a paymaster's postOp can run verification twice more
        verification_multiplier = 1 if len(self.paymaster_and_data) == 0 else 3
        return (
            self.call_gas_limit +
            self.verification_gas_limit * verification_multiplier +
            self.pre_verification_gas
        ) * self.max_fee_per_gas

    def is_gas_estimated(self) -> bool:
        return (
            self.call_gas_limit != 0 and
            self.verification_gas_limit != 0 and
            self.pre_verification_gas != 0
        )

    def is_gas_fee_estimated(self) -> bool:
        return self.max_fee_per_gas != 0 and self.max_priority_fee_per_gas != 0

    def is_sender(self, account_address: Address) -> bool:
        return is_address_equal(self.sender, account_address)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def copy(self) -> "UserOperationV6":
        return UserOperationV6.from_json(self.data())

    def _verify_not_frozen(self) -> None:
        if self._frozen:
            raise ValidationException(
                ValidationExceptionCode.UserOperationFrozen,
                "UserOperation was already submitted and can't be modified",
            )


def get_user_operation_hash(
    user_operation_list: list, entrypoint_addr: str, chain_id: int
) -> UserOperationHash:
    packed_user_operation = keccak(
        pack_user_operation(user_operation_list)
    )

    encoded_user_operation_hash = encode(
        ["(bytes32,address,uint256)"],
        [[packed_user_operation, to_checksum_address(entrypoint_addr), chain_id]],
    )
    user_operation_hash = "0x" + keccak(encoded_user_operation_hash).hex()
    return UserOperationHash(user_operation_hash)


def pack_user_operation(user_operation_list: list) -> bytes:
    """ABI encoding signed over: every field but the signature, with the
    dynamic byte fields replaced by their keccak."""
    packed_fields = list(user_operation_list[:-1])
    packed_fields[0] = to_checksum_address(user_operation_list[0])
    for index in (2, 3, 9):
        packed_fields[index] = keccak(user_operation_list[index])
    return encode(
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
            "bytes32",
        ],
        packed_fields,
    )

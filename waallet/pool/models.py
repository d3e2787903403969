from dataclasses import dataclass
from enum import Enum
from typing import Any

from waallet.typing import (
    Address,
    BlockHash,
    TransactionHash,
    UserOperationHash,
    UserOperationId,
)


class UserOperationStatus(Enum):
    Pending = "Pending"
    Sent = "Sent"
    Succeeded = "Succeeded"
    Failed = "Failed"
    Rejected = "Rejected"

    def __str__(self):
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (
            UserOperationStatus.Succeeded,
            UserOperationStatus.Failed,
            UserOperationStatus.Rejected,
        )


ALLOWED_TRANSITIONS: dict[UserOperationStatus, list[UserOperationStatus]] = {
    UserOperationStatus.Pending: [
        UserOperationStatus.Sent,
        UserOperationStatus.Rejected,
    ],
    UserOperationStatus.Sent: [
        UserOperationStatus.Succeeded,
        UserOperationStatus.Failed,
    ],
    UserOperationStatus.Succeeded: [],
    UserOperationStatus.Failed: [],
    UserOperationStatus.Rejected: [],
}


@dataclass
class UserOperationReceipt:
    user_operation_hash: UserOperationHash
    transaction_hash: TransactionHash
    block_hash: BlockHash | None
    block_number: str | None
    error_message: str | None = None

    @classmethod
    def from_bundler_receipt(
        cls, user_operation_hash: UserOperationHash, bundler_receipt: dict
    ) -> "UserOperationReceipt":
        """Build from an ``eth_getUserOperationReceipt`` result.

        Transaction fields are read from the nested transaction receipt and
        fall back to the top level object.
        """
        transaction_receipt = bundler_receipt.get("receipt") or {}

        def _field(name: str):
            value = transaction_receipt.get(name)
            return bundler_receipt.get(name) if value is None else value

        block_number = _field("blockNumber")
        if isinstance(block_number, int):
            block_number = hex(block_number)
        error_message = None
        if not bundler_receipt["success"]:
            error_message = bundler_receipt.get("reason") or ""
        return cls(
            user_operation_hash=user_operation_hash,
            transaction_hash=TransactionHash(_field("transactionHash")),
            block_hash=BlockHash(_field("blockHash")),
            block_number=block_number,
            error_message=error_message,
        )

    def to_json(self) -> dict[str, str]:
        receipt_json = {
            "userOpHash": self.user_operation_hash,
            "transactionHash": self.transaction_hash,
            "blockHash": self.block_hash,
            "blockNumber": self.block_number,
        }
        if self.error_message is not None:
            receipt_json["errorMessage"] = self.error_message
        return receipt_json


@dataclass
class UserOperationStatement:
    id: UserOperationId
    user_operation: dict[str, str]
    sender_id: str
    network_id: str
    entry_point: Address
    created_at: int
    status: UserOperationStatus
    receipt: dict[str, str] | None = None
    reason: str | None = None

    @classmethod
    def from_json(cls, json_dict: dict[str, Any]) -> "UserOperationStatement":
        return cls(
            id=UserOperationId(json_dict["id"]),
            user_operation=json_dict["userOp"],
            sender_id=json_dict["senderId"],
            network_id=json_dict["networkId"],
            entry_point=Address(json_dict["entryPointAddress"]),
            created_at=json_dict["createdAt"],
            status=UserOperationStatus(json_dict["status"]),
            receipt=json_dict.get("receipt"),
            reason=json_dict.get("reason"),
        )

    def to_json(self) -> dict[str, Any]:
        statement_json = {
            "id": self.id,
            "userOp": self.user_operation,
            "senderId": self.sender_id,
            "networkId": self.network_id,
            "entryPointAddress": self.entry_point,
            "createdAt": self.created_at,
            "status": self.status.value,
        }
        if self.receipt is not None:
            statement_json["receipt"] = self.receipt
        if self.reason is not None:
            statement_json["reason"] = self.reason
        return statement_json

    @property
    def user_operation_hash(self) -> UserOperationHash | None:
        if self.receipt is None:
            return None
        return UserOperationHash(self.receipt["userOpHash"])

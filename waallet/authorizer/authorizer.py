import logging
from abc import ABC, abstractmethod
from typing import Any

from waallet.account.account import Account
from waallet.typing import Address
from waallet.user_operation.user_operation_v6 import UserOperationV6


class UserOperationAuthorizeCallback:
    """Signs an approved UserOperation with the sending account."""

    account: Account
    entry_point: Address
    chain_id: int

    def __init__(self, account: Account, entry_point: Address, chain_id: int):
        self.account = account
        self.entry_point = entry_point
        self.chain_id = chain_id

    async def on_approved(
        self, user_operation: UserOperationV6, metadata: Any = None
    ) -> UserOperationV6:
        user_operation_hash = user_operation.hash(
            self.entry_point, self.chain_id)
        signature = await self.account.sign(user_operation_hash, metadata)
        user_operation.set_signature(signature)
        logging.debug(f"UserOperation {user_operation_hash} signed")
        return user_operation


class UserOperationAuthorizer(ABC):
    @abstractmethod
    async def authorize(
        self,
        user_operation: UserOperationV6,
        callback: UserOperationAuthorizeCallback,
    ) -> UserOperationV6:
        """Return the signed operation, or raise AuthorizationException."""
        pass


class AutoApproveAuthorizer(UserOperationAuthorizer):
    async def authorize(
        self,
        user_operation: UserOperationV6,
        callback: UserOperationAuthorizeCallback,
    ) -> UserOperationV6:
        return await callback.on_approved(user_operation)

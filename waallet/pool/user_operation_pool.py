import asyncio
import logging
import time
import uuid

from waallet.exceptions import (
    AuthorizationException,
    AuthorizationExceptionCode,
    ExecutionException,
    ExecutionExceptionCode,
    PoolException,
    PoolExceptionCode,
)
from waallet.network.bundler import BundlerClient
from waallet.storage.observable_store import ObservableStore, Patch, State
from waallet.typing import Address, TransactionHash, UserOperationId
from waallet.user_operation.user_operation_v6 import UserOperationV6
from .models import (
    ALLOWED_TRANSITIONS,
    UserOperationReceipt,
    UserOperationStatement,
    UserOperationStatus,
)

POOL_KEY = "userOpPool"


class UserOperationPool:
    """State machine of every UserOperation the wallet has handled.

    Entries live in the store under ``state["userOpPool"][id]`` and only
    move forward: Pending -> Sent -> Succeeded | Failed, or
    Pending -> Rejected when the operation never reached a bundler.
    """

    storage: ObservableStore

    def __init__(self, storage: ObservableStore):
        self.storage = storage
        self.storage.set(_init_pool)

    def send(
        self,
        user_operation: UserOperationV6,
        account_id: str,
        network_id: str,
        entry_point: Address,
    ) -> UserOperationId:
        user_operation_id = UserOperationId(str(uuid.uuid4()))
        statement = UserOperationStatement(
            id=user_operation_id,
            user_operation=user_operation.data(),
            sender_id=account_id,
            network_id=network_id,
            entry_point=entry_point,
            created_at=int(time.time() * 1000),
            status=UserOperationStatus.Pending,
        )

        def _add(state: State):
            state[POOL_KEY][user_operation_id] = statement.to_json()

        self.storage.set(_add)
        logging.debug(f"UserOperation {user_operation_id} added to pool")
        return user_operation_id

    async def submit(
        self,
        user_operation_id: UserOperationId,
        user_operation: UserOperationV6,
        bundler: BundlerClient,
    ) -> UserOperationStatement:
        statement = self.get(user_operation_id)
        self._verify_transition(statement, UserOperationStatus.Sent)
        try:
            user_operation_hash = await bundler.send_user_operation(
                user_operation.data(), statement.entry_point)
        except Exception as excp:
            self.reject(user_operation_id, failure_reason(excp))
            raise
        user_operation.freeze()
        statement.user_operation = user_operation.data()
        statement.status = UserOperationStatus.Sent
        statement.receipt = {"userOpHash": user_operation_hash}
        self._write(statement)
        return statement

    def reject(self, user_operation_id: UserOperationId, reason: str) -> None:
        statement = self.get(user_operation_id)
        self._verify_transition(statement, UserOperationStatus.Rejected)
        statement.status = UserOperationStatus.Rejected
        statement.reason = reason
        self._write(statement)
        logging.info(f"UserOperation {user_operation_id} rejected: {reason}")

    def reject_if_pending(
        self, user_operation_id: UserOperationId, reason: str
    ) -> bool:
        """Reject an entry left behind by a pipeline that stopped early.

        Entries past Pending are left alone, and nothing is written once
        the storage is closed.
        """
        if self.storage.closed:
            return False
        if self.get(user_operation_id).status != UserOperationStatus.Pending:
            return False
        self.reject(user_operation_id, reason)
        return True

    def reject_all_pending(self, reason: str) -> list[UserOperationId]:
        pending = self.list(UserOperationStatus.Pending)
        for statement in pending:
            self.reject(statement.id, reason)
        return [statement.id for statement in pending]

    def succeed(
        self,
        user_operation_id: UserOperationId,
        receipt: UserOperationReceipt,
    ) -> None:
        statement = self.get(user_operation_id)
        self._verify_transition(statement, UserOperationStatus.Succeeded)
        receipt.error_message = None
        statement.status = UserOperationStatus.Succeeded
        statement.receipt = receipt.to_json()
        self._write(statement)

    def fail(
        self,
        user_operation_id: UserOperationId,
        receipt: UserOperationReceipt,
        error_message: str,
    ) -> None:
        statement = self.get(user_operation_id)
        self._verify_transition(statement, UserOperationStatus.Failed)
        receipt.error_message = error_message
        statement.status = UserOperationStatus.Failed
        statement.receipt = receipt.to_json()
        self._write(statement)

    def get(self, user_operation_id: UserOperationId) -> UserOperationStatement:
        pool = self.storage.get().get(POOL_KEY, {})
        if user_operation_id not in pool:
            raise PoolException(
                PoolExceptionCode.UnknownUserOperation,
                f"Unknown UserOperation {user_operation_id}",
            )
        return UserOperationStatement.from_json(pool[user_operation_id])

    def list(
        self, status: UserOperationStatus | None = None
    ) -> list[UserOperationStatement]:
        pool = self.storage.get().get(POOL_KEY, {})
        statements = [
            UserOperationStatement.from_json(statement_json)
            for statement_json in pool.values()
        ]
        if status is not None:
            statements = [
                statement for statement in statements
                if statement.status == status
            ]
        return sorted(statements, key=lambda statement: statement.created_at)

    async def wait(
        self,
        user_operation_id: UserOperationId,
        timeout: float | None = None,
    ) -> TransactionHash:
        """Resolve with the transaction hash once the entry succeeds.

        Raises the matching exception if the entry fails or is rejected,
        PoolException(WaitCancelled) if the store is closed first and
        asyncio.TimeoutError after ``timeout`` seconds.
        """
        # unknown ids fail fast
        self.get(user_operation_id)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[TransactionHash] = loop.create_future()

        def _settle(statement_json: dict) -> None:
            if future.done():
                return
            statement = UserOperationStatement.from_json(statement_json)
            if not statement.status.is_terminal:
                return
            if statement.status == UserOperationStatus.Succeeded:
                future.set_result(
                    TransactionHash(statement.receipt["transactionHash"]))
            else:
                future.set_exception(_terminal_exception(statement))

        def _on_update(state: State, _patches: list[Patch]) -> None:
            statement_json = state.get(POOL_KEY, {}).get(user_operation_id)
            if statement_json is not None:
                _settle(statement_json)

        def _on_close() -> None:
            if not future.done():
                future.set_exception(
                    PoolException(
                        PoolExceptionCode.WaitCancelled,
                        f"Storage closed while waiting for {user_operation_id}",
                    )
                )

        subscription = self.storage.subscribe(
            _on_update, (POOL_KEY, user_operation_id), _on_close)
        try:
            # the entry can be terminal before the subscription exists
            _settle(
                self.storage.get()[POOL_KEY][user_operation_id])
            return await asyncio.wait_for(future, timeout)
        finally:
            subscription.unsubscribe()

    def _verify_transition(
        self,
        statement: UserOperationStatement,
        status: UserOperationStatus,
    ) -> None:
        if status not in ALLOWED_TRANSITIONS[statement.status]:
            raise PoolException(
                PoolExceptionCode.InvalidTransition,
                f"UserOperation {statement.id} can't move from "
                f"{statement.status} to {status}",
            )

    def _write(self, statement: UserOperationStatement) -> None:
        statement_json = statement.to_json()

        def _update(state: State):
            state[POOL_KEY][statement.id] = statement_json

        self.storage.set(_update)


def _init_pool(state: State) -> None:
    if POOL_KEY not in state:
        state[POOL_KEY] = {}


def failure_reason(excp: BaseException) -> str:
    if isinstance(excp, asyncio.CancelledError):
        return "Request cancelled"
    # wallet and json-rpc exceptions carry their text in .message
    message = getattr(excp, "message", None) or str(excp)
    return message or type(excp).__name__


def _terminal_exception(
    statement: UserOperationStatement,
) -> Exception:
    if statement.status == UserOperationStatus.Failed:
        return ExecutionException(
            ExecutionExceptionCode.UserOperationReverted,
            statement.receipt.get("errorMessage", ""),
        )
    reason = statement.reason or "UserOperation rejected"
    return AuthorizationException(
        AuthorizationExceptionCode.UserRejected, reason)

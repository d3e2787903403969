import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from waallet.account.account import Account
from waallet.account.account_manager import AccountManager
from waallet.authorizer.authorizer import (
    UserOperationAuthorizeCallback,
    UserOperationAuthorizer,
)
from waallet.exceptions import (
    ValidationException,
    ValidationExceptionCode,
)
from waallet.gas.gas_manager import (
    DEFAULT_GAS_PRICE_PERCENTAGE_MULTIPLIER,
    GasManager,
)
from waallet.network.bundler import BundlerClient, BundlerRpcMethod
from waallet.network.network_manager import Network, NetworkManager
from waallet.paymaster.null_paymaster import NullPaymaster
from waallet.paymaster.paymaster import Paymaster
from waallet.pool.models import UserOperationStatement
from waallet.pool.user_operation_pool import UserOperationPool, failure_reason
from waallet.typing import (
    Address,
    TransactionHash,
    UserOperationHash,
    UserOperationId,
)
from waallet.user_operation.user_operation import (
    is_address_equal,
    verify_and_get_address,
    verify_and_get_bytes,
    verify_and_get_uint,
)
from waallet.user_operation.user_operation_v6 import UserOperationV6


class WaalletRpcMethod(Enum):
    eth_accounts = "eth_accounts"
    eth_requestAccounts = "eth_requestAccounts"
    eth_chainId = "eth_chainId"
    eth_estimateGas = "eth_estimateGas"
    eth_estimateUserOperationGas = "eth_estimateUserOperationGas"
    eth_sendTransaction = "eth_sendTransaction"
    eth_sendUserOperation = "eth_sendUserOperation"
    custom_estimateGasPrice = "custom_estimateGasPrice"

    def __str__(self):
        return self.value


class WaalletProvider:
    """EIP-1193 style request entry point of the wallet.

    Transaction intents are turned into UserOperations and pushed through
    gas estimation, paymaster sponsorship, the pool and the authorizer.
    Anything else is forwarded to the bundler or the node of the active
    network.
    """

    account_manager: AccountManager
    network_manager: NetworkManager
    pool: UserOperationPool
    authorizer: UserOperationAuthorizer
    paymaster: Paymaster
    gas_price_percentage_multiplier: int
    wait_timeout: float | None

    def __init__(
        self,
        account_manager: AccountManager,
        network_manager: NetworkManager,
        pool: UserOperationPool,
        authorizer: UserOperationAuthorizer,
        paymaster: Paymaster | None = None,
        gas_price_percentage_multiplier: int = (
            DEFAULT_GAS_PRICE_PERCENTAGE_MULTIPLIER),
        wait_timeout: float | None = None,
    ):
        self.account_manager = account_manager
        self.network_manager = network_manager
        self.pool = pool
        self.authorizer = authorizer
        self.paymaster = paymaster if paymaster is not None else NullPaymaster()
        self.gas_price_percentage_multiplier = gas_price_percentage_multiplier
        self.wait_timeout = wait_timeout

        self.methods: dict[
            WaalletRpcMethod, Callable[[list], Awaitable[Any]]
        ] = {
            WaalletRpcMethod.eth_accounts: self._handle_accounts,
            WaalletRpcMethod.eth_requestAccounts: self._handle_accounts,
            WaalletRpcMethod.eth_chainId: self._handle_chain_id,
            WaalletRpcMethod.eth_estimateGas: self._handle_estimate_gas,
            WaalletRpcMethod.eth_estimateUserOperationGas: (
                self._handle_estimate_user_operation_gas),
            WaalletRpcMethod.eth_sendTransaction: (
                self._handle_send_transaction),
            WaalletRpcMethod.eth_sendUserOperation: (
                self._handle_send_user_operation),
            WaalletRpcMethod.custom_estimateGasPrice: (
                self._handle_estimate_gas_price),
        }

    def clone(self, **overrides) -> "WaalletProvider":
        options = {
            "account_manager": self.account_manager,
            "network_manager": self.network_manager,
            "pool": self.pool,
            "authorizer": self.authorizer,
            "paymaster": self.paymaster,
            "gas_price_percentage_multiplier": (
                self.gas_price_percentage_multiplier),
            "wait_timeout": self.wait_timeout,
        }
        options.update(overrides)
        return WaalletProvider(**options)

    async def request(self, method: str, params: list | None = None) -> Any:
        if params is None:
            params = []
        logging.debug(f"request: {method} {params}")
        if method in WaalletRpcMethod._value2member_map_:
            return await self.methods[WaalletRpcMethod(method)](params)
        return await self._forward(method, params)

    async def _forward(self, method: str, params: list) -> Any:
        network = self.network_manager.get_active()
        if BundlerRpcMethod.has_method(method):
            return await network.bundler.send(method, params)
        return await network.node.send(method, params)

    async def _handle_accounts(self, params: list) -> list[Address]:
        _, account = self.account_manager.get_active()
        return [await account.get_address()]

    async def _handle_chain_id(self, params: list) -> str:
        network = self.network_manager.get_active()
        return hex(await network.bundler.get_chain_id())

    async def _handle_estimate_gas(self, params: list) -> str:
        transaction = _get_transaction(params)
        network = self.network_manager.get_active()
        _, account = self.account_manager.get_active()
        await _verify_from(transaction, account)
        entry_point = await account.get_entry_point()
        await _verify_entry_point(network.bundler, entry_point)

        user_operation = await self._build_user_operation(
            transaction, account)
        gas_limit = await self._gas_manager(network).estimate_gas_limit(
            user_operation, entry_point)
        return hex(gas_limit.call_gas_limit)

    async def _handle_estimate_user_operation_gas(
        self, params: list
    ) -> dict[str, str]:
        user_operation, entry_point = _get_user_operation_and_entry_point(
            params)
        network = self.network_manager.get_active()
        await _verify_entry_point(network.bundler, entry_point)

        estimation = await network.bundler.estimate_user_operation_gas(
            user_operation.data(), entry_point)
        return {
            name: hex(verify_and_get_uint(name, estimation.get(name) or 0))
            for name in [
                "preVerificationGas",
                "verificationGasLimit",
                "callGasLimit",
                "paymasterVerificationGasLimit",
            ]
        }

    async def _handle_estimate_gas_price(self, params: list) -> dict[str, str]:
        network = self.network_manager.get_active()
        gas_fee = await self._gas_manager(network).estimate_gas_fee()
        return {
            "maxFeePerGas": hex(gas_fee.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(gas_fee.max_priority_fee_per_gas),
        }

    async def _handle_send_transaction(self, params: list) -> TransactionHash:
        transaction = _get_transaction(params)
        network = self.network_manager.get_active()
        account_id, account = self.account_manager.get_active()
        await _verify_from(transaction, account)
        entry_point = await account.get_entry_point()
        await _verify_entry_point(network.bundler, entry_point)

        user_operation = await self._build_user_operation(transaction, account)
        gas_price = None
        if transaction.get("gasPrice") is not None:
            gas_price = verify_and_get_uint("gasPrice", transaction["gasPrice"])

        user_operation.set_paymaster_and_data(
            await self.paymaster.request_paymaster_and_data(
                user_operation, True))
        await self._gas_manager(network).estimate(
            user_operation, entry_point, gas_price)
        user_operation.set_paymaster_and_data(
            await self.paymaster.request_paymaster_and_data(user_operation))

        user_operation_id = self.pool.send(
            user_operation, account_id, network.id, entry_point)
        await self._authorize_and_submit(
            user_operation_id, user_operation, account, network, entry_point)
        return await self.pool.wait(user_operation_id, self.wait_timeout)

    async def _handle_send_user_operation(
        self, params: list
    ) -> UserOperationHash:
        user_operation, entry_point = _get_user_operation_and_entry_point(
            params)
        network = self.network_manager.get_active()
        account_id, account = self.account_manager.get_active()
        if not user_operation.is_sender(await account.get_address()):
            raise ValidationException(
                ValidationExceptionCode.AddressMismatch,
                "UserOperation sender doesn't match connected account",
            )
        await _verify_entry_point(network.bundler, entry_point)

        user_operation_id = self.pool.send(
            user_operation, account_id, network.id, entry_point)
        statement = await self._authorize_and_submit(
            user_operation_id, user_operation, account, network, entry_point)
        return statement.user_operation_hash

    async def _authorize_and_submit(
        self,
        user_operation_id: UserOperationId,
        user_operation: UserOperationV6,
        account: Account,
        network: Network,
        entry_point: Address,
    ) -> UserOperationStatement:
        try:
            callback = UserOperationAuthorizeCallback(
                account, entry_point, await network.bundler.get_chain_id())
            user_operation = await self.authorizer.authorize(
                user_operation, callback)
            return await self.pool.submit(
                user_operation_id, user_operation, network.bundler)
        except BaseException as excp:
            # the entry is in the pool already, waiters must not hang on it
            self.pool.reject_if_pending(user_operation_id, failure_reason(excp))
            raise

    async def _build_user_operation(
        self, transaction: dict[str, Any], account: Account
    ) -> UserOperationV6:
        data = transaction.get("data", transaction.get("input"))
        user_operation = await account.build_execution(
            to=verify_and_get_address("to", transaction["to"]),
            value=verify_and_get_uint("value", transaction.get("value", 0)),
            data=b"" if data is None else verify_and_get_bytes("data", data),
        )
        if transaction.get("gas") is not None:
            user_operation.set_call_gas_limit(transaction["gas"])
        return user_operation

    def _gas_manager(self, network: Network) -> GasManager:
        return GasManager(
            network.node,
            network.bundler,
            self.gas_price_percentage_multiplier,
        )


def _get_transaction(params: list) -> dict[str, Any]:
    if (
        not isinstance(params, list) or
        len(params) < 1 or
        not isinstance(params[0], dict)
    ):
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            "Invalid transaction parameters",
        )
    transaction = params[0]
    if not transaction.get("to"):
        raise ValidationException(
            ValidationExceptionCode.ContractCreationUnsupported,
            "Contract creation is not supported, transaction needs `to`",
        )
    return transaction


def _get_user_operation_and_entry_point(
    params: list,
) -> tuple[UserOperationV6, Address]:
    if not isinstance(params, list) or len(params) != 2:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            "Expected [UserOperation, EntryPoint] parameters",
        )
    user_operation = UserOperationV6.from_json(params[0])
    entry_point = verify_and_get_address("entryPoint", params[1])
    return user_operation, entry_point


async def _verify_from(transaction: dict[str, Any], account: Account) -> None:
    sender = transaction.get("from")
    if sender is None:
        return
    if not is_address_equal(sender, await account.get_address()):
        raise ValidationException(
            ValidationExceptionCode.AddressMismatch,
            "Address `from` doesn't match connected account",
        )


async def _verify_entry_point(
    bundler: BundlerClient, entry_point: Address
) -> None:
    if not await bundler.is_supported_entry_point(entry_point):
        raise ValidationException(
            ValidationExceptionCode.UnsupportedEntryPoint,
            f"Unsupported EntryPoint {entry_point}",
        )

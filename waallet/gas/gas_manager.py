import asyncio
import logging
from dataclasses import dataclass

from waallet.network.bundler import BundlerClient
from waallet.network.node import NodeClient
from waallet.typing import Address
from waallet.user_operation.user_operation import verify_and_get_uint
from waallet.user_operation.user_operation_v6 import UserOperationV6

DEFAULT_GAS_PRICE_PERCENTAGE_MULTIPLIER = 120


@dataclass
class GasFee:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


@dataclass
class GasLimit:
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    paymaster_verification_gas_limit: int = 0


class GasManager:
    node: NodeClient
    bundler: BundlerClient
    gas_price_percentage_multiplier: int

    def __init__(
        self,
        node: NodeClient,
        bundler: BundlerClient,
        gas_price_percentage_multiplier: int = (
            DEFAULT_GAS_PRICE_PERCENTAGE_MULTIPLIER),
    ):
        self.node = node
        self.bundler = bundler
        self.gas_price_percentage_multiplier = gas_price_percentage_multiplier

    async def estimate_gas_fee(self, gas_price: int | None = None) -> GasFee:
        """Fee fields for a new UserOperation.

        An explicit gas price is used as is for both fields. Otherwise the
        node's eth_gasPrice (base fee plus suggested tip) is bumped by the
        configured percentage to absorb base fee movement until inclusion.
        """
        if gas_price is None:
            node_gas_price = await self.node.get_gas_price()
            gas_price = (
                node_gas_price * self.gas_price_percentage_multiplier // 100)
        logging.debug(f"estimated gas price: {gas_price}")
        return GasFee(gas_price, gas_price)

    async def estimate_gas_limit(
        self, user_operation: UserOperationV6, entry_point: Address
    ) -> GasLimit:
        estimation = await self.bundler.estimate_user_operation_gas(
            user_operation.data(), entry_point)

        call_gas_limit = user_operation.call_gas_limit
        if call_gas_limit == 0:
            call_gas_limit = verify_and_get_uint(
                "callGasLimit", estimation["callGasLimit"])

        paymaster_verification_gas_limit = estimation.get(
            "paymasterVerificationGasLimit")
        return GasLimit(
            call_gas_limit=call_gas_limit,
            verification_gas_limit=verify_and_get_uint(
                "verificationGasLimit", estimation["verificationGasLimit"]),
            pre_verification_gas=verify_and_get_uint(
                "preVerificationGas", estimation["preVerificationGas"]),
            paymaster_verification_gas_limit=(
                0 if paymaster_verification_gas_limit is None
                else verify_and_get_uint(
                    "paymasterVerificationGasLimit",
                    paymaster_verification_gas_limit,
                )
            ),
        )

    async def estimate(
        self,
        user_operation: UserOperationV6,
        entry_point: Address,
        gas_price: int | None = None,
    ) -> UserOperationV6:
        gas_fee, gas_limit = await asyncio.gather(
            self.estimate_gas_fee(gas_price),
            self.estimate_gas_limit(user_operation, entry_point),
        )
        user_operation.set_gas_fee(
            gas_fee.max_fee_per_gas, gas_fee.max_priority_fee_per_gas)
        user_operation.set_gas_limit(
            gas_limit.call_gas_limit,
            gas_limit.verification_gas_limit,
            gas_limit.pre_verification_gas,
        )
        return user_operation

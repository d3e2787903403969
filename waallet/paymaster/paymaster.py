from abc import ABC, abstractmethod

from waallet.typing import Address
from waallet.user_operation.user_operation_v6 import UserOperationV6


class Paymaster(ABC):
    @abstractmethod
    async def request_paymaster_and_data(
        self, user_operation: UserOperationV6, is_gas_estimation: bool = False
    ) -> bytes:
        """paymasterAndData for the operation.

        Called once with ``is_gas_estimation=True`` before gas estimation,
        where a placeholder of the final size is enough, and once after it
        with the final gas values in place.
        """
        pass


class FeeQuotingPaymaster(Paymaster):
    @abstractmethod
    async def quote_fee(self, gas_cost: int, token: Address | None = None) -> int:
        """Amount of ``token`` charged for ``gas_cost`` wei."""
        pass

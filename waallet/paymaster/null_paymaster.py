from waallet.user_operation.user_operation_v6 import UserOperationV6
from .paymaster import Paymaster


class NullPaymaster(Paymaster):
    """The account pays its own gas."""

    async def request_paymaster_and_data(
        self, user_operation: UserOperationV6, is_gas_estimation: bool = False
    ) -> bytes:
        return b""

from waallet.exceptions import ValidationException, ValidationExceptionCode
from waallet.network.network_manager import NetworkManager
from waallet.storage.observable_store import ObservableStore, State
from .account import Account


class AccountManager:
    """Registry of the wallet accounts.

    Signing material stays in memory, the store only records which
    accounts exist and their type under ``state["account"]``.
    """

    def __init__(self, storage: ObservableStore, network_manager: NetworkManager):
        self.storage = storage
        self.network_manager = network_manager
        self.accounts: dict[str, Account] = {}

    def add(self, account_id: str, account: Account) -> None:
        self.accounts[account_id] = account

        def _add(state: State):
            state.setdefault("account", {})[account_id] = {
                "type": type(account).__name__,
            }

        self.storage.set(_add)

    def get(self, account_id: str) -> Account:
        if account_id not in self.accounts:
            raise ValidationException(
                ValidationExceptionCode.NoActiveAccount,
                f"Unknown account {account_id}",
            )
        return self.accounts[account_id]

    def get_active(self) -> tuple[str, Account]:
        network = self.network_manager.get_active()
        if network.account_active is None:
            raise ValidationException(
                ValidationExceptionCode.NoActiveAccount,
                f"No active account on network {network.id}",
            )
        return network.account_active, self.get(network.account_active)

from dataclasses import dataclass

from waallet.exceptions import ValidationException, ValidationExceptionCode
from waallet.storage.observable_store import ObservableStore
from .bundler import BundlerClient, BundlerMode
from .node import NodeClient


@dataclass
class Network:
    id: str
    chain_id: int
    node: NodeClient
    bundler: BundlerClient
    account_active: str | None


class NetworkManager:
    """Resolves networks stored under ``state["network"]`` into clients.

    Clients are cached per network id and rebuilt if the stored urls change.
    """

    def __init__(self, storage: ObservableStore):
        self.storage = storage
        self._clients: dict[str, tuple[str, str, NodeClient, BundlerClient]] = {}

    def get(self, network_id: str) -> Network:
        state = self.storage.get()
        if network_id not in state.get("network", {}):
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"Unknown network {network_id}",
            )
        network = state["network"][network_id]
        node, bundler = self._get_clients(network_id, network)
        return Network(
            id=network_id,
            chain_id=network["chainId"],
            node=node,
            bundler=bundler,
            account_active=network.get("accountActive"),
        )

    def get_active(self) -> Network:
        network_id = self.storage.get().get("networkActive")
        if network_id is None:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                "No available network",
            )
        return self.get(network_id)

    def _get_clients(
        self, network_id: str, network: dict
    ) -> tuple[NodeClient, BundlerClient]:
        node_rpc_url = network["nodeRpcUrl"]
        bundler_rpc_url = network["bundlerRpcUrl"]
        cached = self._clients.get(network_id)
        if (
            cached is not None and
            cached[0] == node_rpc_url and
            cached[1] == bundler_rpc_url
        ):
            return cached[2], cached[3]
        node = NodeClient(node_rpc_url)
        bundler = BundlerClient(
            bundler_rpc_url,
            BundlerMode(network.get("bundlerMode", BundlerMode.auto.value)),
        )
        self._clients[network_id] = (
            node_rpc_url, bundler_rpc_url, node, bundler)
        return node, bundler

    def set_clients(
        self, network_id: str, node: NodeClient, bundler: BundlerClient
    ) -> None:
        network = self.storage.get()["network"][network_id]
        self._clients[network_id] = (
            network["nodeRpcUrl"], network["bundlerRpcUrl"], node, bundler)

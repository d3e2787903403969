import asyncio
from typing import Any, Callable

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector

from waallet.account.account_manager import AccountManager
from waallet.account.simple_account import SimpleAccount
from waallet.authorizer.authorizer import AutoApproveAuthorizer
from waallet.exceptions import JsonRpcException
from waallet.network.network_manager import NetworkManager
from waallet.pool.receipt_poller import ReceiptPoller
from waallet.pool.user_operation_pool import UserOperationPool
from waallet.provider.waallet_provider import WaalletProvider
from waallet.storage.observable_store import ObservableStore
from waallet.user_operation.user_operation_v6 import UserOperationV6

CHAIN_ID = 1337
ENTRY_POINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
OWNER_PRIVATE_KEY = (
    "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80")
OWNER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ACCOUNT_ADDRESS = "0x1111111111111111111111111111111111111111"
RECIPIENT_ADDRESS = "0x2222222222222222222222222222222222222222"
GAS_PRICE = 1_000_000_000

GET_NONCE_SELECTOR = "0x" + function_signature_to_4byte_selector(
    "getNonce(address,uint192)").hex()
ENTRY_POINT_SELECTOR = "0x" + function_signature_to_4byte_selector(
    "entryPoint()").hex()


class FakeRpcServer:
    """In-process JSON-RPC endpoint answering from a method table."""

    def __init__(self):
        self.handlers: dict[str, Callable[[list], Any]] = {}
        self.calls: list[tuple[str, list]] = []
        # seconds to hold the answer back, per method
        self.delays: dict[str, float] = {}
        self.server: TestServer | None = None

    def on(self, method: str, handler: Callable[[list], Any]) -> None:
        self.handlers[method] = handler

    def called_methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    async def _handle(self, request: web.Request) -> web.Response:
        body = await request.json()
        method = body["method"]
        params = body.get("params", [])
        self.calls.append((method, params))
        response = {"jsonrpc": "2.0", "id": body.get("id")}
        handler = self.handlers.get(method)
        if handler is None:
            response["error"] = {"code": -32601, "message": "Method not found"}
            return web.json_response(response)
        try:
            response["result"] = handler(params)
        except JsonRpcException as excp:
            response["error"] = {"code": excp.code, "message": excp.message}
        if method in self.delays:
            await asyncio.sleep(self.delays[method])
        return web.json_response(response)

    async def start(self) -> None:
        app = web.Application()
        app.router.add_post("/", self._handle)
        self.server = TestServer(app)
        await self.server.start_server()

    @property
    def url(self) -> str:
        return str(self.server.make_url("/"))

    async def close(self) -> None:
        await self.server.close()


class FakeBundler(FakeRpcServer):
    """Bundler that accepts every operation and answers receipts from
    ``receipts`` (user operation hash -> receipt)."""

    def __init__(self):
        super().__init__()
        self.sent: list[dict] = []
        self.receipts: dict[str, dict] = {}
        self.default_receipt: dict | None = None
        self.on("eth_chainId", lambda params: hex(CHAIN_ID))
        self.on("eth_supportedEntryPoints", lambda params: [ENTRY_POINT])
        self.on(
            "eth_estimateUserOperationGas",
            lambda params: {
                "callGasLimit": "0x5208",
                "verificationGasLimit": "0x186a0",
                "preVerificationGas": "0xb5e0",
            },
        )
        self.on("eth_sendUserOperation", self._send_user_operation)
        self.on("eth_getUserOperationReceipt", self._get_receipt)
        self.on("debug_bundler_sendBundleNow", lambda params: "ok")

    def _send_user_operation(self, params: list) -> str:
        self.sent.append(params[0])
        return "0x" + format(len(self.sent), "064x")

    def _get_receipt(self, params: list) -> dict | None:
        if params[0] in self.receipts:
            return self.receipts[params[0]]
        if params[0] in self.sent_hashes():
            return self.default_receipt
        return None

    def sent_hashes(self) -> list[str]:
        return ["0x" + format(i + 1, "064x") for i in range(len(self.sent))]


class FakeNode(FakeRpcServer):
    def __init__(self, nonce: int = 0):
        super().__init__()
        self.nonce = nonce
        self.on("eth_chainId", lambda params: hex(CHAIN_ID))
        self.on("eth_gasPrice", lambda params: hex(GAS_PRICE))
        self.on("eth_getCode", lambda params: "0x6080604052")
        self.on("eth_blockNumber", lambda params: "0x64")
        self.on("eth_call", self._call)

    def _call(self, params: list) -> str:
        data = params[0]["data"]
        if data.startswith(GET_NONCE_SELECTOR):
            return "0x" + encode(["uint256"], [self.nonce]).hex()
        if data.startswith(ENTRY_POINT_SELECTOR):
            return "0x" + encode(["address"], [ENTRY_POINT]).hex()
        raise JsonRpcException(-32000, "execution reverted")


def success_receipt(transaction_hash: str = "0xabc", block_number: int = 100):
    return {
        "success": True,
        "transactionHash": transaction_hash,
        "blockNumber": block_number,
    }


def failed_receipt(reason: str, transaction_hash: str = "0xdef"):
    return {
        "success": False,
        "reason": reason,
        "receipt": {
            "transactionHash": transaction_hash,
            "blockHash": "0x" + "bb" * 32,
            "blockNumber": "0x65",
        },
    }


def make_user_operation(**overrides) -> UserOperationV6:
    fields = {
        "sender": ACCOUNT_ADDRESS,
        "nonce": 0,
        "call_data": b"\x12\x34",
    }
    fields.update(overrides)
    return UserOperationV6(**fields)


def make_state(node_url: str, bundler_url: str, bundler_mode: str = "auto"):
    return {
        "networkActive": "local",
        "network": {
            "local": {
                "chainId": CHAIN_ID,
                "nodeRpcUrl": node_url,
                "bundlerRpcUrl": bundler_url,
                "bundlerMode": bundler_mode,
                "accountActive": "owner",
            }
        },
        "account": {},
        "paymaster": {},
        "userOpPool": {},
    }


class Wallet:
    def __init__(
        self,
        node: FakeNode,
        bundler: FakeBundler,
        bundler_mode: str = "auto",
    ):
        self.node_server = node
        self.bundler_server = bundler
        self.storage = ObservableStore(
            make_state(node.url, bundler.url, bundler_mode))
        self.network_manager = NetworkManager(self.storage)
        network = self.network_manager.get_active()
        self.account = SimpleAccount(
            network.node, OWNER_PRIVATE_KEY, address=ACCOUNT_ADDRESS)
        self.account_manager = AccountManager(
            self.storage, self.network_manager)
        self.account_manager.add("owner", self.account)
        self.pool = UserOperationPool(self.storage)
        self.provider = WaalletProvider(
            self.account_manager,
            self.network_manager,
            self.pool,
            AutoApproveAuthorizer(),
        )
        self.poller = ReceiptPoller(
            self.pool, self.network_manager, poll_interval=0.05)
        self.network_manager.get_active().bundler.poll_interval = 0.05

    async def request_with_poller(self, provider, method, params, timeout=10):
        poller_task = asyncio.create_task(self.poller.start())
        try:
            return await asyncio.wait_for(
                provider.request(method, params), timeout)
        finally:
            poller_task.cancel()


@pytest_asyncio.fixture
async def node_server():
    server = FakeNode()
    await server.start()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def bundler_server():
    server = FakeBundler()
    await server.start()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def wallet(node_server, bundler_server):
    return Wallet(node_server, bundler_server)


@pytest.fixture
def user_operation() -> UserOperationV6:
    return make_user_operation()

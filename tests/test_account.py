import pytest
from eth_abi import decode, encode
from eth_utils import to_checksum_address

from conftest import (
    ACCOUNT_ADDRESS,
    ENTRY_POINT,
    OWNER_ADDRESS,
    OWNER_PRIVATE_KEY,
    RECIPIENT_ADDRESS,
)
from waallet.account.account import (
    ENTRY_POINT_SELECTOR,
    EXECUTE_SELECTOR,
    GET_NONCE_SELECTOR,
)
from waallet.account.account_manager import AccountManager
from waallet.account.passkey_account import (
    GET_ADDRESS_SELECTOR as PASSKEY_GET_ADDRESS_SELECTOR,
    PasskeyAccount,
    PasskeyOwner,
)
from waallet.account.simple_account import (
    ACCOUNT_IMPLEMENTATION_SELECTOR,
    CREATE_ACCOUNT_SELECTOR,
    GET_ADDRESS_SELECTOR,
    SimpleAccount,
)
from waallet.exceptions import ValidationException, ValidationExceptionCode
from waallet.network.network_manager import NetworkManager
from waallet.storage.observable_store import ObservableStore

FACTORY_ADDRESS = "0x4444444444444444444444444444444444444444"
IMPLEMENTATION_ADDRESS = "0x5555555555555555555555555555555555555555"


def encoded_address(address):
    return "0x" + encode(["address"], [address]).hex()


class StubNode:
    def __init__(self, deployed=True, nonce=3):
        self.deployed = deployed
        self.nonce = nonce
        self.calls = []

    async def is_contract_deployed(self, address):
        return self.deployed

    async def call(self, to, data, block="latest"):
        self.calls.append((to, data))
        selector = bytes.fromhex(data[2:10])
        if selector == GET_NONCE_SELECTOR:
            return "0x" + encode(["uint256"], [self.nonce]).hex()
        if selector == GET_ADDRESS_SELECTOR:
            return encoded_address(ACCOUNT_ADDRESS)
        if selector == ACCOUNT_IMPLEMENTATION_SELECTOR:
            return encoded_address(IMPLEMENTATION_ADDRESS)
        return encoded_address(ENTRY_POINT)


@pytest.mark.asyncio
async def test_build_execution_for_deployed_account():
    node = StubNode()
    account = SimpleAccount(node, OWNER_PRIVATE_KEY, address=ACCOUNT_ADDRESS)

    user_operation = await account.build_execution(
        RECIPIENT_ADDRESS, 5, b"\xde\xad")

    assert user_operation.sender == ACCOUNT_ADDRESS
    assert user_operation.nonce == 3
    assert user_operation.init_code == b""
    assert user_operation.call_data[:4] == EXECUTE_SELECTOR
    to, value, data = decode(
        ["address", "uint256", "bytes"], user_operation.call_data[4:])
    assert to_checksum_address(to) == RECIPIENT_ADDRESS
    assert value == 5
    assert data == b"\xde\xad"
    nonce_calls = [
        to for to, data in node.calls
        if data.startswith("0x" + GET_NONCE_SELECTOR.hex())
    ]
    assert nonce_calls == [ENTRY_POINT]


@pytest.mark.asyncio
async def test_build_execution_with_explicit_nonce():
    node = StubNode()
    account = SimpleAccount(
        node, OWNER_PRIVATE_KEY, address=ACCOUNT_ADDRESS, entry_point=ENTRY_POINT)
    user_operation = await account.build_execution(RECIPIENT_ADDRESS, nonce=9)
    assert user_operation.nonce == 9
    assert node.calls == []


@pytest.mark.asyncio
async def test_build_execution_rejects_bad_target():
    account = SimpleAccount(
        StubNode(), OWNER_PRIVATE_KEY, address=ACCOUNT_ADDRESS)
    with pytest.raises(ValidationException):
        await account.build_execution("0x1234")


@pytest.mark.asyncio
async def test_undeployed_account_uses_factory():
    node = StubNode(deployed=False)
    account = SimpleAccount(
        node, OWNER_PRIVATE_KEY, factory_address=FACTORY_ADDRESS, salt=7)

    assert await account.get_address() == to_checksum_address(ACCOUNT_ADDRESS)
    assert await account.get_entry_point() == ENTRY_POINT
    init_code = await account.get_init_code()

    assert init_code[:20] == bytes.fromhex(FACTORY_ADDRESS[2:])
    assert init_code[20:24] == CREATE_ACCOUNT_SELECTOR
    owner, salt = decode(["address", "uint256"], init_code[24:])
    assert to_checksum_address(owner) == OWNER_ADDRESS
    assert salt == 7
    # entry point is read from the implementation behind the factory
    assert (
        IMPLEMENTATION_ADDRESS, "0x" + ENTRY_POINT_SELECTOR.hex()
    ) in node.calls


def test_account_needs_address_or_factory():
    with pytest.raises(ValidationException):
        SimpleAccount(StubNode(), OWNER_PRIVATE_KEY)


def test_account_manager_records_accounts():
    storage = ObservableStore({
        "networkActive": "local",
        "network": {
            "local": {
                "chainId": 1337,
                "nodeRpcUrl": "http://node",
                "bundlerRpcUrl": "http://bundler",
                "accountActive": "owner",
            }
        },
    })
    account_manager = AccountManager(storage, NetworkManager(storage))
    account = SimpleAccount(StubNode(), OWNER_PRIVATE_KEY, address=ACCOUNT_ADDRESS)

    with pytest.raises(ValidationException) as excinfo:
        account_manager.get_active()
    assert excinfo.value.exception_code == ValidationExceptionCode.NoActiveAccount

    account_manager.add("owner", account)
    assert account_manager.get_active() == ("owner", account)
    assert storage.get()["account"] == {"owner": {"type": "SimpleAccount"}}


class StubPasskeyOwner(PasskeyOwner):
    def __init__(self):
        self.credential_id = None
        self.challenges = []

    def use(self, credential_id):
        self.credential_id = credential_id

    async def sign(self, challenge, metadata=None):
        self.challenges.append((challenge, metadata))
        return b"\x02" * 64


class StubPasskeyFactoryNode(StubNode):
    async def call(self, to, data, block="latest"):
        if bytes.fromhex(data[2:10]) == PASSKEY_GET_ADDRESS_SELECTOR:
            self.calls.append((to, data))
            return encoded_address(ACCOUNT_ADDRESS)
        return await super().call(to, data, block)


@pytest.mark.asyncio
async def test_passkey_account_signs_with_credential():
    owner = StubPasskeyOwner()
    account = PasskeyAccount(
        StubNode(), owner, "credential-1", (1, 2), address=ACCOUNT_ADDRESS)
    user_operation_hash = "0x" + "ab" * 32

    signature = await account.sign(user_operation_hash, {"origin": "wallet"})

    assert signature == b"\x02" * 64
    assert owner.credential_id == "credential-1"
    assert owner.challenges == [(b"\xab" * 32, {"origin": "wallet"})]


@pytest.mark.asyncio
async def test_undeployed_passkey_account_uses_factory():
    node = StubPasskeyFactoryNode(deployed=False)
    account = PasskeyAccount(
        node,
        StubPasskeyOwner(),
        "credential-1",
        (11, 22),
        factory_address=FACTORY_ADDRESS,
        salt=3,
        entry_point=ENTRY_POINT,
    )

    assert await account.get_address() == to_checksum_address(ACCOUNT_ADDRESS)
    init_code = await account.get_init_code()

    assert init_code[:20] == bytes.fromhex(FACTORY_ADDRESS[2:])
    assert decode(
        ["string", "uint256", "uint256", "uint256"], init_code[24:]
    ) == ("credential-1", 11, 22, 3)


def test_passkey_account_needs_address_or_factory():
    with pytest.raises(ValidationException):
        PasskeyAccount(StubNode(), StubPasskeyOwner(), "credential-1", (1, 2))

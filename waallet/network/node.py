from waallet.typing import Address
from waallet.utils.eth_client_utils import JsonRpcClient


class NodeClient(JsonRpcClient):
    async def get_chain_id(self) -> int:
        return int(await self.send("eth_chainId", []), 16)

    async def get_gas_price(self) -> int:
        return int(await self.send("eth_gasPrice", []), 16)

    async def get_code(self, address: Address, block: str = "latest") -> str:
        return await self.send("eth_getCode", [address, block])

    async def is_contract_deployed(self, address: Address) -> bool:
        code = await self.get_code(address)
        return code is not None and code not in ("0x", "0x0")

    async def call(
        self, to: Address, data: str, block: str = "latest"
    ) -> str:
        return await self.send("eth_call", [{"to": to, "data": data}, block])

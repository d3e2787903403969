import logging

from waallet.network.network_manager import Network
from waallet.utils.eth_client_utils import send_rpc_request_to_eth_client


async def check_network_health(network: Network) -> tuple[bool, dict]:
    target_chain_id_hex = hex(network.chain_id)
    all_ok = True
    results = dict()
    for name, url in [
        ("node", network.node.url),
        ("bundler", network.bundler.url),
    ]:
        success, message = await check_live_ethereum_rpc(
                url, target_chain_id_hex)

        if success:
            results[name] = {"status": "OK", "message": message}
        else:
            logging.critical(message)
            all_ok = False
            results[name] = {"status": "ERROR", "message": message}

    return all_ok, results


async def check_live_ethereum_rpc(
    rpc_url: str, target_chain_id_hex: str
) -> tuple[bool, str]:
    try:
        chain_id_hex = await send_rpc_request_to_eth_client(
            rpc_url,
            "eth_chainId",
            [],
            retry_attempts=1,
        )
        if "result" not in chain_id_hex:
            return False, f"Invalid rpc endpoint {rpc_url}"
        else:
            if int(chain_id_hex["result"], 16) == int(target_chain_id_hex, 16):
                return True, "eth_chainId successful"
            else:
                return False, (
                    f"Invalid chain id {chain_id_hex['result']} returned by " +
                    f"{rpc_url}"
                )

    except ConnectionError:
        return False, f"Connection refused for rpc endpoint {rpc_url}"
    except Exception:
        return False, f"Error when connecting to rpc endpoint {rpc_url}"

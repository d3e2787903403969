import os
from enum import Enum
import logging
import re
import sys
from argparse import ArgumentParser, Namespace, ArgumentTypeError
from dataclasses import dataclass
from importlib.metadata import version

from waallet.network.bundler import BundlerMode
from waallet.utils.eth_client_utils import send_rpc_request_to_eth_client
from waallet.utils.signer import address_from_private_key

from .typing import Address

WAALLET_HEADER = "\n".join(
    (
        r" _      __              ____     __ ",
        r"| | /| / /__ ____ _____/ / /__  / /_",
        r"| |/ |/ / _ `/ _ `/ _ `/ / / -_)/ __/",
        r"|__/|__/\_,_/\_,_/\_,_/_/_/\__/ \__/ ",
    )
)
__version__ = version("waallet")


class AuthorizerType(Enum):
    auto = "auto"
    pending = "pending"

    def __str__(self):
        return self.value


@dataclass()
class InitData:
    rpc_url: str
    rpc_port: int
    rpc_cors_domain: str
    node_rpc_url: str
    bundler_rpc_url: str
    bundler_mode: BundlerMode
    chain_id: int
    owner_pk: str
    owner_address: Address
    account_address: Address | None
    factory_address: Address | None
    salt: int
    entry_point: Address | None
    authorizer: AuthorizerType
    authorization_timeout: int
    paymaster_address: Address | None
    paymaster_pk: str | None
    paymaster_expiration_secs: int
    gas_price_percentage_multiplier: int
    receipt_poll_interval: float
    state_file: str | None
    sync_webhook_url: str | None
    is_metrics: bool
    metrics_port: int


def address(ep: str):
    address_pattern = "^0x[0-9,a-f,A-F]{40}$"
    if not isinstance(ep, str) or re.match(address_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong address format : {ep}")
    return ep


def unsigned_int(value):
    ivalue = int(value)
    if ivalue < 0:
        raise ArgumentTypeError(
                "%s is an invalid unsigned int value" % value)
    return ivalue


def positive_float(value):
    fvalue = float(value)
    if fvalue <= 0:
        raise ArgumentTypeError(
                "%s is an invalid positive value" % value)
    return fvalue


def _get_env_or_default(env_var, default, value_type):
    """
    Helper function to get the value from an environment variable or return the default value.
    """
    value = os.getenv(env_var, None)
    if value is not None:
        if value_type == bool:
            return value.lower() in ("1", "true", "yes")
        return value_type(value)
    return default


def initialize_argument_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="Waallet",
        description="ERC-4337 python wallet backend",
    )

    parser.add_argument(
        "--rpc_url",
        type=str,
        help="RPC serve url - defaults to localhost",
        nargs="?",
        const="127.0.0.1",
        default=_get_env_or_default("WAALLET_RPC_URL", "127.0.0.1", str),
    )

    parser.add_argument(
        "--rpc_cors_domain",
        type=str,
        help="rpc cors allowed domain - defaults to *",
        nargs="?",
        const="*",
        default=_get_env_or_default("WAALLET_RPC_CORS_DOMAIN", "*", str),
    )

    parser.add_argument(
        "--rpc_port",
        type=unsigned_int,
        help="RPC serve port - defaults to 3001",
        nargs="?",
        const=3001,
        default=_get_env_or_default("WAALLET_RPC_PORT", 3001, unsigned_int),
    )

    parser.add_argument(
        "--node_rpc_url",
        type=str,
        help="Ethereum node Http Url - defaults to http://0.0.0.0:8545",
        nargs="?",
        const="http://0.0.0.0:8545",
        default=_get_env_or_default(
            "WAALLET_NODE_RPC_URL", "http://0.0.0.0:8545", str),
    )

    parser.add_argument(
        "--bundler_rpc_url",
        type=str,
        help="ERC-4337 bundler Http Url - defaults to http://0.0.0.0:3000/rpc",
        nargs="?",
        const="http://0.0.0.0:3000/rpc",
        default=_get_env_or_default(
            "WAALLET_BUNDLER_RPC_URL", "http://0.0.0.0:3000/rpc", str),
    )

    parser.add_argument(
        "--bundler_mode",
        type=BundlerMode,
        help=(
            "auto: the bundler bundles on its own, "
            "manual: the wallet asks for a bundle with "
            "debug_bundler_sendBundleNow - defaults to auto"
        ),
        choices=list(BundlerMode),
        nargs="?",
        const=BundlerMode.auto,
        default=_get_env_or_default(
            "WAALLET_BUNDLER_MODE", BundlerMode.auto, BundlerMode),
    )

    parser.add_argument(
        "--chain_id",
        type=unsigned_int,
        help="chain id - defaults to 1337",
        nargs="?",
        const=1337,
        default=_get_env_or_default("WAALLET_CHAIN_ID", 1337, unsigned_int),
    )

    parser.add_argument(
        "--owner_secret",
        type=str,
        help="Private key of the SimpleAccount owner",
        nargs="?",
        default=_get_env_or_default("WAALLET_OWNER_SECRET", None, str),
    )

    parser.add_argument(
        "--account_address",
        type=address,
        help="Address of an already deployed SimpleAccount",
        nargs="?",
        default=_get_env_or_default("WAALLET_ACCOUNT_ADDRESS", None, address),
    )

    parser.add_argument(
        "--factory_address",
        type=address,
        help="SimpleAccountFactory address used to deploy the account",
        nargs="?",
        default=_get_env_or_default("WAALLET_FACTORY_ADDRESS", None, address),
    )

    parser.add_argument(
        "--salt",
        type=unsigned_int,
        help="SimpleAccountFactory salt - defaults to 0",
        nargs="?",
        const=0,
        default=_get_env_or_default("WAALLET_SALT", 0, unsigned_int),
    )

    parser.add_argument(
        "--entry_point",
        type=address,
        help="EntryPoint address - defaults to the one the account reports",
        nargs="?",
        default=_get_env_or_default("WAALLET_ENTRY_POINT", None, address),
    )

    parser.add_argument(
        "--authorizer",
        type=AuthorizerType,
        help=(
            "auto: sign every UserOperation, "
            "pending: wait for waallet_approveUserOperation - defaults to pending"
        ),
        choices=list(AuthorizerType),
        nargs="?",
        const=AuthorizerType.pending,
        default=_get_env_or_default(
            "WAALLET_AUTHORIZER", AuthorizerType.pending, AuthorizerType),
    )

    parser.add_argument(
        "--authorization_timeout",
        type=unsigned_int,
        help="Seconds to wait for a user decision - defaults to 300",
        nargs="?",
        const=300,
        default=_get_env_or_default(
            "WAALLET_AUTHORIZATION_TIMEOUT", 300, unsigned_int),
    )

    parser.add_argument(
        "--paymaster_address",
        type=address,
        help="VerifyingPaymaster address - no paymaster if not set",
        nargs="?",
        default=_get_env_or_default("WAALLET_PAYMASTER_ADDRESS", None, address),
    )

    parser.add_argument(
        "--paymaster_secret",
        type=str,
        help="VerifyingPaymaster signer private key",
        nargs="?",
        default=_get_env_or_default("WAALLET_PAYMASTER_SECRET", None, str),
    )

    parser.add_argument(
        "--paymaster_expiration_secs",
        type=unsigned_int,
        help="VerifyingPaymaster signature validity - defaults to 300",
        nargs="?",
        const=300,
        default=_get_env_or_default(
            "WAALLET_PAYMASTER_EXPIRATION_SECS", 300, unsigned_int),
    )

    parser.add_argument(
        "--gas_price_percentage_multiplier",
        type=unsigned_int,
        help="modify the node gas price by a percentage - defaults to 120",
        nargs="?",
        const=120,
        default=_get_env_or_default(
            "WAALLET_GAS_PRICE_PERCENTAGE_MULTIPLIER", 120, unsigned_int),
    )

    parser.add_argument(
        "--receipt_poll_interval",
        type=positive_float,
        help="Seconds between receipt queries - defaults to 1.5",
        nargs="?",
        const=1.5,
        default=_get_env_or_default(
            "WAALLET_RECEIPT_POLL_INTERVAL", 1.5, positive_float),
    )

    parser.add_argument(
        "--state_file",
        type=str,
        help="Json file the wallet state is loaded from and saved to",
        nargs="?",
        default=_get_env_or_default("WAALLET_STATE_FILE", None, str),
    )

    parser.add_argument(
        "--sync_webhook_url",
        type=str,
        help="Url every state update is posted to",
        nargs="?",
        default=_get_env_or_default("WAALLET_SYNC_WEBHOOK_URL", None, str),
    )

    parser.add_argument(
        "--metrics",
        help="Expose prometheus metrics",
        nargs="?",
        const=True,
        default=_get_env_or_default("WAALLET_METRICS", False, bool),
    )

    parser.add_argument(
        "--metrics_port",
        type=unsigned_int,
        help="Metrics serve port - defaults to 8000",
        nargs="?",
        const=8000,
        default=_get_env_or_default("WAALLET_METRICS_PORT", 8000, unsigned_int),
    )

    parser.add_argument(
        "--verbose",
        help="show debug log",
        nargs="?",
        const=True,
        default=_get_env_or_default("WAALLET_VERBOSE", False, bool),
    )

    return parser


async def parse_args(cmd_args: list[str]) -> InitData:
    argument_parser: ArgumentParser = initialize_argument_parser()
    args = argument_parser.parse_args(cmd_args)
    if not args.owner_secret:
        argument_parser.error(
            "You must specify --owner_secret or set WAALLET_OWNER_SECRET")
    if not args.account_address and not args.factory_address:
        argument_parser.error(
            "You must specify either --account_address or --factory_address")
    if bool(args.paymaster_address) != bool(args.paymaster_secret):
        argument_parser.error(
            "--paymaster_address and --paymaster_secret must be set together")
    init_data = await get_init_data(args)
    return init_data


def init_logging(args: Namespace):
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(message)s",
        datefmt="%b %d %H:%M:%S",
    )


async def check_valid_rpc_and_get_chain_id(rpc_url: str) -> int:
    try:
        chain_id_hex = await send_rpc_request_to_eth_client(
            rpc_url,
            "eth_chainId",
            [],
        )
    except ConnectionError:
        logging.critical(f"Connection refused for rpc endpoint {rpc_url}")
        sys.exit(1)
    if "result" not in chain_id_hex:
        logging.critical(f"Invalid rpc endpoint {rpc_url}")
        sys.exit(1)
    return int(chain_id_hex["result"], 16)


async def get_init_data(args: Namespace) -> InitData:
    init_logging(args)

    for rpc_url in [args.node_rpc_url, args.bundler_rpc_url]:
        chain_id = await check_valid_rpc_and_get_chain_id(rpc_url)
        if chain_id != args.chain_id:
            logging.critical(
                f"Invalid chain id {args.chain_id} with rpc endpoint {rpc_url}"
                f" reporting {chain_id}"
            )
            sys.exit(1)

    if args.verbose:
        print(WAALLET_HEADER)
        print("version : " + __version__)

    logging.info("Starting *** Waallet *** - Python 4337 wallet")

    return InitData(
        rpc_url=args.rpc_url,
        rpc_port=args.rpc_port,
        rpc_cors_domain=args.rpc_cors_domain,
        node_rpc_url=args.node_rpc_url,
        bundler_rpc_url=args.bundler_rpc_url,
        bundler_mode=args.bundler_mode,
        chain_id=args.chain_id,
        owner_pk=args.owner_secret,
        owner_address=address_from_private_key(args.owner_secret),
        account_address=args.account_address,
        factory_address=args.factory_address,
        salt=args.salt,
        entry_point=args.entry_point,
        authorizer=args.authorizer,
        authorization_timeout=args.authorization_timeout,
        paymaster_address=args.paymaster_address,
        paymaster_pk=args.paymaster_secret,
        paymaster_expiration_secs=args.paymaster_expiration_secs,
        gas_price_percentage_multiplier=args.gas_price_percentage_multiplier,
        receipt_poll_interval=args.receipt_poll_interval,
        state_file=args.state_file,
        sync_webhook_url=args.sync_webhook_url,
        is_metrics=bool(args.metrics),
        metrics_port=args.metrics_port,
    )

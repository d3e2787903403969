import asyncio
import logging
import sys
from functools import partial
from signal import SIGINT, SIGTERM

import uvloop

from waallet.account.account_manager import AccountManager
from waallet.account.simple_account import SimpleAccount
from waallet.authorizer.authorizer import AutoApproveAuthorizer
from waallet.authorizer.pending_authorizer import PendingUserOperationAuthorizer
from waallet.metrics.metrics import attach_pool_metrics, run_metrics_server
from waallet.network.network_manager import NetworkManager
from waallet.paymaster.null_paymaster import NullPaymaster
from waallet.paymaster.verifying_paymaster import VerifyingPaymaster
from waallet.pool.receipt_poller import ReceiptPoller
from waallet.pool.user_operation_pool import UserOperationPool
from waallet.provider.waallet_provider import WaalletProvider
from waallet.storage.observable_store import ObservableStore, State
from waallet.storage.sync import attach_sync, load_state
from waallet.utils.SignalHaltError import immediate_exit

from .cli_manager import AuthorizerType, InitData, parse_args
from .rpc.rpc_http_server import run_rpc_http_server

DEFAULT_NETWORK_ID = "default"
DEFAULT_ACCOUNT_ID = "default"
RESTART_REJECTION_REASON = "Wallet restarted before the UserOperation was sent"


def initial_state() -> State:
    return {
        "networkActive": DEFAULT_NETWORK_ID,
        "network": {},
        "account": {},
        "paymaster": {},
        "userOpPool": {},
    }


def init_storage(init_data: InitData) -> ObservableStore:
    state = initial_state()
    if init_data.state_file is not None:
        state = load_state(init_data.state_file, state)
    storage = ObservableStore(state)
    attach_sync(storage, init_data.state_file, init_data.sync_webhook_url)

    def _configure(state: State):
        state["networkActive"] = DEFAULT_NETWORK_ID
        state["network"][DEFAULT_NETWORK_ID] = {
            "chainId": init_data.chain_id,
            "nodeRpcUrl": init_data.node_rpc_url,
            "bundlerRpcUrl": init_data.bundler_rpc_url,
            "bundlerMode": init_data.bundler_mode.value,
            "accountActive": DEFAULT_ACCOUNT_ID,
        }
        if init_data.paymaster_address is not None:
            state["paymaster"][DEFAULT_NETWORK_ID] = {
                "type": VerifyingPaymaster.__name__,
                "address": init_data.paymaster_address,
            }

    storage.set(_configure)
    return storage


async def main(cmd_args=sys.argv[1:], loop=None) -> None:
    init_data = await parse_args(cmd_args)
    if loop is None:
        loop = asyncio.get_running_loop()

    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())

    storage = init_storage(init_data)
    network_manager = NetworkManager(storage)
    network = network_manager.get_active()

    account_manager = AccountManager(storage, network_manager)
    account_manager.add(
        DEFAULT_ACCOUNT_ID,
        SimpleAccount(
            network.node,
            init_data.owner_pk,
            address=init_data.account_address,
            factory_address=init_data.factory_address,
            salt=init_data.salt,
            entry_point=init_data.entry_point,
        ),
    )

    if init_data.authorizer == AuthorizerType.auto:
        authorizer = AutoApproveAuthorizer()
    else:
        authorizer = PendingUserOperationAuthorizer(
            init_data.authorization_timeout)

    if init_data.paymaster_address is not None:
        paymaster = VerifyingPaymaster(
            init_data.paymaster_address,
            init_data.paymaster_pk,
            init_data.chain_id,
            init_data.paymaster_expiration_secs,
        )
    else:
        paymaster = NullPaymaster()

    pool = UserOperationPool(storage)
    # parked authorizations are lost with the previous process
    stale = pool.reject_all_pending(RESTART_REJECTION_REASON)
    if stale:
        logging.info(f"Rejected {len(stale)} UserOperations left Pending")
    provider = WaalletProvider(
        account_manager,
        network_manager,
        pool,
        authorizer,
        paymaster,
        init_data.gas_price_percentage_multiplier,
    )
    receipt_poller = ReceiptPoller(
        pool, network_manager, init_data.receipt_poll_interval)

    on_exit = [storage.close]
    if isinstance(authorizer, PendingUserOperationAuthorizer):
        on_exit.insert(0, authorizer.close)

    async with asyncio.TaskGroup() as task_group:
        poller_task = task_group.create_task(receipt_poller.start())

        for signal_enum in [SIGINT, SIGTERM]:
            exit_func = partial(
                immediate_exit,
                signal_enum=signal_enum,
                loop=loop,
                tasks=[poller_task],
                on_exit=on_exit,
            )
            loop.add_signal_handler(signal_enum, exit_func)

        task_group.create_task(
            run_rpc_http_server(
                provider,
                pool,
                authorizer,
                host=init_data.rpc_url,
                rpc_cors_domain=init_data.rpc_cors_domain,
                port=init_data.rpc_port,
            )
        )
        if init_data.is_metrics:
            attach_pool_metrics(storage)
            run_metrics_server(
                host=init_data.rpc_url,
                port=init_data.metrics_port,
            )

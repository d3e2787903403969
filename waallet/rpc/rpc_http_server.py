from dataclasses import dataclass
from functools import partial
import inspect
import logging
import json
from typing import Any, Callable
from contextvars import ContextVar

import aiohttp_cors
from aiohttp import web
from aiohttp.abc import AbstractAccessLogger
from prometheus_client import Summary

from waallet.authorizer.authorizer import UserOperationAuthorizer
from waallet.authorizer.pending_authorizer import PendingUserOperationAuthorizer
from waallet.exceptions import (
    AuthorizationException,
    ExecutionException,
    JsonRpcException,
    OtherJsonRpcErrorCode,
    PoolException,
    ValidationException,
)
from waallet.network.network_manager import NetworkManager
from waallet.pool.models import UserOperationStatus
from waallet.pool.user_operation_pool import UserOperationPool
from waallet.provider.waallet_provider import WaalletProvider, WaalletRpcMethod
from waallet.rpc.health import check_network_health
from waallet.rpc.jsonrpc import (
    RPCFault,
    RpcErrorCode,
    error_response,
    load_json_rpc_request,
    result_response,
)

RESPONSE_LOG = ContextVar('RESPONSE_LOG', default=dict())


class AccessLogger(AbstractAccessLogger):
    def log(self, request, response, time):
        if time >= 1:
            time_str = f"{round(time, 3)}s"
        elif time >= 0.001:
            time_str = f"{round(time*1000, 3)}ms"
        else:
            time_str = f"{round(time*1000_000, 3)}μs"

        log_obj = RESPONSE_LOG.get()

        referer = request.headers.get('Referer')
        agent = request.headers.get('User-Agent')
        base_log = (
            f'{request.remote} '
            f'"{request.method} {request.path}" '
            f'done in {time_str}: {response.status} '
            f'"{referer}" "{agent}" '
        )
        if "is_error" in log_obj:
            method = log_obj["method"]
            id = log_obj["id"]
            if log_obj["is_error"]:
                self.logger.warning(
                    base_log +
                    f"{method} RPC served - reqId:{id} - "
                    f"error code:{log_obj['error_code']} - "
                    f"error message:{log_obj['error_message']}"
                )
            else:
                self.logger.info(
                    base_log +
                    f"{method} RPC served - reqId:{id}"
                )
        else:
            self.logger.info(base_log)


@dataclass
class Success:
    payload: Any


@dataclass
class Error:
    error_code: int
    error_message: str


REQUEST_TIME: dict[str, Summary] = {
    rpc_method.value: Summary(
        f"request_processing_seconds_{rpc_method.value}",
        f"Time spent processing request {rpc_method.value}",
    )
    for rpc_method in WaalletRpcMethod
}
REQUEST_TIME_forwarded = Summary(
    "request_processing_seconds_forwarded",
    "Time spent processing requests forwarded to the node or the bundler",
)


async def _handle_rpc_request(handler: Callable, *args) -> Success | Error:
    try:
        return Success(await handler(*args))
    except (
        ValidationException,
        AuthorizationException,
        ExecutionException,
        PoolException,
    ) as excp:
        return Error(excp.exception_code.value, str(excp.message))
    except JsonRpcException as excp:
        return Error(excp.code, excp.message)
    except RPCFault:
        raise
    except Exception as excp:
        logging.exception(f"Unexpected error while serving request: {excp}")
        return Error(OtherJsonRpcErrorCode.InternalError.value, "Internal error")


def build_methods(
    pool: UserOperationPool,
    authorizer: UserOperationAuthorizer,
) -> dict[str, Callable]:
    """Wallet specific methods served next to the provider.

    The authorization side channel is only exposed when operations wait
    for a user decision.
    """

    async def waallet_getUserOperationStatement(user_operation_id: str):
        return pool.get(user_operation_id).to_json()

    async def waallet_getUserOperationPool(status: str | None = None):
        try:
            user_operation_status = (
                None if status is None else UserOperationStatus(status))
        except ValueError:
            raise RPCFault(
                RpcErrorCode.InvalidParams, f"Unknown status {status}")
        return [
            statement.to_json()
            for statement in pool.list(user_operation_status)
        ]

    methods: dict[str, Callable] = {
        "waallet_getUserOperationStatement": waallet_getUserOperationStatement,
        "waallet_getUserOperationPool": waallet_getUserOperationPool,
    }

    if isinstance(authorizer, PendingUserOperationAuthorizer):
        async def waallet_getPendingAuthorizations():
            return [request.to_json() for request in authorizer.pending()]

        async def waallet_approveUserOperation(
            request_id: str, metadata: Any = None
        ):
            authorizer.approve(request_id, metadata)
            return True

        async def waallet_rejectUserOperation(
            request_id: str, reason: str | None = None
        ):
            authorizer.reject(request_id, reason)
            return True

        methods.update({
            "waallet_getPendingAuthorizations": (
                waallet_getPendingAuthorizations),
            "waallet_approveUserOperation": waallet_approveUserOperation,
            "waallet_rejectUserOperation": waallet_rejectUserOperation,
        })

    return methods


async def _dispatch(
    provider: WaalletProvider,
    methods: dict[str, Callable],
    method: str,
    params: list,
) -> Success | Error:
    if method in methods:
        handler = methods[method]
        try:
            inspect.signature(handler).bind(*params)
        except TypeError as err:
            raise RPCFault(RpcErrorCode.InvalidParams, str(err))
        return await _handle_rpc_request(handler, *params)

    if method in REQUEST_TIME:
        summary = REQUEST_TIME[method]
    else:
        summary = REQUEST_TIME_forwarded
    with summary.time():
        return await _handle_rpc_request(provider.request, method, params)


async def handle(
    provider: WaalletProvider,
    methods: dict[str, Callable],
    request: web.Request,
) -> web.Response:
    req_str = await request.text()
    try:
        rpc_request = load_json_rpc_request(req_str)
    except RPCFault as err:
        return _json_response(
            error_response("null", err.error_code.value, err.error_message))
    logging.debug(f"request: {rpc_request}")

    try:
        response = await _dispatch(
            provider, methods, rpc_request.method, rpc_request.params)
    except RPCFault as err:
        response = Error(err.error_code.value, err.error_message)
    if rpc_request.is_notification:
        return web.Response()

    if isinstance(response, Success):
        RESPONSE_LOG.set(
            {
                "is_error": False,
                "id": rpc_request.id,
                "method": rpc_request.method
            }
        )
        logging.debug(f"response: {response.payload}")
        return _json_response(
            result_response(rpc_request.id, response.payload))

    RESPONSE_LOG.set(
        {
            "is_error": True,
            "id": rpc_request.id,
            "method": rpc_request.method,
            "error_code": response.error_code,
            "error_message": response.error_message,
        }
    )
    return _json_response(error_response(
        rpc_request.id, response.error_code, response.error_message))


def _json_response(json_response: dict[str, Any]) -> web.Response:
    return web.Response(
        text=json.dumps(json_response),
        content_type="application/json",
    )


async def check_health(
    network_manager: NetworkManager,
    _: web.Request
) -> web.Response:
    all_ok, results = await check_network_health(
        network_manager.get_active())
    results_str = json.dumps(results)

    if all_ok:
        return web.Response(text=results_str)
    else:
        return web.Response(text=results_str, status=503)


def create_app(
    provider: WaalletProvider,
    pool: UserOperationPool,
    authorizer: UserOperationAuthorizer,
    rpc_cors_domain: str = "*",
) -> web.Application:
    methods = build_methods(pool, authorizer)

    app = web.Application()
    app.router.add_post("/rpc", partial(handle, provider, methods))
    app.router.add_post(
        "/health",
        partial(check_health, provider.network_manager)
    )

    cors = aiohttp_cors.setup(
        app,
        defaults={
            rpc_cors_domain: aiohttp_cors.ResourceOptions(
                allow_credentials=True, expose_headers="*", allow_headers="*"
            )
        },
    )
    for route in list(app.router.routes()):
        cors.add(route)
    return app


async def run_rpc_http_server(
    provider: WaalletProvider,
    pool: UserOperationPool,
    authorizer: UserOperationAuthorizer,
    host: str = "localhost",
    rpc_cors_domain: str = "*",
    port: int = 3000,
) -> None:
    logging.info(f"Starting HTTP RPC Server at: {host}:{port}/rpc")
    app = create_app(provider, pool, authorizer, rpc_cors_domain)
    runner = web.AppRunner(
        app,
        access_log_class=AccessLogger
    )
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

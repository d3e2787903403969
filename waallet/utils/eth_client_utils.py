import asyncio
import json
import logging
from typing import Any

from aiohttp import ClientError, ClientSession, ClientTimeout

from waallet.exceptions import JsonRpcException

NUMBER_OF_RETRY_ATTEMPTS = 3
DEFAULT_REQUEST_TIMEOUT = 30


class RequestTimeoutError(ConnectionError):
    """The endpoint took the request but gave no answer in time."""


async def send_rpc_request_to_eth_client(
    url: str,
    method: str,
    params: list | None = None,
    retry_attempts: int = NUMBER_OF_RETRY_ATTEMPTS,
) -> Any:
    """Send one JSON-RPC request and return the decoded response object.

    Connection failures, timeouts and non-json answers are retried, a
    json-rpc error object is returned to the caller untouched. Raises
    RequestTimeoutError when the last attempt timed out, since the request
    may have been processed.
    """
    json_request = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": method,
        "params": params if params is not None else [],
    }
    headers = {
        "content-type": "application/json",
        "connection": "keep-alive"
    }
    timed_out = False
    for i in range(retry_attempts):
        try:
            async with ClientSession(
                timeout=ClientTimeout(total=DEFAULT_REQUEST_TIMEOUT)
            ) as session:
                resp = await _post(session, url, json_request, headers)
            return json.loads(resp)
        except json.decoder.JSONDecodeError:
            timed_out = False
            logging.error(
                f"Attempt No. {i+1} to call {method} at {url} failed. "
                "Invalid json response."
            )
        except (ClientError, asyncio.TimeoutError) as excp:
            timed_out = isinstance(excp, asyncio.TimeoutError)
            logging.error(
                f"Attempt No. {i+1} to call {method} at {url} failed. "
                f"error: {str(excp)}"
            )
        if i + 1 < retry_attempts:
            await asyncio.sleep(1)
    if timed_out:
        raise RequestTimeoutError(f"Timed out rpc request {method} to {url}")
    raise ConnectionError(f"Failed rpc request {method} to {url}")


async def _post(
    session: ClientSession,
    url: str,
    json_request: dict,
    headers: dict[str, str],
) -> bytes:
    async with session.post(url, json=json_request, headers=headers) as response:
        return await response.read()


def get_result_or_raise(json_result: Any) -> Any:
    if not isinstance(json_result, dict):
        raise JsonRpcException(-32603, "Invalid json-rpc response")
    if "error" in json_result and json_result["error"] is not None:
        error = json_result["error"]
        if isinstance(error, dict):
            raise JsonRpcException(
                error.get("code", -32603),
                error.get("message", ""),
                error.get("data"),
            )
        raise JsonRpcException(-32603, str(error))
    if "result" not in json_result:
        raise JsonRpcException(-32603, "Invalid json-rpc response")
    return json_result["result"]


class JsonRpcClient:
    """Thin JSON-RPC client bound to one endpoint url."""

    def __init__(self, url: str, retry_attempts: int = NUMBER_OF_RETRY_ATTEMPTS):
        self.url = url
        self.retry_attempts = retry_attempts

    async def send(
        self,
        method: str,
        params: list | None = None,
        retry_attempts: int | None = None,
    ) -> Any:
        if retry_attempts is None:
            retry_attempts = self.retry_attempts
        json_result = await send_rpc_request_to_eth_client(
            self.url, method, params, retry_attempts=retry_attempts
        )
        return get_result_or_raise(json_result)

    def __repr__(self):
        return f"<{type(self).__name__} {self.url}>"

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

REQUEST_FIELDS = {"jsonrpc", "method", "params", "id"}


class RpcErrorCode(Enum):
    ParseError = -32700
    InvalidRequest = -32600
    InvalidParams = -32602


class RPCFault(Exception):
    """Envelope level error, answered without reaching any wallet method."""

    def __init__(self, error_code: RpcErrorCode, error_message: str):
        super().__init__(error_message)
        self.error_code = error_code
        self.error_message = error_message

    def __repr__(self):
        return f"<RPCFault {self.error_code.value}:{self.error_message!r}>"


@dataclass
class JsonRpcRequest:
    method: str
    params: list
    id: Any = None

    @property
    def is_notification(self) -> bool:
        # wallets in the wild send "null" for notifications too
        return self.id is None or self.id == "null"


def load_json_rpc_request(body: str) -> JsonRpcRequest:
    """Parse one JSON-RPC 2.0 request.

    Only positional params are accepted, every wallet and forwarded
    method takes an array.
    """
    try:
        data = json.loads(body)
    except ValueError as err:
        raise RPCFault(RpcErrorCode.ParseError, f"Parse error: {err}")
    if not isinstance(data, dict) or data.get("jsonrpc") != "2.0":
        raise RPCFault(
            RpcErrorCode.InvalidRequest,
            "Invalid Request, expected a json-rpc 2.0 object",
        )
    if not isinstance(data.get("method"), str):
        raise RPCFault(
            RpcErrorCode.InvalidRequest,
            "Invalid Request, 'method' must be a string",
        )
    params = data.get("params", [])
    if not isinstance(params, list):
        raise RPCFault(RpcErrorCode.InvalidParams, "'params' must be an array")
    extra_fields = set(data) - REQUEST_FIELDS
    if extra_fields:
        raise RPCFault(
            RpcErrorCode.InvalidRequest,
            f"Invalid Request, unexpected fields {sorted(extra_fields)}",
        )
    return JsonRpcRequest(data["method"], params, data.get("id"))


def result_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_response(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": code, "message": message},
    }

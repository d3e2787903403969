from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ValidationExceptionCode(Enum):
    InvalidFields = -32602
    AddressMismatch = -32610
    UnsupportedEntryPoint = -32611
    ContractCreationUnsupported = -32612
    UserOperationFrozen = -32613
    NoActiveAccount = -32614


@dataclass
class ValidationException(Exception):
    exception_code: ValidationExceptionCode
    message: str


class AuthorizationExceptionCode(Enum):
    # EIP-1193 provider error codes
    UserRejected = 4001
    Timeout = 4002
    Unauthorized = 4100


@dataclass
class AuthorizationException(Exception):
    exception_code: AuthorizationExceptionCode
    message: str


class ExecutionExceptionCode(Enum):
    UserOperationReverted = -32521
    SendUserOperationFailed = -32520


@dataclass
class ExecutionException(Exception):
    exception_code: ExecutionExceptionCode
    message: str


class PoolExceptionCode(Enum):
    UnknownUserOperation = -32630
    InvalidTransition = -32631
    WaitCancelled = -32632


@dataclass
class PoolException(Exception):
    exception_code: PoolExceptionCode
    message: str


class OtherJsonRpcErrorCode(Enum):
    InternalError = -32603


@dataclass
class JsonRpcException(Exception):
    """Error object returned by a remote node or bundler."""
    code: int
    message: str
    data: Any = field(default=None)

    def __str__(self):
        return f"{self.message} (code: {self.code})"

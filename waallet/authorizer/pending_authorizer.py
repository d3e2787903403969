import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any

from waallet.exceptions import (
    AuthorizationException,
    AuthorizationExceptionCode,
    ValidationException,
    ValidationExceptionCode,
)
from waallet.user_operation.user_operation_v6 import UserOperationV6
from .authorizer import UserOperationAuthorizeCallback, UserOperationAuthorizer

DEFAULT_AUTHORIZATION_TIMEOUT = 300


@dataclass
class PendingAuthorization:
    request_id: str
    user_operation: UserOperationV6
    created_at: int
    future: asyncio.Future

    def to_json(self) -> dict[str, Any]:
        return {
            "requestId": self.request_id,
            "userOp": self.user_operation.data(),
            "createdAt": self.created_at,
        }


class PendingUserOperationAuthorizer(UserOperationAuthorizer):
    """Parks each operation until a user approves or rejects it through a
    side channel (the RPC server's waallet_* authorization methods).

    A request nobody answers within ``timeout`` seconds is rejected.
    """

    timeout: float
    requests: dict[str, PendingAuthorization]

    def __init__(self, timeout: float = DEFAULT_AUTHORIZATION_TIMEOUT):
        self.timeout = timeout
        self.requests = {}

    async def authorize(
        self,
        user_operation: UserOperationV6,
        callback: UserOperationAuthorizeCallback,
    ) -> UserOperationV6:
        request_id = str(uuid.uuid4())
        future = asyncio.get_running_loop().create_future()
        self.requests[request_id] = PendingAuthorization(
            request_id=request_id,
            user_operation=user_operation,
            created_at=int(time.time() * 1000),
            future=future,
        )
        logging.info(f"UserOperation waiting for authorization: {request_id}")
        try:
            metadata = await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError:
            raise AuthorizationException(
                AuthorizationExceptionCode.Timeout,
                f"Authorization request {request_id} timed out",
            )
        finally:
            self.requests.pop(request_id, None)
        return await callback.on_approved(user_operation, metadata)

    def pending(self) -> list[PendingAuthorization]:
        return list(self.requests.values())

    def approve(self, request_id: str, metadata: Any = None) -> None:
        request = self._get_request(request_id)
        if not request.future.done():
            request.future.set_result(metadata)

    def reject(self, request_id: str, reason: str | None = None) -> None:
        request = self._get_request(request_id)
        if not request.future.done():
            request.future.set_exception(
                AuthorizationException(
                    AuthorizationExceptionCode.UserRejected,
                    reason or "User rejected the UserOperation",
                )
            )

    def close(self) -> None:
        for request_id in list(self.requests):
            self.reject(request_id, "Authorizer closed")

    def _get_request(self, request_id: str) -> PendingAuthorization:
        if request_id not in self.requests:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"Unknown authorization request {request_id}",
            )
        return self.requests[request_id]

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import functools
import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from drcadmin.core.errors import ErrorKind, error_for_kind


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    """Outcome of a service call: ``ok`` with a value, or a failure kind and message.

    Business-rule failures travel as results instead of exceptions so HTTP handlers
    decide the status code. ``unwrap`` bridges back to the exception taxonomy when a
    caller prefers raising.
    """

    ok: bool
    message: str = ""
    value: T | None = None
    kind: ErrorKind | None = None
    details: dict[str, Any] | None = None

    @classmethod
    def success(cls, value: T | None = None, message: str = "") -> "ServiceResult[T]":
        return cls(ok=True, message=message, value=value)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> "ServiceResult[T]":
        return cls(ok=False, message=message, kind=kind, details=details)

    def unwrap(self) -> T | None:
        if self.ok:
            return self.value
        error_cls = error_for_kind(self.kind or ErrorKind.SERVICE_UNAVAILABLE)
        raise error_cls(self.message, details=self.details)

    def as_payload(self) -> dict[str, Any]:
        # Render the {success, message} shape consumed by the console UI.
        return {"success": self.ok, "message": self.message}


def service_boundary(
    operation: str,
    *,
    failure_message: str = "Service temporarily unavailable",
) -> Callable[[Callable[..., Awaitable[ServiceResult[Any]]]], Callable[..., Awaitable[ServiceResult[Any]]]]:
    """Convert timeouts and unexpected errors of a service method into a failure result.

    The wrapped method's instance must expose ``_store_timeout_s``.
    """

    def decorator(
        fn: Callable[..., Awaitable[ServiceResult[Any]]],
    ) -> Callable[..., Awaitable[ServiceResult[Any]]]:
        @functools.wraps(fn)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> ServiceResult[Any]:
            timeout_s = getattr(self, "_store_timeout_s", None)
            try:
                if timeout_s:
                    return await asyncio.wait_for(fn(self, *args, **kwargs), timeout=timeout_s)
                return await fn(self, *args, **kwargs)
            except asyncio.TimeoutError:
                logger.warning("service_operation_timeout operation=%s timeout_s=%s", operation, timeout_s)
            except SQLAlchemyError as exc:
                logger.error("service_operation_store_error operation=%s", operation, exc_info=exc)
            except Exception as exc:  # noqa: BLE001 - internal details must not reach clients
                logger.exception("service_operation_failed operation=%s error=%s", operation, type(exc).__name__)
            return ServiceResult.failure(ErrorKind.SERVICE_UNAVAILABLE, failure_message)

        return wrapper

    return decorator

"""Errors produced by the hub.

Only FetchValidationError is ever raised out of ``Hub.fetch``.  Everything
else is delivered once through the fetch handle and mirrored as a
``fetchError`` or ``failure`` lifecycle event.
"""
from __future__ import annotations

import errno
import socket
from typing import Any, Optional

import httpx

CONNECT_TIMEOUT_CODE = "ECONNECTTIMEDOUT"
COMPLETION_TIMEOUT_CODE = "ETIMEDOUT"


class FetchError(Exception):
    """Base class for every hub error."""

    code: Optional[str] = None
    syscall: Optional[str] = None
    # set only on errors raised by the hub's own connect/completion deadlines
    deadline: Optional[str] = None

    def __init__(self, message: str, *, code: Optional[str] = None,
                 syscall: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if syscall is not None:
            self.syscall = syscall
        self.response_data: Any = None


class FetchValidationError(FetchError, ValueError):
    pass


class TransportError(FetchError):
    """Network-level failure reported by (or synthesised for) the transport."""


class ConnectTimeoutError(TransportError):
    code = CONNECT_TIMEOUT_CODE
    deadline = "connect"


class CompletionTimeoutError(TransportError):
    code = COMPLETION_TIMEOUT_CODE
    deadline = "completion"


class DecodeError(FetchError):
    """The response body claimed to be JSON but did not parse."""

    def __init__(self, message: str, *, body: Any = None,
                 status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.body = body
        self.status_code = status_code


class StatusRangeError(FetchError):
    """A well-formed response whose status falls outside the accepted range."""

    type = "api_response_error"

    def __init__(self, status_code: int, *, http_headers: Any, body: Any,
                 min_status_code: int, max_status_code: int) -> None:
        super().__init__(
            "API Request returned a response outside the status code range "
            f"(code: {status_code}, range: [{min_status_code}, {max_status_code}])"
        )
        self.status_code = status_code
        self.http_headers = http_headers
        self.body = body
        self.min_status_code = min_status_code
        self.max_status_code = max_status_code


# httpx exception -> (code, syscall) when no OSError is found in the chain
_HTTPX_CODES: list[tuple[type[Exception], str, Optional[str]]] = [
    (httpx.ConnectTimeout, "ETIMEDOUT", "connect"),
    (httpx.PoolTimeout, "ETIMEDOUT", None),
    (httpx.ReadTimeout, "ESOCKETTIMEDOUT", "read"),
    (httpx.WriteTimeout, "ESOCKETTIMEDOUT", "write"),
    (httpx.RemoteProtocolError, "ECONNRESET", "read"),
    (httpx.ConnectError, "ECONNREFUSED", "connect"),
    (httpx.ReadError, "ECONNRESET", "read"),
    (httpx.WriteError, "EPIPE", "write"),
    (httpx.UnsupportedProtocol, "EPROTO", None),
    (httpx.InvalidURL, "EINVALIDURL", None),
]


def transport_error_from(exc: Exception) -> TransportError:
    """Wrap an httpx failure, naming it the way a socket error would be named."""
    code, syscall = _classify(exc)
    error = TransportError(str(exc) or type(exc).__name__, code=code, syscall=syscall)
    error.__cause__ = exc
    return error


def _classify(exc: Exception) -> tuple[Optional[str], Optional[str]]:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return "ENOTFOUND", "getaddrinfo"
        if isinstance(current, OSError) and current.errno in errno.errorcode:
            return errno.errorcode[current.errno], _syscall_for(exc)
        current = current.__cause__ or current.__context__
    for exc_type, code, syscall in _HTTPX_CODES:
        if isinstance(exc, exc_type):
            return code, syscall
    return None, None


def _syscall_for(exc: Exception) -> Optional[str]:
    if isinstance(exc, httpx.ConnectError):
        return "connect"
    if isinstance(exc, httpx.ReadError):
        return "read"
    if isinstance(exc, httpx.WriteError):
        return "write"
    return None

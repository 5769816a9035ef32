"""Caller options and the resolved per-call request built from them."""
from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional, Union

import httpx

from fetchhub.dispatch.config import HubConfig
from fetchhub.dispatch.errors import FetchValidationError

DEFAULT_MIN_STATUS_CODE = 200
DEFAULT_MAX_STATUS_CODE = 299


@dataclass
class FetchOptions:
    """What a caller asks for.  Timeouts are in milliseconds."""

    uri: Any
    method: Optional[str] = None
    headers: Optional[Mapping[str, str]] = None
    body: Union[str, bytes, None] = None
    json: Any = None
    params: Optional[Mapping[str, Any]] = None
    timeout: Any = None
    connect_timeout: Any = None
    # None (or 0) disables the completion deadline entirely
    completion_timeout: Any = None
    min_status_code: Optional[int] = None
    max_status_code: Optional[int] = None
    request_id: Optional[str] = None
    parse_json: Optional[bool] = None
    log_data: Optional[Mapping[str, Any]] = None

    @classmethod
    def coerce(cls, options: Union["FetchOptions", Mapping[str, Any]]) -> "FetchOptions":
        if isinstance(options, cls):
            return options
        known = {f.name for f in fields(cls)}
        unknown = set(options) - known
        if unknown:
            raise FetchValidationError(f"Unknown fetch options: {sorted(unknown)}")
        if "uri" not in options:
            raise FetchValidationError("Missing fetch option: uri")
        return cls(**options)


@dataclass(frozen=True)
class FetchRequest:
    """One outstanding call, fully resolved.  Never shared between calls."""

    uri: str
    method: str
    headers: httpx.Headers
    fetch_id: str
    timeout: float
    connect_timeout: float
    completion_timeout: Optional[float]
    min_status_code: int
    max_status_code: int
    request_id: Optional[str] = None
    body: Union[str, bytes, None] = None
    json: Any = None
    params: Optional[Mapping[str, Any]] = None
    parse_json: Optional[bool] = None
    log_data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def resolve(cls, options: FetchOptions, config: HubConfig, fetch_id: str) -> "FetchRequest":
        timeout = check_timeout(
            options.timeout if options.timeout is not None else config.request_timeout
        )
        connect_timeout = check_timeout(
            options.connect_timeout if options.connect_timeout is not None else config.connect_timeout
        )
        completion_timeout = options.completion_timeout
        if completion_timeout is not None:
            completion_timeout = check_timeout(completion_timeout)

        headers = httpx.Headers(options.headers or {})
        headers.update(hub_headers(options.request_id, fetch_id))

        return cls(
            uri=format_uri(options.uri),
            method=(options.method or "GET").upper(),
            headers=headers,
            fetch_id=fetch_id,
            timeout=timeout,
            connect_timeout=connect_timeout,
            completion_timeout=completion_timeout or None,
            min_status_code=options.min_status_code or DEFAULT_MIN_STATUS_CODE,
            max_status_code=options.max_status_code or DEFAULT_MAX_STATUS_CODE,
            request_id=options.request_id,
            body=options.body,
            json=options.json,
            params=options.params,
            parse_json=options.parse_json,
            log_data=dict(options.log_data or {}),
        )


def check_timeout(timeout: Any) -> float:
    if isinstance(timeout, bool) or not isinstance(timeout, numbers.Real):
        raise FetchValidationError(f"Invalid timeout: {timeout!r}, not a number")
    if not math.isfinite(timeout) or timeout < 0:
        raise FetchValidationError(f"Invalid timeout: {timeout!r}, must be a finite non-negative number")
    return timeout


def hub_headers(request_id: Optional[str], fetch_id: str) -> dict[str, str]:
    headers = {
        "Connection": "close",
        "X-Fetch-ID": fetch_id,
    }
    if request_id is not None:
        headers["X-Request-ID"] = request_id
    return headers


def format_uri(uri: Any) -> str:
    """Accept a string, an ``httpx.URL`` or anything with an ``href``."""
    if isinstance(uri, str):
        return uri
    if isinstance(uri, httpx.URL):
        return str(uri)
    href = getattr(uri, "href", None)
    if isinstance(href, str):
        return href
    raise FetchValidationError(f"Invalid uri: {uri!r}")

"""Hub-wide timeout defaults.

Per-call options override these; they are only consulted when a fetch
leaves ``timeout`` or ``connect_timeout`` unset.  All values are
milliseconds.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 1000
DEFAULT_REQUEST_TIMEOUT = 10000

CONNECT_TIMEOUT_ENV = "FETCHHUB_CONNECT_TIMEOUT_MS"
REQUEST_TIMEOUT_ENV = "FETCHHUB_REQUEST_TIMEOUT_MS"


@dataclass(frozen=True)
class HubConfig:
    # Deadline for the socket to connect once it has been assigned
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    # Passed to the transport as its own overall timeout
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HubConfig":
        """Bootstrap defaults from the process environment."""
        environ = os.environ if environ is None else environ
        return cls(
            connect_timeout=_read_ms(environ, CONNECT_TIMEOUT_ENV, DEFAULT_CONNECT_TIMEOUT),
            request_timeout=_read_ms(environ, REQUEST_TIMEOUT_ENV, DEFAULT_REQUEST_TIMEOUT),
        )


def _read_ms(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("invalid_timeout_env", extra={"variable": name, "value": raw})
        return default
    if value <= 0:
        logger.warning("invalid_timeout_env", extra={"variable": name, "value": raw})
        return default
    return value

"""JSON body detection and non-raising parsing."""
from __future__ import annotations

import json
import re
from typing import Any, Optional

import httpx

from fetchhub.dispatch.errors import DecodeError

_JSON_CONTENT_TYPE = re.compile(r"^application/(?:[\w.+-]+\+)?json\b", re.IGNORECASE)


def is_json_response(response: Optional[httpx.Response], body: Any) -> bool:
    """Whether *body* should be decoded as JSON.

    The content type decides when present; without one, a body that looks
    like a JSON object or array is treated as JSON.
    """
    if response is None or body is None:
        return False
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not isinstance(body, str) or not body.strip():
        return False
    content_type = response.headers.get("content-type")
    if content_type:
        return bool(_JSON_CONTENT_TYPE.match(content_type.strip()))
    return body.lstrip()[:1] in ("{", "[")


def safe_parse_json(body: Any, response: Optional[httpx.Response] = None) -> tuple[Optional[DecodeError], Any]:
    """Parse *body*, returning ``(error, body)``.

    On failure the error is returned instead of raised and *body* comes back
    untouched.
    """
    status_code = response.status_code if response is not None else None
    try:
        return None, json.loads(body)
    except (TypeError, ValueError) as exc:
        error = DecodeError(
            f"Unable to parse response body as JSON: {exc}",
            body=body,
            status_code=status_code,
        )
        error.__cause__ = exc
        return error, body

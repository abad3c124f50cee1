"""ETag helpers used as cache validators."""

import hashlib
import json
from typing import Any, Optional, Union


def make_etag(body: Union[str, bytes]) -> str:
    """Strong ETag: quoted SHA-1 hex digest of the body."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return f'"{hashlib.sha1(body).hexdigest()}"'


def etag_for_data(data: Any) -> str:
    """ETag of a JSON-serializable payload (key order independent)."""
    return make_etag(json.dumps(data, sort_keys=True, separators=(",", ":"), default=str))


def _normalize(etag: str) -> str:
    if etag.startswith("W/"):
        etag = etag[2:]
    if len(etag) >= 2 and etag.startswith('"') and etag.endswith('"'):
        etag = etag[1:-1]
    return etag


def etag_matches(first: Optional[str], second: Optional[str]) -> bool:
    """
    Weak comparison: quotes and the W/ prefix are ignored.

    Example:
        >>> etag_matches('W/"abc"', '"abc"')
        True
    """
    if first is None or second is None:
        return False
    return _normalize(first) == _normalize(second)

"""HMAC utilities for verifying relayed store-notification signatures."""
from __future__ import annotations

import hmac
import hashlib

_PREFIX = "sha256="


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_hmac(sig_header: str | None, body: bytes, secret: str) -> bool:
    """Return ``True`` if the HMAC-SHA256 signature matches the body.

    Accepts a bare hex digest or one prefixed with ``sha256=``.
    """
    if not sig_header:
        return False
    if sig_header.startswith(_PREFIX):
        sig_header = sig_header[len(_PREFIX):]
    return hmac.compare_digest(sign(body, secret), sig_header)

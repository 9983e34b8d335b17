"""
Webhook Signature Verification

This module authenticates inbound webhook calls from the blogging platform.

Header format
-------------
    x-hashnode-signature: t=<unixMillis>,v1=<hexHmacSha256>

The signed string is ``"<timestamp>.<compact JSON payload>"`` (or
``"<timestamp>."`` when there is no payload), keyed with the shared webhook
secret.

Security Model
--------------
- Digests are compared with ``hmac.compare_digest`` (constant time).
- The HMAC is checked before the timestamp, so a forged request never learns
  whether its timestamp would have been accepted.
- Verification is a pure function of its inputs; ``now_ms`` can be injected.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Optional

from .models import ParsedSignatureHeader, SignatureFailure, SignatureVerification
from ..core.errors import (
    MalformedHeader,
    SignatureMismatch,
    SignatureVerificationError,
    StaleSignature,
)


# ---------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------

MILLISECONDS_PER_SECOND = 1_000
SIGNATURE_VERSION = "1"
DEFAULT_MAX_AGE_SECONDS = 30

_FAILURE_EXCEPTIONS = {
    SignatureFailure.MALFORMED_HEADER: MalformedHeader,
    SignatureFailure.SIGNATURE_MISMATCH: SignatureMismatch,
    SignatureFailure.STALE_SIGNATURE: StaleSignature,
}


# ---------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------

def _current_millis() -> int:
    return int(time.time() * MILLISECONDS_PER_SECOND)


def _serialize_payload(payload: Any) -> str:
    # Same bytes JSON.stringify produces for the sender's object; only an
    # absent body signs as the empty string.
    if payload is None or payload == "":
        return ""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def parse_signature_header(header: Optional[str]) -> Optional[ParsedSignatureHeader]:
    """
    Extract the timestamp and signature from a header value.

    Returns None when either field is absent or the timestamp is not an
    integer.

    Example
    -------
    >>> parse_signature_header("t=1629780000000,v1=0a1b2c")
    ParsedSignatureHeader(timestamp=1629780000000, signature='0a1b2c')
    """
    if not header:
        return None

    parts = [part.strip() for part in header.split(",")]
    timestamp = next(
        (p.split("=")[1] for p in parts if p.startswith("t=")), None
    )
    signature = next(
        (p.split("=")[1] for p in parts if p.startswith(f"v{SIGNATURE_VERSION}=")),
        None,
    )

    if not timestamp or not signature:
        return None

    try:
        return ParsedSignatureHeader(timestamp=int(timestamp), signature=signature)
    except ValueError:
        return None


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def create_signature(timestamp: int, payload: Any, secret: str) -> str:
    """Return the hex HMAC-SHA256 of ``"<timestamp>.<payload JSON>"``."""
    signed = f"{timestamp}.{_serialize_payload(payload)}"
    return hmac.new(
        secret.encode("utf-8"),
        signed.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def build_signature_header(timestamp: int, payload: Any, secret: str) -> str:
    """Build a complete ``t=...,v1=...`` header value for ``payload``."""
    signature = create_signature(timestamp, payload, secret)
    return f"t={timestamp},v{SIGNATURE_VERSION}={signature}"


def verify_signature(
    header: Optional[str],
    payload: Any,
    secret: str,
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    now_ms: Optional[int] = None,
) -> SignatureVerification:
    """
    Check the authenticity and freshness of a webhook call.

    Parameters
    ----------
    header : Optional[str]
        Raw signature header value.

    payload : Any
        Decoded JSON body exactly as received.

    secret : str
        Shared webhook secret.

    max_age_seconds : int
        Maximum allowed distance between the signature timestamp and now.
        Zero disables the freshness check (replay/synthetic testing only).

    now_ms : Optional[int]
        Current time in Unix milliseconds. Defaults to the wall clock.

    Returns
    -------
    SignatureVerification
    """
    parsed = parse_signature_header(header)
    if parsed is None:
        return SignatureVerification(
            valid=False, reason=SignatureFailure.MALFORMED_HEADER
        )

    expected = create_signature(parsed.timestamp, payload, secret)
    if not hmac.compare_digest(
        expected.encode("utf-8"), parsed.signature.encode("utf-8")
    ):
        return SignatureVerification(
            valid=False, reason=SignatureFailure.SIGNATURE_MISMATCH
        )

    if max_age_seconds != 0:
        now = _current_millis() if now_ms is None else now_ms
        age_seconds = abs(now - parsed.timestamp) / MILLISECONDS_PER_SECOND
        if age_seconds > max_age_seconds:
            return SignatureVerification(
                valid=False, reason=SignatureFailure.STALE_SIGNATURE
            )

    return SignatureVerification(valid=True)


def require_valid_signature(
    header: Optional[str],
    payload: Any,
    secret: str,
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    now_ms: Optional[int] = None,
) -> None:
    """
    Raise the matching ``SignatureVerificationError`` subclass when the
    signature does not verify.
    """
    result = verify_signature(header, payload, secret, max_age_seconds, now_ms)
    if result.valid:
        return

    exc_type = _FAILURE_EXCEPTIONS.get(result.reason, SignatureVerificationError)
    raise exc_type(f"Webhook signature rejected: {result.reason.value}")

"""
Authentication Models

Result types produced by webhook signature verification.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SignatureFailure(str, Enum):
    """Reason a webhook signature was rejected."""

    MALFORMED_HEADER = "malformed_header"
    SIGNATURE_MISMATCH = "signature_mismatch"
    STALE_SIGNATURE = "stale_signature"


class SignatureVerification(BaseModel):
    """
    Outcome of verifying one webhook signature header.

    `reason` is set only when `valid` is False.
    """

    valid: bool
    reason: Optional[SignatureFailure] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


class ParsedSignatureHeader(BaseModel):
    """The `t=` and `v1=` fields of a signature header."""

    timestamp: int
    signature: str

    model_config = ConfigDict(frozen=True, extra="forbid")

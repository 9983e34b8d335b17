"""
Error Taxonomy and Global Error Handling

This module defines the domain exceptions raised across the indexing and
query pipelines, plus the application-wide exception handler.

Design Goals
------------
- One exception class per failure the pipelines distinguish
- Never leak internal exception details to clients from the catch-all handler
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("post_search.errors")


# ---------------------------------------------------------------------
# Domain Exceptions
# ---------------------------------------------------------------------

class PostSearchError(RuntimeError):
    """Base class for all service errors."""


# Ingress authentication ------------------------------------------------

class SignatureVerificationError(PostSearchError):
    """Raised when an inbound webhook fails signature verification."""

    reason: str = "invalid_signature"


class MalformedHeader(SignatureVerificationError):
    """Signature header is missing or lacks the `t=` / `v1=` fields."""

    reason = "malformed_header"


class SignatureMismatch(SignatureVerificationError):
    """Computed HMAC does not match the supplied one."""

    reason = "signature_mismatch"


class StaleSignature(SignatureVerificationError):
    """Signature timestamp lies outside the accepted freshness window."""

    reason = "stale_signature"


# Indexing ----------------------------------------------------------------

class UnknownChunkCount(PostSearchError):
    """Raised when `<documentId>#chunk1` is absent or carries no chunk count."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"No indexed chunk count for document {document_id!r}")
        self.document_id = document_id


class UnsupportedEventType(PostSearchError):
    """Raised when the dispatcher receives an event type it does not route."""


class EventBusFull(PostSearchError):
    """Raised when the in-process event bus cannot accept more events."""


# Downstream transport ----------------------------------------------------

class EmbeddingProviderError(PostSearchError):
    """Raised when embedding generation fails (transport, quota, or format)."""


class VectorStoreUnavailable(PostSearchError):
    """Raised when the vector store cannot be reached or rejects an operation."""


class DocumentFetchError(PostSearchError):
    """Raised when a single post summary cannot be fetched from the content API."""


# Query path --------------------------------------------------------------

class EnrichmentUnavailable(PostSearchError):
    """Raised when every enrichment request of a search failed."""


class MissingQueryText(PostSearchError):
    """Raised when a search is requested without query text."""


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Registered with FastAPI as the final safety net for any exception not
    handled by a route.

    Behavior
    --------
    - Logs the full exception stack trace for internal diagnostics.
    - Returns a generic 500 error to the client with no internal details.

    Parameters
    ----------
    request : Request
        The incoming HTTP request that triggered the exception.

    exc : Exception
        The uncaught exception instance.

    Returns
    -------
    JSONResponse
        A JSON 500 response with a minimal error payload.
    """
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "message": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )

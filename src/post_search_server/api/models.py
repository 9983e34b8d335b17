"""
API Models

Request/response schemas for the webhook, search and health endpoints.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict

from ..search.pipeline import SearchMatch


class WebhookAck(BaseModel):
    """
    Acknowledgement returned to the webhook sender.
    """
    status: Literal["accepted", "duplicate"]
    event_id: str

    model_config = ConfigDict(extra="forbid")


class SearchResponse(BaseModel):
    matches: List[SearchMatch]

    model_config = ConfigDict(extra="forbid")


class ErrorResponse(BaseModel):
    """
    Error body of the search endpoint.
    """
    message: str
    error: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class HealthResponse(BaseModel):
    status: Literal["ok"]
    vector_backend: str

"""
Event Models

Wire shapes for inbound webhooks and the in-process event bus.

Webhook body::

    {
        "metadata": {"uuid": "<event id>"},
        "data": {"documentId": "...", "eventType": "post_updated", "content": "..."}
    }

The bus carries ``data`` unchanged as the event ``detail``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator


class EventType(str, Enum):
    POST_CREATED = "post_created"
    POST_UPDATED = "post_updated"
    POST_DELETED = "post_deleted"


# ---------------------------------------------------------------------
# Webhook body
# ---------------------------------------------------------------------

class WebhookMetadata(BaseModel):
    uuid: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="allow")


class EventDetail(BaseModel):
    """
    The ``data`` object of a webhook, and the ``detail`` of a bus event.

    ``content`` must be present for created and updated posts.
    """

    document_id: str = Field(..., min_length=1, alias="documentId")
    event_type: EventType = Field(..., alias="eventType")
    content: Optional[str] = None

    model_config = ConfigDict(
        extra="allow",
        frozen=True,
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _require_content(self) -> "EventDetail":
        if self.event_type is not EventType.POST_DELETED and self.content is None:
            raise ValueError(f"content is required for {self.event_type.value}")
        return self


class WebhookPayload(BaseModel):
    metadata: WebhookMetadata
    data: EventDetail

    model_config = ConfigDict(extra="allow")


# ---------------------------------------------------------------------
# Internal events
# ---------------------------------------------------------------------

class InboundEvent(BaseModel):
    """
    A verified, validated webhook event. Immutable once built.
    """

    id: str
    type: EventType
    timestamp: datetime
    payload: EventDetail

    model_config = ConfigDict(frozen=True, extra="forbid")


class BusEvent(BaseModel):
    """
    Envelope carried by the event bus.

    ``attempt`` is 1 on first delivery and grows with each re-delivery.
    """

    source: str
    detail_type: EventType
    detail: Dict[str, Any]
    event_id: Optional[str] = None
    attempt: int = Field(default=1, ge=1)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_inbound(cls, event: InboundEvent, source: str) -> "BusEvent":
        return cls(
            source=source,
            detail_type=event.type,
            detail=event.payload.model_dump(by_alias=True, mode="json"),
            event_id=event.id,
        )

    def next_attempt(self) -> "BusEvent":
        return self.model_copy(update={"attempt": self.attempt + 1})

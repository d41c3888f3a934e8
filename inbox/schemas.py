"""
Pydantic schemas for the canonical message record and the HTTP API.

This module contains:
- Status and content-type vocabularies
- The canonical Message model shared by the stores and the API
- Request models for incoming data validation
- Response models for API responses
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Vocabularies
# =============================================================================

# Ordered: a status may only move to the right of where it is
STATUS_ORDER = ("pending", "sent", "delivered", "read")

# Statuses an upstream source or API caller may request
TRANSITION_STATUSES = ("sent", "delivered", "read")

CONTENT_TYPES = ("text", "image", "document", "audio", "video", "other")

BUSINESS_DISPLAY_NAME = "Business"
UNKNOWN_DISPLAY_NAME = "Unknown User"

MessageStatus = Literal["pending", "sent", "delivered", "read"]
ContentType = Literal["text", "image", "document", "audio", "video", "other"]


# =============================================================================
# Canonical Message
# =============================================================================

class Message(BaseModel):
    """
    Canonical message record.

    `timestamp` is when the message was sent upstream; the record_* fields
    are bookkeeping for when this service stored and last changed it.
    """
    conversation_id: str = Field(..., description="Derived conversation key, conv_<number>")
    external_message_id: str = Field(..., description="Upstream message identifier")
    from_number: str = Field(
        ...,
        alias="from",
        serialization_alias="from",
        description="Sender party identifier"
    )
    to: str = Field(..., description="Recipient party identifier")
    timestamp: datetime = Field(..., description="When the message was sent")
    content_type: ContentType = Field(default="text", description="Message content type")
    body: str = Field(default="", description="Display text")
    status: MessageStatus = Field(default="pending", description="Delivery status")
    sender_display_name: str = Field(
        default=UNKNOWN_DISPLAY_NAME,
        description="Human-readable sender name"
    )
    record_created_at: datetime = Field(..., description="When the record was stored")
    record_updated_at: datetime = Field(..., description="When the record last changed")

    model_config = {
        "populate_by_name": True,
        "from_attributes": True,  # Allow creating from ORM objects
    }


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendMessageRequest(BaseModel):
    """
    Direct (non-webhook) message send.

    All of conversation_id, from, to and body must be non-blank.
    """
    conversation_id: str = Field(..., min_length=1)
    from_number: str = Field(..., alias="from", min_length=1)
    to: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1, max_length=4096)
    sender_display_name: Optional[str] = Field(None, description="Defaults to Business")

    @field_validator("conversation_id", "from_number", "to", "body")
    @classmethod
    def validate_not_blank(cls, v: str, info) -> str:
        """Reject whitespace-only values."""
        if not v.strip():
            raise ValueError(f"{info.field_name} must not be blank")
        return v

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {
                    "conversation_id": "conv_919937320320",
                    "from": "918329446654",
                    "to": "919937320320",
                    "body": "Hi, how can we help?",
                }
            ]
        }
    }


class StatusUpdateRequest(BaseModel):
    """Body of PUT /messages/{message_id}/status."""
    status: str = Field(..., min_length=1, description="One of sent, delivered, read")


class SimulateStatusRequest(BaseModel):
    """Body of POST /simulate-status."""
    message_id: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    """Response model for webhook processing."""
    status: str = Field(default="ok", description="Operation status")
    result: str = Field(..., description="Processing result")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class StatusUpdateResponse(BaseModel):
    """
    Outcome of a status transition request.

    `message` is the record as it is after the request, whether or
    not the transition was applied.
    """
    outcome: str = Field(..., description="applied, redundant or out_of_order")
    message: Message


class ConversationSummary(BaseModel):
    """Derived summary of one conversation."""
    conversation_id: str
    user_name: str = Field(..., description="Display name of the external party")
    last_message_body: str
    last_timestamp: datetime
    message_count: int = Field(..., ge=1)
    participants: list[str] = Field(default_factory=list)


class InboxStats(BaseModel):
    """Response model for GET /stats."""
    total_messages: int = Field(..., ge=0)
    total_conversations: int = Field(..., ge=0)
    status_breakdown: dict[str, int] = Field(
        default_factory=dict,
        description="Message count per status"
    )


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")

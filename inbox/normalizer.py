"""
Webhook payload normalization.

Turns one upstream webhook envelope into a canonical command:

    {"entry": [{"changes": [{"value": {"messages": [...]}}]}]}   -> NewMessageCommand
    {"entry": [{"changes": [{"value": {"statuses": [...]}}]}]}   -> StatusTransitionCommand

The upstream export delivers the same structure wrapped in a top-level
"metaData" key; both shapes are accepted. Only the first message or status
of an envelope is processed.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from inbox.errors import InvalidStatusValue, PayloadValidationError
from inbox.schemas import (
    BUSINESS_DISPLAY_NAME,
    TRANSITION_STATUSES,
    UNKNOWN_DISPLAY_NAME,
)

logger = logging.getLogger(__name__)

CONVERSATION_PREFIX = "conv_"

_NON_NUMBER_CHARS = re.compile(r"[^\d+]")

# Body used when a media message carries no caption
_PLACEHOLDERS = {
    "image": "[Image]",
    "document": "[Document]",
    "audio": "[Voice Message]",
    "video": "[Video]",
}


@dataclass(frozen=True)
class NewMessageCommand:
    """A new message extracted from a webhook envelope."""
    external_message_id: str
    conversation_id: str
    from_number: str
    to: str
    timestamp: datetime
    content_type: str
    body: str
    sender_display_name: str


@dataclass(frozen=True)
class StatusTransitionCommand:
    """A status change for a previously stored message."""
    external_message_id: str
    status: str
    timestamp: Optional[datetime] = None
    recipient_id: Optional[str] = None


NormalizedCommand = Union[NewMessageCommand, StatusTransitionCommand]


# =============================================================================
# Helpers
# =============================================================================

def normalize_number(value: Optional[str]) -> str:
    """
    Reduce a phone-number-like string to its digits.

    Everything but digits and '+' is removed, then a leading '+' is dropped.
    Returns an empty string when nothing number-like remains.
    """
    if not value:
        return ""
    cleaned = _NON_NUMBER_CHARS.sub("", str(value))
    return cleaned[1:] if cleaned.startswith("+") else cleaned


def conversation_id_for(party_number: str) -> str:
    """Conversation key for the external party of a conversation."""
    number = normalize_number(party_number)
    if not number:
        raise PayloadValidationError(f"Cannot derive a conversation from {party_number!r}")
    return f"{CONVERSATION_PREFIX}{number}"


def party_number_from_conversation(conversation_id: str) -> str:
    """Inverse of conversation_id_for, formatted for display: '+<number>'."""
    number = conversation_id[len(CONVERSATION_PREFIX):] if conversation_id.startswith(CONVERSATION_PREFIX) else conversation_id
    return f"+{number}"


def parse_unix_timestamp(value: Any) -> datetime:
    """Parse upstream unix seconds (sent as a string) into an aware UTC datetime."""
    try:
        seconds = int(str(value).strip())
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (TypeError, ValueError):
        raise PayloadValidationError(f"Invalid timestamp: {value!r}")
    except (OverflowError, OSError):
        raise PayloadValidationError(f"Timestamp out of range: {value!r}")


def _same_number(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    na, nb = normalize_number(a), normalize_number(b)
    if na and nb:
        return na == nb
    return a == b


def _first(items: Any) -> Optional[Any]:
    if isinstance(items, list) and items:
        return items[0]
    return None


def _object(value: Any) -> dict:
    # Wrong-shaped sub-objects read as absent
    return value if isinstance(value, dict) else {}


def extract_body(message: dict) -> tuple[str, str]:
    """
    Return (content_type, body) for an upstream message.

    text -> literal body; image/video -> caption; document -> filename;
    audio -> fixed placeholder; anything else -> [TYPE].
    """
    message_type = message.get("type") or "text"

    if message_type == "text":
        return "text", _object(message.get("text")).get("body") or ""

    if message_type in ("image", "video"):
        caption = _object(message.get(message_type)).get("caption")
        return message_type, caption or _PLACEHOLDERS[message_type]

    if message_type == "document":
        document = _object(message.get("document"))
        return "document", document.get("filename") or document.get("caption") or _PLACEHOLDERS["document"]

    if message_type == "audio":
        return "audio", _PLACEHOLDERS["audio"]

    return "other", f"[{str(message_type).upper()}]"


# =============================================================================
# Envelope
# =============================================================================

def extract_value(payload: Any) -> Optional[dict]:
    """
    Dig the change value out of an envelope.

    Returns None (and logs) when the envelope carries no entry, change or value.
    """
    if not isinstance(payload, dict):
        raise PayloadValidationError("Webhook payload must be a JSON object")

    envelope = payload.get("metaData") if isinstance(payload.get("metaData"), dict) else payload

    entry = _first(envelope.get("entry"))
    if not isinstance(entry, dict):
        logger.info("No entry found in payload")
        return None

    change = _first(entry.get("changes"))
    value = change.get("value") if isinstance(change, dict) else None
    if not isinstance(value, dict):
        logger.info("No value found in payload")
        return None

    return value


def normalize_envelope(payload: Any, business_number: Optional[str]) -> Optional[NormalizedCommand]:
    """
    Normalize one webhook envelope.

    Args:
        payload: Parsed JSON body of the webhook
        business_number: Configured business number, used when the envelope
            metadata does not name one

    Returns:
        NewMessageCommand, StatusTransitionCommand, or None for envelopes
        that carry neither messages nor statuses

    Raises:
        PayloadValidationError: required field missing or malformed
        InvalidStatusValue: status update with an unrecognized status
    """
    value = extract_value(payload)
    if value is None:
        return None

    if value.get("messages"):
        return normalize_message(value, business_number)

    if value.get("statuses"):
        return normalize_status(value)

    logger.info("Unknown payload type: neither messages nor statuses present")
    return None


def normalize_message(value: dict, business_number: Optional[str]) -> NewMessageCommand:
    """Build a NewMessageCommand from the first message in a change value."""
    message = _first(value.get("messages"))
    if not isinstance(message, dict) or not message.get("id"):
        raise PayloadValidationError("Message has no id")

    external_message_id = str(message["id"])
    metadata = _object(value.get("metadata"))
    declared_numbers = [
        n for n in (metadata.get("phone_number_id"), metadata.get("display_phone_number")) if n
    ]

    chosen_business = declared_numbers[0] if declared_numbers else business_number
    if not chosen_business or not normalize_number(chosen_business):
        raise PayloadValidationError(
            f"Message {external_message_id}: business number missing or malformed"
        )

    sender = message.get("from")
    if not sender:
        raise PayloadValidationError(f"Message {external_message_id} has no sender")
    sender = str(sender)

    is_from_business = any(
        _same_number(sender, n) for n in [*declared_numbers, chosen_business]
    )
    external_party = message.get("to") if is_from_business else sender
    if not external_party or not normalize_number(str(external_party)):
        raise PayloadValidationError(
            f"Message {external_message_id}: cannot determine the external party"
        )
    external_party = str(external_party)

    content_type, body = extract_body(message)

    contact = _object(_first(value.get("contacts")))
    profile_name = _object(contact.get("profile")).get("name")
    if profile_name:
        display_name = profile_name
    elif is_from_business:
        display_name = BUSINESS_DISPLAY_NAME
    else:
        display_name = UNKNOWN_DISPLAY_NAME

    return NewMessageCommand(
        external_message_id=external_message_id,
        conversation_id=conversation_id_for(external_party),
        from_number=sender,
        to=external_party if is_from_business else str(chosen_business),
        timestamp=parse_unix_timestamp(message.get("timestamp")),
        content_type=content_type,
        body=str(body),
        sender_display_name=str(display_name),
    )


def normalize_status(value: dict) -> StatusTransitionCommand:
    """Build a StatusTransitionCommand from the first status in a change value."""
    status_update = _first(value.get("statuses"))
    if not isinstance(status_update, dict):
        raise PayloadValidationError("Status update is not an object")

    external_message_id = status_update.get("id") or status_update.get("meta_msg_id")
    if not external_message_id:
        raise PayloadValidationError("No message ID found in status update")

    status = status_update.get("status")
    if status not in TRANSITION_STATUSES:
        raise InvalidStatusValue(status)

    timestamp = status_update.get("timestamp")
    return StatusTransitionCommand(
        external_message_id=str(external_message_id),
        status=status,
        timestamp=parse_unix_timestamp(timestamp) if timestamp is not None else None,
        recipient_id=status_update.get("recipient_id"),
    )

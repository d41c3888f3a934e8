"""
Webhook processing pipeline.

    payload -> normalize -> new message:  dedup -> insert -> new-message event
                         -> status:       transition applier -> status event

Validation failures are logged and reported as results; they never
propagate to the caller. Store failures do.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from inbox.errors import DuplicateMessage, InvalidStatusValue, PayloadValidationError
from inbox.metrics import record_webhook_outcome
from inbox.normalizer import NewMessageCommand, StatusTransitionCommand, normalize_envelope
from inbox.notifications import NotificationHub
from inbox.schemas import Message
from inbox.storage import MessageStore, utcnow
from inbox.transitions import NOT_FOUND, StatusTransitionApplier

logger = logging.getLogger(__name__)

# Results that mean the payload itself was unusable
REJECTED_RESULTS = ("validation_error", "invalid_status")


@dataclass(frozen=True)
class WebhookResult:
    """
    What processing one envelope did.

    kind: message, status or ignored
    result: created, duplicate, applied, redundant, out_of_order, not_found,
            ignored, validation_error or invalid_status
    """
    kind: str
    result: str
    message_id: Optional[str] = None
    detail: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return self.result in REJECTED_RESULTS

    @property
    def dup(self) -> bool:
        return self.result == "duplicate"


class WebhookProcessor:
    """Runs one envelope through normalization and the matching path."""

    def __init__(
        self,
        store: MessageStore,
        hub: NotificationHub,
        applier: StatusTransitionApplier,
        business_number: Optional[str],
    ):
        self.store = store
        self.hub = hub
        self.applier = applier
        self.business_number = business_number

    async def process(self, payload: Any) -> WebhookResult:
        try:
            command = normalize_envelope(payload, self.business_number)
        except PayloadValidationError as e:
            logger.warning(f"Invalid webhook payload: {e.message}")
            return self._finish(WebhookResult("ignored", "validation_error", detail=e.message))
        except InvalidStatusValue as e:
            logger.warning(f"Invalid status in webhook payload: {e.status!r}")
            return self._finish(WebhookResult("status", "invalid_status", detail=e.message))

        if command is None:
            return self._finish(WebhookResult("ignored", "ignored"))

        if isinstance(command, NewMessageCommand):
            result = await self._process_message(command)
        else:
            result = await self._process_status(command)
        return self._finish(result)

    async def _process_message(self, command: NewMessageCommand) -> WebhookResult:
        existing = await self.store.find_by_external_id(command.external_message_id)
        if existing is not None:
            logger.info(f"Message {command.external_message_id} already exists, skipping")
            return WebhookResult("message", "duplicate", command.external_message_id)

        now = utcnow()
        message = Message(
            conversation_id=command.conversation_id,
            external_message_id=command.external_message_id,
            from_number=command.from_number,
            to=command.to,
            timestamp=command.timestamp,
            content_type=command.content_type,
            body=command.body,
            status="sent",
            sender_display_name=command.sender_display_name,
            record_created_at=now,
            record_updated_at=now,
        )

        try:
            await self.store.insert(message)
        except DuplicateMessage:
            # Another delivery of the same id won the race after our lookup
            return WebhookResult("message", "duplicate", command.external_message_id)

        logger.info(
            f"Inserted message {message.external_message_id} from {message.sender_display_name} "
            f"in {message.conversation_id}: {message.body[:50]}"
        )
        await self.hub.publish_new_message(message)
        return WebhookResult("message", "created", message.external_message_id)

    async def _process_status(self, command: StatusTransitionCommand) -> WebhookResult:
        transition = await self.applier.apply(command.external_message_id, command.status)

        if transition.outcome == NOT_FOUND and logger.isEnabledFor(logging.DEBUG):
            recent = await self.store.recent(5)
            logger.debug(f"Recent message IDs: {[m.external_message_id for m in recent]}")

        return WebhookResult("status", transition.outcome, command.external_message_id)

    @staticmethod
    def _finish(result: WebhookResult) -> WebhookResult:
        record_webhook_outcome(result.kind, result.result)
        return result

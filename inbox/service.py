"""
Inbox service: the commands and queries the HTTP and WebSocket layers call.
"""

import logging
import secrets
import string
import time
from typing import Any

from inbox.aggregator import ConversationAggregator
from inbox.config import Settings
from inbox.notifications import NotificationHub
from inbox.schemas import BUSINESS_DISPLAY_NAME, ConversationSummary, InboxStats, Message, SendMessageRequest
from inbox.storage import MessageStore, utcnow
from inbox.transitions import StatusTransitionApplier, TransitionResult
from inbox.webhook import WebhookProcessor, WebhookResult

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_message_id() -> str:
    """Internal id for a directly sent message: msg_<epoch ms>_<9 base36 chars>."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"msg_{int(time.time() * 1000)}_{suffix}"


class InboxService:
    """Wires the store, fan-out, applier, aggregator and webhook pipeline together."""

    def __init__(self, store: MessageStore, hub: NotificationHub, settings: Settings):
        self.store = store
        self.hub = hub
        self.applier = StatusTransitionApplier(store, hub, policy=settings.STATUS_TRANSITION_POLICY)
        self.aggregator = ConversationAggregator(store)
        self.processor = WebhookProcessor(store, hub, self.applier, settings.BUSINESS_NUMBER)

    async def process_webhook(self, payload: Any) -> WebhookResult:
        return await self.processor.process(payload)

    async def send_message(self, request: SendMessageRequest) -> Message:
        """
        Store and fan out a message sent directly by the business.

        A directly sent message is already on the wire, so it starts as sent.
        """
        now = utcnow()
        message = Message(
            conversation_id=request.conversation_id.strip(),
            external_message_id=new_message_id(),
            from_number=request.from_number.strip(),
            to=request.to.strip(),
            timestamp=now,
            content_type="text",
            body=request.body.strip(),
            status="sent",
            sender_display_name=request.sender_display_name or BUSINESS_DISPLAY_NAME,
            record_created_at=now,
            record_updated_at=now,
        )
        await self.store.insert(message)
        logger.info(f"Sent message {message.external_message_id} to {message.conversation_id}")
        await self.hub.publish_new_message(message)
        return message

    async def update_status(self, external_message_id: str, status: str) -> TransitionResult:
        return await self.applier.apply(external_message_id, status)

    async def list_conversations(self) -> list[ConversationSummary]:
        return await self.aggregator.list_conversations()

    async def list_messages(self, conversation_id: str) -> list[Message]:
        return await self.store.list_by_conversation(conversation_id)

    async def stats(self) -> InboxStats:
        return await self.aggregator.stats()

"""
Live notification fan-out.

Viewers join a conversation's channel and receive the events published
to it while they are subscribed:

- new-message:             the full message record
- message-status-updated:  {external_message_id, status, record_updated_at}

Delivery is best-effort and at-most-once; nothing is replayed to
subscribers that join later.
"""

import asyncio
import logging
from typing import Any, Protocol

from fastapi import WebSocket

from inbox.metrics import record_live_event
from inbox.schemas import Message

logger = logging.getLogger(__name__)

NEW_MESSAGE_EVENT = "new-message"
STATUS_UPDATED_EVENT = "message-status-updated"


class Subscriber(Protocol):
    """Anything that can receive a published event."""

    async def send(self, event: dict[str, Any]) -> None: ...


class WebSocketSubscriber:
    """Subscriber adapter for a connected WebSocket client."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, event: dict[str, Any]) -> None:
        await self.websocket.send_json(event)


class NotificationHub:
    """
    Per-conversation subscriber registry.

    subscribe/unsubscribe are idempotent. A subscriber whose send fails is
    dropped from every channel.
    """

    def __init__(self) -> None:
        self._channels: dict[str, set[Subscriber]] = {}

    def subscribe(self, conversation_id: str, subscriber: Subscriber) -> bool:
        """Join a channel. Returns False if already a member."""
        members = self._channels.setdefault(conversation_id, set())
        if subscriber in members:
            return False
        members.add(subscriber)
        logger.debug(f"Subscriber joined conversation {conversation_id}")
        return True

    def unsubscribe(self, conversation_id: str, subscriber: Subscriber) -> bool:
        """Leave a channel. Returns False if not a member."""
        members = self._channels.get(conversation_id)
        if not members or subscriber not in members:
            return False
        members.discard(subscriber)
        if not members:
            del self._channels[conversation_id]
        logger.debug(f"Subscriber left conversation {conversation_id}")
        return True

    def unsubscribe_all(self, subscriber: Subscriber) -> int:
        """Remove a subscriber from every channel, e.g. on disconnect."""
        joined = [cid for cid, members in self._channels.items() if subscriber in members]
        for conversation_id in joined:
            self.unsubscribe(conversation_id, subscriber)
        return len(joined)

    def subscribers(self, conversation_id: str) -> set[Subscriber]:
        return set(self._channels.get(conversation_id, ()))

    async def publish(self, conversation_id: str, event: str, data: dict[str, Any]) -> int:
        """
        Deliver an event to the current subscribers of one channel.

        Returns:
            Number of subscribers the event was delivered to
        """
        members = list(self._channels.get(conversation_id, ()))
        record_live_event(event)
        if not members:
            return 0

        frame = {"event": event, "data": data}
        results = await asyncio.gather(
            *(member.send(frame) for member in members),
            return_exceptions=True,
        )

        delivered = 0
        for member, result in zip(members, results):
            if isinstance(result, Exception):
                logger.warning(f"Dropping subscriber of {conversation_id} after failed send: {result}")
                self.unsubscribe_all(member)
            else:
                delivered += 1

        logger.debug(f"Published {event} to {delivered} subscriber(s) of {conversation_id}")
        return delivered

    async def publish_new_message(self, message: Message) -> int:
        return await self.publish(
            message.conversation_id,
            NEW_MESSAGE_EVENT,
            message.model_dump(mode="json", by_alias=True),
        )

    async def publish_status_update(self, message: Message) -> int:
        return await self.publish(
            message.conversation_id,
            STATUS_UPDATED_EVENT,
            {
                "external_message_id": message.external_message_id,
                "status": message.status,
                "record_updated_at": message.record_updated_at.isoformat(),
            },
        )

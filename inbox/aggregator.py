"""
Conversation summaries and inbox statistics.

Computed over materialized records from the Message Store rather than
pushed down into any particular database's query language.
"""

import logging
from collections import Counter, defaultdict

from inbox.normalizer import party_number_from_conversation
from inbox.schemas import BUSINESS_DISPLAY_NAME, STATUS_ORDER, ConversationSummary, InboxStats, Message
from inbox.storage import MessageStore

logger = logging.getLogger(__name__)


def summarize(conversation_id: str, messages: list[Message]) -> ConversationSummary:
    """
    Summarize one conversation.

    The display name is the first non-Business sender name in
    chronological order, else +<number> taken from the conversation id.
    """
    ordered = sorted(messages, key=lambda m: (m.timestamp, m.record_created_at, m.external_message_id))
    latest = ordered[-1]

    user_name = next(
        (m.sender_display_name for m in ordered if m.sender_display_name != BUSINESS_DISPLAY_NAME),
        None,
    )
    if user_name is None:
        user_name = party_number_from_conversation(conversation_id)

    return ConversationSummary(
        conversation_id=conversation_id,
        user_name=user_name,
        last_message_body=latest.body,
        last_timestamp=latest.timestamp,
        message_count=len(ordered),
        participants=sorted({m.sender_display_name for m in ordered}),
    )


class ConversationAggregator:
    """Read-side aggregation over the Message Store."""

    def __init__(self, store: MessageStore):
        self.store = store

    async def list_conversations(self) -> list[ConversationSummary]:
        """All conversations, most recently active first."""
        grouped: dict[str, list[Message]] = defaultdict(list)
        for message in await self.store.all():
            grouped[message.conversation_id].append(message)

        summaries = [summarize(cid, messages) for cid, messages in grouped.items()]
        summaries.sort(key=lambda s: (s.last_timestamp, s.conversation_id), reverse=True)
        logger.debug(f"Aggregated {len(summaries)} conversations")
        return summaries

    async def stats(self) -> InboxStats:
        """Message and conversation totals with a per-status breakdown."""
        messages = await self.store.all()
        counts = Counter(m.status for m in messages)
        return InboxStats(
            total_messages=len(messages),
            total_conversations=len({m.conversation_id for m in messages}),
            status_breakdown={status: counts.get(status, 0) for status in STATUS_ORDER},
        )

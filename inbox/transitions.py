"""
Status state machine and transition applier.

States: pending -> sent -> delivered -> read (terminal).

Which requests are applied depends on the policy:
- forward:    any strictly-forward target (sent -> read is allowed)
- strict:     only the immediate successor; skipping a state is out_of_order
- permissive: any change at all
Requests for the current status, and backward requests under forward/strict,
are redundant no-ops.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from inbox.errors import InvalidStatusValue
from inbox.metrics import record_status_transition
from inbox.notifications import NotificationHub
from inbox.schemas import STATUS_ORDER, TRANSITION_STATUSES, Message
from inbox.storage import MessageStore

logger = logging.getLogger(__name__)

APPLIED = "applied"
REDUNDANT = "redundant"
OUT_OF_ORDER = "out_of_order"
NOT_FOUND = "not_found"

POLICIES = ("forward", "strict", "permissive")

# Compare-and-set attempts before giving up on a contended record
MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a transition request; message is None only for not_found."""
    outcome: str
    message: Optional[Message] = None

    @property
    def applied(self) -> bool:
        return self.outcome == APPLIED


def validate_status(status) -> str:
    """Return status if it is a recognized transition target, else raise InvalidStatusValue."""
    if status not in TRANSITION_STATUSES:
        raise InvalidStatusValue(status)
    return status


def decide(current: str, target: str, policy: str = "forward") -> str:
    """Decide what a request for target means given the current status."""
    if current == target:
        return REDUNDANT

    if policy == "permissive":
        return APPLIED

    step = STATUS_ORDER.index(target) - STATUS_ORDER.index(current)
    if step <= 0:
        return REDUNDANT
    if policy == "strict" and step > 1:
        return OUT_OF_ORDER
    return APPLIED


class StatusTransitionApplier:
    """
    Applies status transitions to the store and fans out the result.

    Used by the webhook pipeline, the HTTP status endpoints, the WebSocket
    simulate action and the demo status simulator alike.
    """

    def __init__(self, store: MessageStore, hub: NotificationHub, policy: str = "forward"):
        if policy not in POLICIES:
            raise ValueError(f"Unknown status transition policy: {policy}")
        self.store = store
        self.hub = hub
        self.policy = policy

    async def apply(self, external_message_id: str, status) -> TransitionResult:
        """
        Request that a message move to status.

        Raises:
            InvalidStatusValue: status is not one of sent, delivered, read
            StoreUnavailable: the store cannot be reached
        """
        try:
            validate_status(status)
        except InvalidStatusValue:
            logger.warning(f"Rejected status {status!r} for message {external_message_id}")
            record_status_transition("invalid_status")
            raise

        for _ in range(MAX_ATTEMPTS):
            current = await self.store.find_by_external_id(external_message_id)
            if current is None:
                logger.warning(f"No message found to update for {external_message_id}")
                record_status_transition(NOT_FOUND)
                return TransitionResult(NOT_FOUND)

            outcome = decide(current.status, status, self.policy)
            if outcome != APPLIED:
                logger.warning(
                    f"Ignoring {outcome} transition {current.status} -> {status} "
                    f"for message {external_message_id}"
                )
                record_status_transition(outcome)
                return TransitionResult(outcome, current)

            updated = await self.store.update_status(
                external_message_id, status, expected_status=current.status
            )
            if updated is None:
                # Lost a race with another writer; re-read and decide again
                logger.debug(f"Concurrent status change on {external_message_id}, retrying")
                continue

            logger.info(f"Updated status for message {external_message_id} to {status}")
            record_status_transition(APPLIED)
            await self.hub.publish_status_update(updated)
            return TransitionResult(APPLIED, updated)

        latest = await self.store.find_by_external_id(external_message_id)
        logger.warning(f"Gave up on contended transition to {status} for message {external_message_id}")
        outcome = REDUNDANT if latest else NOT_FOUND
        record_status_transition(outcome)
        return TransitionResult(outcome, latest)

"""
Tests for the webhook processing pipeline.

Tests cover:
- New message ingestion and deduplication
- Status updates through the pipeline
- Live events for both paths
- Validation failures reported as results
"""

import pytest

from inbox.errors import StoreUnavailable
from tests.payloads import BUSINESS_NUMBER, message_envelope, status_envelope, wrap


class TestNewMessages:
    """Test the new-message path."""

    @pytest.mark.asyncio
    async def test_new_message_stored_as_sent(self, service, store):
        result = await service.process_webhook(
            message_envelope(message_id="m1", from_number="5551234", to="BUSINESS")
        )

        assert result.kind == "message"
        assert result.result == "created"
        assert result.message_id == "m1"

        stored = await store.find_by_external_id("m1")
        assert stored.conversation_id == "conv_5551234"
        assert stored.body == "hi"
        assert stored.status == "sent"
        assert stored.record_created_at == stored.record_updated_at

    @pytest.mark.asyncio
    async def test_resubmission_is_noop(self, service, store):
        envelope = message_envelope(message_id="m1", profile_name="Ravi")
        await service.process_webhook(envelope)
        original = await store.find_by_external_id("m1")

        changed = message_envelope(message_id="m1", profile_name="Someone Else")
        changed["entry"][0]["changes"][0]["value"]["messages"][0]["text"] = {"body": "edited"}
        result = await service.process_webhook(changed)

        assert result.result == "duplicate"
        assert result.dup
        assert await store.list_by_conversation("conv_5551234") == [original]

    @pytest.mark.asyncio
    async def test_new_message_published(self, service, hub, recorder):
        hub.subscribe("conv_5551234", recorder)

        await service.process_webhook(message_envelope(profile_name="Ravi"))

        events = recorder.named("new-message")
        assert len(events) == 1
        assert events[0]["external_message_id"] == "m1"
        assert events[0]["from"] == "5551234"
        assert events[0]["sender_display_name"] == "Ravi"

    @pytest.mark.asyncio
    async def test_duplicate_not_published(self, service, hub, recorder):
        await service.process_webhook(message_envelope())
        hub.subscribe("conv_5551234", recorder)

        await service.process_webhook(message_envelope())

        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_other_conversations_not_notified(self, service, hub, recorder):
        hub.subscribe("conv_999", recorder)

        await service.process_webhook(message_envelope())

        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_missing_id_reported_not_raised(self, service, store):
        envelope = message_envelope()
        del envelope["entry"][0]["changes"][0]["value"]["messages"][0]["id"]

        result = await service.process_webhook(envelope)

        assert result.result == "validation_error"
        assert result.rejected
        assert await store.all() == []


class TestStatusUpdates:
    """Test the status path."""

    @pytest.mark.asyncio
    async def test_delivered_scenario(self, service, store, hub, recorder):
        await service.process_webhook(message_envelope(message_id="m1", from_number="5551234", to="BUSINESS"))
        hub.subscribe("conv_5551234", recorder)

        result = await service.process_webhook(
            status_envelope(message_id="m1", status="delivered", timestamp="1001", recipient_id="5551234")
        )

        assert result.kind == "status"
        assert result.result == "applied"
        assert (await store.find_by_external_id("m1")).status == "delivered"
        assert recorder.named("message-status-updated")[0]["status"] == "delivered"

    @pytest.mark.asyncio
    async def test_full_progression(self, service, store):
        await service.process_webhook(message_envelope())
        for status in ("sent", "delivered", "read"):
            await service.process_webhook(status_envelope(status=status))

        assert (await store.find_by_external_id("m1")).status == "read"

    @pytest.mark.asyncio
    async def test_status_before_message_is_not_found(self, service, hub, recorder):
        hub.subscribe("conv_5551234", recorder)

        result = await service.process_webhook(status_envelope(message_id="early"))

        assert result.result == "not_found"
        assert not result.rejected
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_invalid_status_reported(self, service, store):
        await service.process_webhook(message_envelope())

        result = await service.process_webhook(status_envelope(status="failed"))

        assert result.result == "invalid_status"
        assert result.rejected
        assert (await store.find_by_external_id("m1")).status == "sent"


class TestIgnoredEnvelopes:
    """Test envelopes with nothing to process."""

    @pytest.mark.asyncio
    async def test_empty_value_ignored(self, service):
        result = await service.process_webhook(wrap({"messaging_product": "whatsapp"}))

        assert result.kind == "ignored"
        assert result.result == "ignored"
        assert not result.rejected


class TestStoreFailures:
    """Store failures propagate to the caller."""

    @pytest.mark.asyncio
    async def test_store_unavailable_propagates(self, service, store, monkeypatch):
        async def broken(*args, **kwargs):
            raise StoreUnavailable("database is down")

        monkeypatch.setattr(store, "find_by_external_id", broken)

        with pytest.raises(StoreUnavailable):
            await service.process_webhook(message_envelope())


class TestBusinessMessages:
    """Messages sent by the business through the webhook."""

    @pytest.mark.asyncio
    async def test_outbound_message_grouped_with_customer(self, service, store):
        await service.process_webhook(message_envelope(message_id="in1", from_number="919937320320"))
        await service.process_webhook(
            message_envelope(
                message_id="out1",
                from_number=BUSINESS_NUMBER,
                to="919937320320",
                timestamp="1005",
            )
        )

        messages = await store.list_by_conversation("conv_919937320320")
        assert [m.external_message_id for m in messages] == ["in1", "out1"]
        assert messages[1].sender_display_name == "Business"

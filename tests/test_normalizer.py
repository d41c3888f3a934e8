"""
Tests for webhook payload normalization.

Tests cover:
- Conversation id derivation in both directions
- Body extraction per content type
- Sender display names
- Status update extraction
- Validation failures and recognized no-op envelopes
"""

from datetime import datetime, timezone

import pytest

from inbox.errors import InvalidStatusValue, PayloadValidationError
from inbox.normalizer import (
    NewMessageCommand,
    StatusTransitionCommand,
    conversation_id_for,
    normalize_envelope,
    normalize_number,
    party_number_from_conversation,
)
from tests.payloads import BUSINESS_NUMBER, message_envelope, status_envelope, wrap


class TestNumbers:
    """Test number normalization and conversation keys."""

    def test_normalize_strips_formatting(self):
        assert normalize_number("+91 (833) 944-6654") == "918339446654"

    def test_normalize_empty(self):
        assert normalize_number(None) == ""
        assert normalize_number("BUSINESS") == ""

    def test_conversation_id(self):
        assert conversation_id_for("+5551234") == "conv_5551234"

    def test_conversation_id_requires_digits(self):
        with pytest.raises(PayloadValidationError):
            conversation_id_for("unknown")

    def test_party_number_from_conversation(self):
        assert party_number_from_conversation("conv_5551234") == "+5551234"


class TestNewMessage:
    """Test normalization of new-message envelopes."""

    def test_text_message_scenario(self):
        """m1 from 5551234 to BUSINESS becomes conv_5551234 with body 'hi'."""
        command = normalize_envelope(
            message_envelope(message_id="m1", from_number="5551234", to="BUSINESS"),
            BUSINESS_NUMBER,
        )

        assert isinstance(command, NewMessageCommand)
        assert command.external_message_id == "m1"
        assert command.conversation_id == "conv_5551234"
        assert command.body == "hi"
        assert command.content_type == "text"
        assert command.from_number == "5551234"
        assert command.to == BUSINESS_NUMBER
        assert command.timestamp == datetime.fromtimestamp(1000, tz=timezone.utc)
        assert command.sender_display_name == "Unknown User"

    def test_conversation_id_same_when_business_sends(self):
        """Business-sent messages land in the recipient's conversation."""
        inbound = normalize_envelope(message_envelope(from_number="919937320320"), BUSINESS_NUMBER)
        outbound = normalize_envelope(
            message_envelope(message_id="m2", from_number=BUSINESS_NUMBER, to="919937320320"),
            BUSINESS_NUMBER,
        )

        assert inbound.conversation_id == outbound.conversation_id == "conv_919937320320"
        assert outbound.sender_display_name == "Business"
        assert outbound.to == "919937320320"

    def test_metadata_business_number_takes_precedence(self):
        envelope = message_envelope(
            from_number="15550001111",
            to="5551234",
            metadata={"display_phone_number": "15550001111", "phone_number_id": "629305560276479"},
        )

        command = normalize_envelope(envelope, BUSINESS_NUMBER)

        assert command.conversation_id == "conv_5551234"
        assert command.sender_display_name == "Business"

    def test_plus_prefixed_sender_matches_business(self):
        command = normalize_envelope(
            message_envelope(from_number="+" + BUSINESS_NUMBER, to="5551234"),
            BUSINESS_NUMBER,
        )
        assert command.conversation_id == "conv_5551234"

    def test_profile_name_used(self):
        command = normalize_envelope(message_envelope(profile_name="Ravi Kumar"), BUSINESS_NUMBER)
        assert command.sender_display_name == "Ravi Kumar"

    def test_accepts_meta_data_wrapper(self):
        command = normalize_envelope({"metaData": message_envelope()}, BUSINESS_NUMBER)
        assert command.conversation_id == "conv_5551234"

    @pytest.mark.parametrize(
        "message_type, content, expected_type, expected_body",
        [
            ("image", {"caption": "Look at this"}, "image", "Look at this"),
            ("image", {}, "image", "[Image]"),
            ("document", {"filename": "invoice.pdf"}, "document", "invoice.pdf"),
            ("document", {}, "document", "[Document]"),
            ("audio", {"id": "a1"}, "audio", "[Voice Message]"),
            ("video", {"caption": "Clip"}, "video", "Clip"),
            ("video", {}, "video", "[Video]"),
            ("sticker", {"id": "s1"}, "other", "[STICKER]"),
        ],
    )
    def test_body_per_content_type(self, message_type, content, expected_type, expected_body):
        command = normalize_envelope(
            message_envelope(message_type=message_type, content=content),
            BUSINESS_NUMBER,
        )
        assert command.content_type == expected_type
        assert command.body == expected_body

    def test_text_without_body(self):
        command = normalize_envelope(message_envelope(content={}), BUSINESS_NUMBER)
        assert command.body == ""

    def test_missing_id_rejected(self):
        envelope = message_envelope()
        del envelope["entry"][0]["changes"][0]["value"]["messages"][0]["id"]

        with pytest.raises(PayloadValidationError):
            normalize_envelope(envelope, BUSINESS_NUMBER)

    def test_missing_business_number_rejected(self):
        with pytest.raises(PayloadValidationError):
            normalize_envelope(message_envelope(), None)

    def test_malformed_business_number_rejected(self):
        with pytest.raises(PayloadValidationError):
            normalize_envelope(message_envelope(), "not-a-number")

    def test_business_sender_without_recipient_rejected(self):
        with pytest.raises(PayloadValidationError):
            normalize_envelope(message_envelope(from_number=BUSINESS_NUMBER), BUSINESS_NUMBER)

    def test_bad_timestamp_rejected(self):
        with pytest.raises(PayloadValidationError):
            normalize_envelope(message_envelope(timestamp="yesterday"), BUSINESS_NUMBER)

    def test_out_of_range_timestamp_rejected(self):
        with pytest.raises(PayloadValidationError):
            normalize_envelope(message_envelope(timestamp="99999999999999999"), BUSINESS_NUMBER)

    @pytest.mark.parametrize(
        "message_type, content, expected_body",
        [
            ("text", "hi", ""),
            ("image", "oops", "[Image]"),
            ("video", ["clip"], "[Video]"),
            ("document", 42, "[Document]"),
        ],
    )
    def test_wrong_shaped_content_read_as_absent(self, message_type, content, expected_body):
        command = normalize_envelope(
            message_envelope(message_type=message_type, content=content),
            BUSINESS_NUMBER,
        )
        assert command.body == expected_body

    def test_non_object_metadata_falls_back_to_configured_number(self):
        command = normalize_envelope(message_envelope(metadata="15550001111"), BUSINESS_NUMBER)

        assert command.conversation_id == "conv_5551234"
        assert command.to == BUSINESS_NUMBER

    @pytest.mark.parametrize("contacts", [["Ravi"], [{"profile": "Ravi"}], "Ravi"])
    def test_non_object_profile_uses_fallback_name(self, contacts):
        envelope = message_envelope()
        envelope["entry"][0]["changes"][0]["value"]["contacts"] = contacts

        command = normalize_envelope(envelope, BUSINESS_NUMBER)

        assert command.sender_display_name == "Unknown User"

    def test_only_first_message_processed(self):
        envelope = message_envelope(message_id="first")
        messages = envelope["entry"][0]["changes"][0]["value"]["messages"]
        messages.append(dict(messages[0], id="second"))

        command = normalize_envelope(envelope, BUSINESS_NUMBER)

        assert command.external_message_id == "first"


class TestStatusUpdate:
    """Test normalization of status envelopes."""

    def test_status_scenario(self):
        command = normalize_envelope(status_envelope(message_id="m1", status="delivered"), BUSINESS_NUMBER)

        assert isinstance(command, StatusTransitionCommand)
        assert command.external_message_id == "m1"
        assert command.status == "delivered"
        assert command.recipient_id == "5551234"
        assert command.timestamp == datetime.fromtimestamp(1001, tz=timezone.utc)

    def test_meta_msg_id_fallback(self):
        command = normalize_envelope(
            status_envelope(message_id=None, meta_msg_id="m9"),
            BUSINESS_NUMBER,
        )
        assert command.external_message_id == "m9"

    def test_missing_ids_rejected(self):
        with pytest.raises(PayloadValidationError):
            normalize_envelope(status_envelope(message_id=None), BUSINESS_NUMBER)

    def test_out_of_range_status_timestamp_rejected(self):
        with pytest.raises(PayloadValidationError):
            normalize_envelope(status_envelope(timestamp="99999999999999999"), BUSINESS_NUMBER)

    @pytest.mark.parametrize("status", ["failed", "pending", "READ", ""])
    def test_unrecognized_status_rejected(self, status):
        with pytest.raises(InvalidStatusValue):
            normalize_envelope(status_envelope(status=status), BUSINESS_NUMBER)


class TestNoOpEnvelopes:
    """Test envelopes that carry nothing to process."""

    def test_neither_messages_nor_statuses(self):
        assert normalize_envelope(wrap({"messaging_product": "whatsapp"}), BUSINESS_NUMBER) is None

    def test_empty_entry(self):
        assert normalize_envelope({"entry": []}, BUSINESS_NUMBER) is None

    def test_missing_value(self):
        assert normalize_envelope({"entry": [{"changes": [{}]}]}, BUSINESS_NUMBER) is None

    def test_non_object_payload_rejected(self):
        with pytest.raises(PayloadValidationError):
            normalize_envelope(["not", "an", "object"], BUSINESS_NUMBER)

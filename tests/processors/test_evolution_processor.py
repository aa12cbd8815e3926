"""Tests for the Evolution bridge adapter."""

import pytest

from conduit.domain.errors import ParseError
from conduit.processors.factory import parse_webhook
from conduit.schemas.core.events import (
    ConnectionStateEvent,
    DeliveryStatusEvent,
    InboundMessageEvent,
    UnhandledEvent,
)
from conduit.schemas.core.types import ConnectionState, MessageType, ProviderType

BRIDGE = ProviderType.WHATSAPP_UNOFFICIAL


class TestMessageUpsert:
    def test_text_message_becomes_inbound_event(self, evolution_upsert):
        events = parse_webhook(BRIDGE, evolution_upsert())

        assert len(events) == 1
        event = events[0]
        assert isinstance(event, InboundMessageEvent)
        assert event.channel_lookup_key == "acme-main"
        assert event.sender_phone == "5511987654321"
        assert event.sender_name == "Maria Silva"
        assert event.external_message_id == "3EB0C767D26A1D8A"
        assert event.message_type == MessageType.TEXT
        assert event.content == "Olá, preciso de ajuda"

    def test_from_me_is_suppressed(self, evolution_upsert):
        assert parse_webhook(BRIDGE, evolution_upsert(from_me=True)) == []

    def test_group_messages_are_skipped(self, evolution_upsert):
        payload = evolution_upsert()
        payload["data"]["key"]["remoteJid"] = "120363000000000000@g.us"

        assert parse_webhook(BRIDGE, payload) == []

    def test_device_suffix_is_stripped_from_phone(self, evolution_upsert):
        payload = evolution_upsert()
        payload["data"]["key"]["remoteJid"] = "5511987654321:12@s.whatsapp.net"

        assert parse_webhook(BRIDGE, payload)[0].sender_phone == "5511987654321"

    def test_upper_snake_event_name(self, evolution_upsert):
        payload = evolution_upsert()
        payload["event"] = "MESSAGES_UPSERT"

        assert isinstance(parse_webhook(BRIDGE, payload)[0], InboundMessageEvent)

    @pytest.mark.parametrize(
        "message,expected_type,expected_content",
        [
            ({"extendedTextMessage": {"text": "link aqui"}}, MessageType.TEXT, "link aqui"),
            (
                {"imageMessage": {"url": "https://mmg/img", "mimetype": "image/jpeg", "caption": "foto"}},
                MessageType.IMAGE,
                "foto",
            ),
            ({"audioMessage": {"url": "https://mmg/a.ogg", "mimetype": "audio/ogg"}}, MessageType.AUDIO, None),
            (
                {"documentMessage": {"url": "https://mmg/d", "fileName": "boleto.pdf"}},
                MessageType.DOCUMENT,
                "boleto.pdf",
            ),
            (
                {"locationMessage": {"degreesLatitude": -23.5, "degreesLongitude": -46.6}},
                MessageType.LOCATION,
                "-23.5,-46.6",
            ),
            ({"contactMessage": {"displayName": "João"}}, MessageType.CONTACT, "João"),
            ({"stickerMessage": {"url": "https://mmg/s"}}, MessageType.STICKER, None),
            ({"somethingNew": {}}, MessageType.TEXT, None),
        ],
    )
    def test_message_kinds(self, evolution_upsert, message, expected_type, expected_content):
        event = parse_webhook(BRIDGE, evolution_upsert(message=message))[0]

        assert event.message_type == expected_type
        assert event.content == expected_content

    def test_media_fields_are_carried(self, evolution_upsert):
        message = {"audioMessage": {"url": "https://mmg/a.ogg", "mimetype": "audio/ogg"}}
        event = parse_webhook(BRIDGE, evolution_upsert(message=message))[0]

        assert event.media_url == "https://mmg/a.ogg"
        assert event.media_mime_type == "audio/ogg"

    def test_list_data_yields_one_event_per_item(self, evolution_upsert):
        first = evolution_upsert(message_id="A1")
        second = evolution_upsert(message_id="A2")
        payload = {**first, "data": [first["data"], second["data"]]}

        events = parse_webhook(BRIDGE, payload)

        assert [e.external_message_id for e in events] == ["A1", "A2"]


class TestStatusAndLifecycle:
    def test_nested_status_update(self, evolution_event):
        payload = evolution_event(
            "messages.update", {"key": {"id": "BAE5F1"}, "update": {"status": 3}}
        )
        event = parse_webhook(BRIDGE, payload)[0]

        assert isinstance(event, DeliveryStatusEvent)
        assert event.external_message_id == "BAE5F1"
        assert event.provider_status == 3

    def test_flat_status_update(self, evolution_event):
        payload = evolution_event("messages.update", {"keyId": "BAE5F1", "status": "READ"})
        event = parse_webhook(BRIDGE, payload)[0]

        assert event.external_message_id == "BAE5F1"
        assert event.provider_status == "READ"

    @pytest.mark.parametrize(
        "state,expected",
        [
            ("open", ConnectionState.OPEN),
            ("close", ConnectionState.CLOSE),
            ("connecting", ConnectionState.CONNECTING),
        ],
    )
    def test_connection_update(self, evolution_event, state, expected):
        event = parse_webhook(BRIDGE, evolution_event("connection.update", {"state": state}))[0]

        assert isinstance(event, ConnectionStateEvent)
        assert event.state == expected
        assert event.channel_lookup_key == "acme-main"

    def test_qrcode_update(self, evolution_event):
        payload = evolution_event(
            "qrcode.updated", {"qrcode": {"base64": "data:image/png;base64,AAA"}}
        )
        event = parse_webhook(BRIDGE, payload)[0]

        assert event.state == ConnectionState.QRCODE
        assert event.qrcode == "data:image/png;base64,AAA"

    @pytest.mark.parametrize(
        "name,expected",
        [("instance.delete", ConnectionState.DELETED), ("instance.logout", ConnectionState.LOGGED_OUT)],
    )
    def test_instance_lifecycle(self, evolution_event, name, expected):
        assert parse_webhook(BRIDGE, evolution_event(name))[0].state == expected

    def test_unknown_event_is_unhandled(self, evolution_event):
        event = parse_webhook(BRIDGE, evolution_event("presence.update", {}))[0]

        assert isinstance(event, UnhandledEvent)

    def test_missing_instance_is_a_parse_error(self):
        with pytest.raises(ParseError):
            parse_webhook(BRIDGE, {"event": "messages.upsert", "data": {}})

    @pytest.mark.parametrize("event_name", ["connection.update", "CONNECTION_UPDATE"])
    def test_connection_update_with_list_data(self, evolution_event, event_name):
        payload = evolution_event(event_name, [{"instance": "acme-main", "state": "open"}])

        [event] = parse_webhook(BRIDGE, payload)

        assert event.state == ConnectionState.OPEN

    def test_qrcode_update_with_list_data(self, evolution_event):
        payload = evolution_event("qrcode.updated", [{"qrcode": {"base64": "data:AAA"}}])

        [event] = parse_webhook(BRIDGE, payload)

        assert event.qrcode == "data:AAA"


class TestMalformedItems:
    def test_bad_items_do_not_drop_the_batch(self, evolution_upsert):
        good = evolution_upsert(message_id="A1")["data"]
        no_sender = evolution_upsert(message_id="B1")["data"]
        no_sender["key"]["remoteJid"] = "@s.whatsapp.net"
        far_future = evolution_upsert(message_id="C1")["data"]
        far_future["messageTimestamp"] = 10**20
        odd_content = evolution_upsert(message_id="D1", message={"extendedTextMessage": "oi"})["data"]
        payload = {**evolution_upsert(), "data": [good, no_sender, far_future, odd_content]}

        events = parse_webhook(BRIDGE, payload)

        assert [e.external_message_id for e in events] == ["A1", "C1"]

    @pytest.mark.parametrize("timestamp", [10**20, -(10**20), "1e400", "nan"])
    def test_out_of_range_timestamp_falls_back_to_now(self, evolution_upsert, timestamp):
        payload = evolution_upsert()
        payload["data"]["messageTimestamp"] = timestamp

        [event] = parse_webhook(BRIDGE, payload)

        assert event.timestamp.year >= 2024

"""NegotiationRelay: routing by target id with the true sender stamped on."""

import pytest

from mesh_call.registry import RoomRegistry
from mesh_call.relay import NegotiationRelay


@pytest.fixture
def room(channel_factory):
    registry = RoomRegistry()
    channels = {}
    for connection_id in ("a", "b", "c"):
        channels[connection_id] = channel_factory()
        registry.admit(connection_id, connection_id.upper(), channels[connection_id])
    return NegotiationRelay(registry), channels


def test_offer_is_forwarded_with_sender(room):
    relay, channels = room
    description = {"type": "offer", "sdp": "v=0"}

    assert relay.relay("offer", description, "a", "b") is True

    assert channels["b"].sent == [{"type": "offer", "description": description, "from": "a"}]
    assert channels["a"].sent == []
    assert channels["c"].sent == []


def test_spoofed_sender_in_payload_is_ignored(room):
    relay, channels = room
    payload = {"type": "answer", "sdp": "v=0", "from": "c"}

    relay.relay("answer", payload, "a", "b")

    forwarded = channels["b"].sent[0]
    assert forwarded["from"] == "a"
    assert forwarded["description"] == payload


def test_candidate_uses_candidate_field(room):
    relay, channels = room
    candidate = {"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0"}

    relay.relay("ice-candidate", candidate, "c", "a")

    assert channels["a"].sent == [{"type": "ice-candidate", "candidate": candidate, "from": "c"}]


def test_unknown_target_is_silently_dropped(room):
    relay, channels = room

    assert relay.relay("offer", {"sdp": "v=0"}, "a", "gone") is False

    assert all(channel.sent == [] for channel in channels.values())


def test_order_is_preserved_per_pair(room):
    relay, channels = room

    relay.relay("offer", {"sdp": "1"}, "a", "b")
    relay.relay("ice-candidate", {"candidate": "c1"}, "a", "b")
    relay.relay("ice-candidate", {"candidate": "c2"}, "a", "b")

    assert [m["type"] for m in channels["b"].sent] == ["offer", "ice-candidate", "ice-candidate"]
    assert channels["b"].sent[2]["candidate"] == {"candidate": "c2"}

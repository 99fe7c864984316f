"""Shared fakes for the signaling and negotiation tests."""

import pytest
from pyee import EventEmitter

from mesh_call.errors import MalformedNegotiationPayload


class FakeChannel:
    """Stands in for a client's outbound WebSocket queue."""

    def __init__(self):
        self.sent = []

    def send(self, message):
        self.sent.append(message)

    def of_type(self, kind):
        return [m for m in self.sent if m["type"] == kind]


class FakeTransport(EventEmitter):
    """Implements the transport capability set without a network stack."""

    def __init__(self):
        super().__init__()
        self.remote_descriptions = []
        self.candidates = []
        self.close_count = 0

    async def create_offer(self):
        return {"type": "offer", "sdp": "v=0 offer"}

    async def create_answer(self):
        return {"type": "answer", "sdp": "v=0 answer"}

    async def apply_remote_description(self, description):
        if not isinstance(description, dict) or "sdp" not in description:
            raise MalformedNegotiationPayload("bad session description")
        self.remote_descriptions.append(description)

    async def add_candidate(self, candidate):
        if not isinstance(candidate, dict):
            raise MalformedNegotiationPayload("bad ICE candidate")
        self.candidates.append(candidate)

    async def close(self):
        self.close_count += 1


class FakeTrack:
    def __init__(self, kind, frame=None):
        self.kind = kind
        self.frame = frame
        self.stop_count = 0

    async def recv(self):
        return self.frame

    def stop(self):
        self.stop_count += 1


@pytest.fixture
def channel_factory():
    return FakeChannel


@pytest.fixture
def transports():
    """Every FakeTransport handed out by ``transport_factory``."""
    return []


@pytest.fixture
def transport_factory(transports):
    def factory():
        transport = FakeTransport()
        transports.append(transport)
        return transport

    return factory

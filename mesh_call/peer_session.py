"""
Negotiation state machine for one remote participant.

A PeerSession owns the transport to one remote connection id and drives
the offer/answer/candidate exchange with it through the signaling relay:

    Idle -> OfferSent -> AnswerExchanged -> Connected      (initiator)
    Idle -> OfferReceived -> AnswerExchanged -> Connected  (responder)

and ``Closed`` from anywhere. Only the participant that was already in the
room initiates; the newcomer waits for offers, so two offers never cross.

Outgoing events (pyee): ``candidate-discovered(candidate)``,
``remote-stream-available(stream, track)``, ``state-changed(state)``.
Incoming calls: `start`, `apply_offer`, `apply_answer`, `apply_candidate`,
`close`. Calls for one session run one at a time in arrival order.
"""
import asyncio
import logging
from enum import Enum

from pyee import EventEmitter

from . import messages
from .errors import MalformedNegotiationPayload

logger = logging.getLogger(__name__)


class NegotiationState(str, Enum):
    IDLE = "idle"
    OFFER_SENT = "offer-sent"
    OFFER_RECEIVED = "offer-received"
    ANSWER_EXCHANGED = "answer-exchanged"
    CONNECTED = "connected"
    CLOSED = "closed"


class RemoteMediaStream:
    """The remote participant's tracks, as they arrive."""

    def __init__(self):
        self.tracks = []

    def add_track(self, track):
        self.tracks.append(track)

    def get_tracks(self, kind=None):
        return [t for t in self.tracks if kind is None or t.kind == kind]


class PeerSession(EventEmitter):
    def __init__(self, connection_id: str, display_name: str, transport_factory, signal):
        """
        Args:
            connection_id: Server-assigned id of the remote participant.
            display_name: Remote participant's name, for the UI.
            transport_factory: Zero-argument callable returning a transport
                bound to the local media source.
            signal: Non-blocking callable that queues one signaling frame.
        """
        super().__init__()
        self.connection_id = connection_id
        self.display_name = display_name
        self.transport_factory = transport_factory
        self.signal = signal
        self.state = NegotiationState.IDLE
        self.transport = None
        self.remote_stream = None
        self._remote_applied = False
        self._pending_candidates = []
        self._negotiation_lock = asyncio.Lock()

    @property
    def closed(self) -> bool:
        return self.state is NegotiationState.CLOSED

    def __repr__(self):
        return f"<PeerSession {self.connection_id} {self.state.value}>"

    async def start(self):
        """Initiator path: create the transport and send an offer."""
        async with self._negotiation_lock:
            if self.state is not NegotiationState.IDLE:
                logger.warning("Not offering to %s from state %s", self.connection_id, self.state.value)
                return
            transport = self._ensure_transport()
            offer = await transport.create_offer()
            if self.closed:
                return
            self._set_state(NegotiationState.OFFER_SENT)
            self.signal({"type": messages.OFFER, "description": offer, "to": self.connection_id})

    async def apply_offer(self, description):
        """Responder path: apply the remote offer and answer it."""
        async with self._negotiation_lock:
            if self.state is not NegotiationState.IDLE:
                logger.warning("Discarded offer from %s in state %s", self.connection_id, self.state.value)
                return
            transport = self._ensure_transport()
            try:
                await transport.apply_remote_description(description)
            except MalformedNegotiationPayload as e:
                logger.warning("Discarded offer from %s: %s", self.connection_id, e)
                return
            if self.closed:
                return
            self._set_state(NegotiationState.OFFER_RECEIVED)
            self._remote_applied = True
            await self._flush_candidates(transport)
            answer = await transport.create_answer()
            if self.closed:
                return
            self._set_state(NegotiationState.ANSWER_EXCHANGED)
            self.signal({"type": messages.ANSWER, "description": answer, "to": self.connection_id})

    async def apply_answer(self, description):
        async with self._negotiation_lock:
            if self.state is not NegotiationState.OFFER_SENT:
                logger.warning("Discarded answer from %s in state %s", self.connection_id, self.state.value)
                return
            try:
                await self.transport.apply_remote_description(description)
            except MalformedNegotiationPayload as e:
                logger.warning("Discarded answer from %s: %s", self.connection_id, e)
                return
            if self.closed:
                return
            self._set_state(NegotiationState.ANSWER_EXCHANGED)
            self._remote_applied = True
            await self._flush_candidates(self.transport)

    async def apply_candidate(self, candidate):
        """Apply a remote candidate now, or hold it until a remote description exists."""
        async with self._negotiation_lock:
            if self.closed:
                return
            if not self._remote_applied:
                self._pending_candidates.append(candidate)
                return
            await self._add_candidate(self.transport, candidate)

    async def close(self):
        """Release the transport and the remote stream. Closing twice is a no-op."""
        if self.closed:
            return
        self._set_state(NegotiationState.CLOSED)
        transport, self.transport = self.transport, None
        self.remote_stream = None
        self._pending_candidates.clear()
        if transport is not None:
            transport.remove_all_listeners()
            await transport.close()

    def _ensure_transport(self):
        if self.transport is None:
            self.transport = self.transport_factory()
            self.transport.on("candidate", self._on_local_candidate)
            self.transport.on("track", self._on_track)
            self.transport.on("connectionstatechange", self._on_connection_state)
        return self.transport

    async def _flush_candidates(self, transport):
        pending, self._pending_candidates = self._pending_candidates, []
        for candidate in pending:
            await self._add_candidate(transport, candidate)

    async def _add_candidate(self, transport, candidate):
        try:
            await transport.add_candidate(candidate)
        except MalformedNegotiationPayload as e:
            logger.warning("Discarded candidate from %s: %s", self.connection_id, e)

    def _set_state(self, state: NegotiationState):
        if self.state is state:
            return
        logger.debug("%s: %s -> %s", self.connection_id, self.state.value, state.value)
        self.state = state
        self.emit("state-changed", state)

    def _on_local_candidate(self, candidate):
        if self.closed:
            return
        self.signal({"type": messages.ICE_CANDIDATE, "candidate": candidate, "to": self.connection_id})
        self.emit("candidate-discovered", candidate)

    def _on_track(self, track):
        if self.closed:
            return
        if self.remote_stream is None:
            self.remote_stream = RemoteMediaStream()
        self.remote_stream.add_track(track)
        logger.info("Received remote %s track from %s", track.kind, self.connection_id)
        self.emit("remote-stream-available", self.remote_stream, track)

    def _on_connection_state(self, state: str):
        logger.info("Connection state with %s: %s", self.connection_id, state)
        if self.closed:
            return
        if state == "connected":
            self._set_state(NegotiationState.CONNECTED)

"""Errors raised across the signaling server and the peer client."""


class MeshCallError(Exception):
    pass


class RoomFull(MeshCallError):
    """The room already holds its capacity; the join attempt is terminal."""

    def __init__(self, capacity: int):
        super().__init__(f"Room is full ({capacity} participants)")
        self.capacity = capacity


class MediaAccessDenied(MeshCallError):
    """Local camera/microphone could not be opened."""


class MalformedMessage(MeshCallError):
    """A signaling frame could not be decoded or lacks a required field."""


class MalformedNegotiationPayload(MalformedMessage):
    """An offer, answer or candidate payload is not usable by the transport."""

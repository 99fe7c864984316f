"""Stateless forwarding of offer/answer/candidate messages between participants."""
import logging

from . import messages
from .registry import RoomRegistry

logger = logging.getLogger(__name__)


class NegotiationRelay:
    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    def relay(self, kind: str, payload, from_id: str, to_id: str) -> bool:
        """
        Forward ``payload`` to ``to_id`` stamped with the real sender id.

        Returns False when the target is not in the room; the message is
        dropped and the sender is not told. The target's own
        user-disconnected broadcast reconciles the sender's state.
        """
        field = messages.RELAY_FIELDS[kind]
        if kind != messages.ICE_CANDIDATE:
            logger.info("Sending %s from %s to %s", kind, from_id, to_id)
        delivered = self.registry.send_to(
            to_id, {"type": kind, field: payload, "from": from_id}
        )
        if not delivered:
            logger.debug("Dropped %s from %s: %s is not in the room", kind, from_id, to_id)
        return delivered

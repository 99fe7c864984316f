"""
Room membership for the signaling server.

`RoomRegistry` holds the ordered set of admitted participants for the single
room this process serves. It enforces the capacity limit, designates the
host, and fans membership events out to the participants' channels.
A channel is anything with a non-blocking ``send(message: dict)``; the
signaling server hands in a `ClientChannel`, tests hand in fakes.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from . import messages
from .config import ROOM_CAPACITY
from .errors import RoomFull

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    connection_id: str
    display_name: str
    is_host: bool = False
    channel: Any = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict:
        return {
            "connectionId": self.connection_id,
            "displayName": self.display_name,
            "isHost": self.is_host,
        }


@dataclass
class Admission:
    is_host: bool
    roster: list


class RoomRegistry:
    """Ordered mapping of connection id -> Participant for one room."""

    def __init__(self, capacity: int = ROOM_CAPACITY):
        self.capacity = capacity
        self._participants: dict[str, Participant] = {}
        # held only while the table is mutated, never across a send
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._participants)

    def __contains__(self, connection_id):
        return connection_id in self._participants

    def get(self, connection_id: str) -> Optional[Participant]:
        return self._participants.get(connection_id)

    def participants(self) -> list[Participant]:
        return list(self._participants.values())

    @property
    def host(self) -> Optional[Participant]:
        return next((p for p in self._participants.values() if p.is_host), None)

    def admit(self, connection_id: str, display_name: str, channel=None) -> Admission:
        """
        Insert a participant or raise RoomFull without touching the table.

        Returns the joiner's host flag and the roster of everybody else, in
        admission order, so the joiner knows who will be negotiating with it.
        """
        with self._lock:
            if len(self._participants) >= self.capacity:
                raise RoomFull(self.capacity)
            is_host = len(self._participants) == 0
            roster = [p.to_dict() for p in self._participants.values()]
            self._participants[connection_id] = Participant(
                connection_id, display_name, is_host, channel
            )
            size = len(self._participants)
        logger.info("%s joined. Total users: %d", display_name, size)
        return Admission(is_host=is_host, roster=roster)

    def notify_joined(self, connection_id: str, display_name: str) -> None:
        # Others always see the newcomer as non-host; only the admission
        # reply tells the joiner its real status.
        self._broadcast(
            {
                "type": messages.USER_JOINED,
                "connectionId": connection_id,
                "displayName": display_name,
                "isHost": False,
            },
            exclude=connection_id,
        )

    def remove(self, connection_id: str) -> Optional[Participant]:
        """Drop a participant and tell the rest; unknown ids are a no-op."""
        new_host = None
        with self._lock:
            removed = self._participants.pop(connection_id, None)
            if removed is None:
                return None
            if removed.is_host and self._participants:
                new_host = next(iter(self._participants.values()))
                new_host.is_host = True
            size = len(self._participants)
        logger.info("%s left. Remaining users: %d", removed.display_name, size)

        self._broadcast(
            {"type": messages.USER_DISCONNECTED, "connectionId": connection_id}
        )
        if new_host is not None:
            logger.info("%s is now host", new_host.display_name)
            # Clients do not know their own id, so each copy says whether
            # the recipient is the one promoted.
            for participant in self.participants():
                if participant.channel is not None:
                    participant.channel.send(
                        {
                            "type": messages.HOST_CHANGED,
                            "connectionId": new_host.connection_id,
                            "isHost": participant is new_host,
                        }
                    )
        return removed

    def send_to(self, connection_id: str, message: dict) -> bool:
        participant = self._participants.get(connection_id)
        if participant is None or participant.channel is None:
            return False
        participant.channel.send(message)
        return True

    def _broadcast(self, message: dict, exclude: Optional[str] = None) -> None:
        for participant in self.participants():
            if participant.connection_id == exclude or participant.channel is None:
                continue
            participant.channel.send(message)

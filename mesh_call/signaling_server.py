"""
WebSocket signaling server for a single mesh room.

Each client connection gets a server-assigned connection id and a
`ClientChannel` whose outbound queue is drained by one writer task, so
frames reach a client in the order they were sent and a slow client never
blocks the handlers of the others. All registry mutation happens on the
event loop thread, one message at a time.
"""
import argparse
import asyncio
import logging
import secrets

import websockets

from . import messages
from .config import ROOM_CAPACITY, SIGNAL_HOST, SIGNAL_PORT
from .errors import MalformedMessage, RoomFull
from .registry import RoomRegistry
from .relay import NegotiationRelay

logger = logging.getLogger(__name__)


class ClientChannel:
    """Ordered, fire-and-forget sender for one client WebSocket."""

    def __init__(self, websocket):
        self.websocket = websocket
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._writer = None

    def start(self):
        self._writer = asyncio.create_task(self._drain())

    def send(self, message: dict):
        if self._writer is not None and self._writer.done():
            return  # socket gone; the handler will remove this client
        self._outbox.put_nowait(message)

    async def _drain(self):
        while True:
            message = await self._outbox.get()
            try:
                await self.websocket.send(messages.encode(message))
            except websockets.ConnectionClosed:
                logger.debug("Writer stopped: peer socket already closed")
                return

    async def close(self):
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None


class SignalingServer:
    def __init__(self, registry: RoomRegistry = None):
        self.registry = registry if registry is not None else RoomRegistry()
        self.relay = NegotiationRelay(self.registry)

    async def handler(self, websocket):
        connection_id = secrets.token_hex(8)
        channel = ClientChannel(websocket)
        channel.start()
        logger.info("New client connected: %s", connection_id)
        try:
            async for raw in websocket:
                self.dispatch(connection_id, channel, raw)
        except websockets.ConnectionClosedError as e:
            logger.info("Connection %s dropped: %s", connection_id, e)
        finally:
            logger.info("Client disconnected: %s", connection_id)
            self.registry.remove(connection_id)
            await channel.close()

    def dispatch(self, connection_id: str, channel, raw) -> None:
        """Handle one inbound frame; malformed frames are logged and dropped."""
        try:
            message = messages.decode(raw)
            kind = message["type"]
            if kind == messages.JOIN_ROOM:
                self._join(connection_id, channel, message)
            elif kind in messages.RELAY_FIELDS:
                self._relay(connection_id, message)
            else:
                logger.warning("Unknown message type %r from %s", kind, connection_id)
        except MalformedMessage as e:
            logger.warning("Discarded message from %s: %s", connection_id, e)

    def _join(self, connection_id, channel, message):
        display_name = messages.require_str(message, "displayName")
        if connection_id in self.registry:
            logger.warning("%s sent join-room twice; ignored", connection_id)
            return
        try:
            admission = self.registry.admit(connection_id, display_name, channel)
        except RoomFull:
            logger.info("Rejected %s (%s): room full", display_name, connection_id)
            channel.send({"type": messages.ROOM_FULL})
            return

        channel.send(
            {
                "type": messages.ALL_USERS,
                "users": admission.roster,
                "isHost": admission.is_host,
            }
        )
        self.registry.notify_joined(connection_id, display_name)

    def _relay(self, connection_id, message):
        if connection_id not in self.registry:
            logger.warning("%s relayed %s before joining; dropped", connection_id, message["type"])
            return
        to_id = messages.require_str(message, "to")
        payload = messages.relay_payload(message)
        self.relay.relay(message["type"], payload, connection_id, to_id)

    async def serve(self, host: str = SIGNAL_HOST, port: int = SIGNAL_PORT):
        async with websockets.serve(self.handler, host, port):
            logger.info("Signaling server listening on ws://%s:%d", host, port)
            try:
                await asyncio.Future()  # run forever
            finally:
                self.shutdown()

    def shutdown(self):
        for participant in self.registry.participants():
            self.registry.remove(participant.connection_id)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Mesh call signaling server")
    parser.add_argument("--host", default=SIGNAL_HOST, help="Interface to bind")
    parser.add_argument("--port", type=int, default=SIGNAL_PORT, help="Port to listen on")
    parser.add_argument("--capacity", type=int, default=ROOM_CAPACITY, help="Room capacity")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    server = SignalingServer(RoomRegistry(capacity=args.capacity))
    try:
        asyncio.run(server.serve(args.host, args.port))
    except KeyboardInterrupt:
        logger.info("Signaling server stopped")


if __name__ == "__main__":
    main()

# peer_connector.py
# --------------------------------------------------------------------
# Client side of the mesh: one PeerSession per remote participant,
# driven by signaling frames, reporting to the UI through a queue
# --------------------------------------------------------------------

import asyncio
import logging
import threading

import websockets

from . import messages
from .config import SIGNAL_URL
from .errors import MalformedMessage, MediaAccessDenied
from .media import LocalMedia, RemoteSink
from .peer_session import PeerSession
from .transport import AiortcTransport

logger = logging.getLogger(__name__)


class MeshPeerConnector:
    """
    Joins the room and keeps one negotiated connection to every other participant.

    Runs its own asyncio loop in a daemon thread once `start` is called; the
    UI talks to it through `toggle_audio`, `toggle_video` and `leave`, and
    receives ``{"kind": ..., "data": ...}`` events on ``gui_q``.
    """

    def __init__(self, gui_q, display_name: str, signal_url: str = SIGNAL_URL,
                 media_factory=LocalMedia.open, transport_factory=None, record_dir=None):
        self.gui_q, self.display_name = gui_q, display_name
        self.signal_url = signal_url
        self.media_factory = media_factory
        self.transport_factory = transport_factory or self._aiortc_transport
        self.record_dir = record_dir
        self.media = None
        self.sessions: dict[str, PeerSession] = {}
        self.sinks: dict[str, RemoteSink] = {}
        self.is_host = False
        self.joined = False
        self.closed = False
        self.ws = None
        self.loop = None
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._tasks = set()
        self._handlers = {
            messages.ALL_USERS: self._on_all_users,
            messages.USER_JOINED: self._on_user_joined,
            messages.USER_DISCONNECTED: self._on_user_disconnected,
            messages.HOST_CHANGED: self._on_host_changed,
            messages.ROOM_FULL: self._on_room_full,
            messages.OFFER: self._on_offer,
            messages.ANSWER: self._on_answer,
            messages.ICE_CANDIDATE: self._on_candidate,
        }

    @property
    def participant_count(self) -> int:
        return len(self.sessions) + 1

    # --- UI commands (called from the UI thread) ---
    def start(self):
        self.loop = asyncio.new_event_loop()
        threading.Thread(target=self.loop.run_forever, daemon=True).start()
        asyncio.run_coroutine_threadsafe(self._run(), self.loop)

    def toggle_audio(self):
        return self._toggle("audio")

    def toggle_video(self):
        return self._toggle("video")

    def leave(self):
        if self.loop is not None:
            asyncio.run_coroutine_threadsafe(self._leave(), self.loop)

    # --- Signaling loop ---
    async def _run(self):
        try:
            self.media = self.media_factory()
        except MediaAccessDenied as e:
            logger.error("Error accessing media devices: %s", e)
            self._post("media-error", str(e))
            return

        self._post("status", f"Connecting to signalling server – {self.signal_url}…")
        try:
            async with websockets.connect(self.signal_url) as ws:
                self.ws = ws
                writer = asyncio.create_task(self._drain(ws))
                self._send({"type": messages.JOIN_ROOM, "displayName": self.display_name})
                try:
                    async for raw in ws:
                        await self._dispatch(raw)
                finally:
                    writer.cancel()
        except (OSError, websockets.WebSocketException) as e:
            self._post("status", f"Signalling error: {e}")
        finally:
            self.ws = None
            self.closed = True
            await self._teardown()
            self._post("status", "Signalling connection closed")

    async def _drain(self, ws):
        while True:
            message = await self._outbox.get()
            await ws.send(messages.encode(message))

    def _send(self, message: dict):
        # single queue, single writer: frames leave in the order queued
        self._outbox.put_nowait(message)

    async def _dispatch(self, raw):
        try:
            message = messages.decode(raw)
            handler = self._handlers.get(message["type"])
            if handler is None:
                logger.warning("Ignoring unknown message type %r", message["type"])
                return
            await handler(message)
        except MalformedMessage as e:
            logger.warning("Discarded signaling message: %s", e)

    # --- Registry events ---
    async def _on_all_users(self, message):
        users = message.get("users")
        if not isinstance(users, list):
            raise MalformedMessage("'all-users' needs a 'users' list")
        self.joined = True
        self.is_host = bool(message.get("isHost"))
        logger.info("Existing users: %s", users)
        # Existing members offer to us; we only answer.
        for user in users:
            self._session(messages.require_str(user, "connectionId"), user.get("displayName", ""))
        self._post("joined", {
            "isHost": self.is_host,
            "participantCount": self.participant_count,
            "users": users,
        })

    async def _on_user_joined(self, message):
        connection_id = messages.require_str(message, "connectionId")
        display_name = message.get("displayName", "")
        logger.info("User joined: %s", display_name)
        if connection_id in self.sessions:
            return
        session = self._session(connection_id, display_name)
        self._post("peer-joined", {
            "connectionId": connection_id,
            "displayName": display_name,
            "participantCount": self.participant_count,
        })
        self._spawn(session.start())

    async def _on_user_disconnected(self, message):
        connection_id = messages.require_str(message, "connectionId")
        logger.info("User disconnected: %s", connection_id)
        session = self.sessions.pop(connection_id, None)
        if session is None:
            return
        await self._close_session(session)
        self._post("peer-left", {
            "connectionId": connection_id,
            "participantCount": self.participant_count,
        })

    async def _on_host_changed(self, message):
        connection_id = messages.require_str(message, "connectionId")
        self.is_host = bool(message.get("isHost"))
        self._post("host-changed", {"connectionId": connection_id, "isHost": self.is_host})

    async def _on_room_full(self, message):
        logger.info("Room is full")
        self._post("room-full")
        self.closed = True
        if self.media is not None:
            self.media.release()
        if self.ws is not None:
            await self.ws.close()

    # --- Relayed negotiation ---
    async def _on_offer(self, message):
        from_id = messages.require_str(message, "from")
        description = messages.relay_payload(message)
        logger.info("Received offer from: %s", from_id)
        session = self._session(from_id, "")
        self._spawn(session.apply_offer(description))

    async def _on_answer(self, message):
        from_id = messages.require_str(message, "from")
        description = messages.relay_payload(message)
        logger.info("Received answer from: %s", from_id)
        session = self.sessions.get(from_id)
        if session is None:
            logger.warning("Answer from unknown peer %s", from_id)
            return
        self._spawn(session.apply_answer(description))

    async def _on_candidate(self, message):
        from_id = messages.require_str(message, "from")
        candidate = messages.relay_payload(message)
        session = self.sessions.get(from_id)
        if session is None:
            logger.debug("Candidate from unknown peer %s", from_id)
            return
        self._spawn(session.apply_candidate(candidate))

    # --- Sessions ---
    def _aiortc_transport(self):
        return AiortcTransport(self.media.tracks_for_peer() if self.media else ())

    def _session(self, connection_id, display_name) -> PeerSession:
        session = self.sessions.get(connection_id)
        if session is not None:
            return session
        session = PeerSession(connection_id, display_name, self.transport_factory, self._send)

        @session.on("remote-stream-available")
        def _on_remote_stream(stream, track):
            self._post("remote-stream", {"connectionId": connection_id, "kind": track.kind})
            self.sinks.setdefault(connection_id, RemoteSink(connection_id, self.record_dir))
            self._spawn(self._attach_track(session, track))

        @session.on("state-changed")
        def _on_state(state):
            self._post("peer-state", {"connectionId": connection_id, "state": state.value})

        self.sessions[connection_id] = session
        return session

    async def _attach_track(self, session, track):
        sink = self.sinks.get(session.connection_id)
        if session.closed or sink is None:
            return
        await sink.add_track(track)
        # the session may have been torn down while the consumer started
        if session.closed or self.sinks.get(session.connection_id) is not sink:
            await sink.stop()

    async def _close_session(self, session):
        await session.close()
        sink = self.sinks.pop(session.connection_id, None)
        if sink is not None:
            await sink.stop()

    async def _teardown(self):
        sessions, self.sessions = list(self.sessions.values()), {}
        for session in sessions:
            await self._close_session(session)
        if self.media is not None:
            self.media.release()

    async def _leave(self):
        if self.closed:
            return
        self.closed = True
        await self._teardown()
        if self.ws is not None:
            await self.ws.close()
        self._post("left")

    def _toggle(self, kind):
        if self.media is None:
            return None
        enabled = self.media.toggle(kind)
        if enabled is not None:
            self._post(kind, {"enabled": enabled})
        return enabled

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Peer task failed", exc_info=task.exception())

    def _post(self, kind, data=""):
        self.gui_q.put({"kind": kind, "data": data})

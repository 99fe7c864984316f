"""
Local capture shared by every outgoing PeerSession.

The camera/microphone is opened once with aiortc's MediaPlayer. Each track
is wrapped in a `ToggleableTrack` (mute / camera off) and fanned out with a
MediaRelay so every peer connection gets its own proxy of the same source.
"""
import logging
import os

import av
from av.error import FFmpegError
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder, MediaRelay

from .config import MEDIA_FORMAT, MEDIA_SOURCE
from .errors import MediaAccessDenied

logger = logging.getLogger(__name__)


class ToggleableTrack(MediaStreamTrack):
    """Relays a source track; while disabled it sends silence or black frames."""

    def __init__(self, source):
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.enabled = True

    async def recv(self):
        frame = await self.source.recv()
        if self.enabled:
            return frame
        return blank_frame(frame)

    def stop(self):
        super().stop()
        self.source.stop()


def blank_frame(frame):
    if isinstance(frame, av.AudioFrame):
        for plane in frame.planes:
            plane.update(bytes(plane.buffer_size))
        return frame

    black = frame.reformat(format="yuv420p")
    luma, *chroma = black.planes
    luma.update(b"\x10" * luma.buffer_size)
    for plane in chroma:
        plane.update(b"\x80" * plane.buffer_size)
    black.pts = frame.pts
    black.time_base = frame.time_base
    return black


class LocalMedia:
    def __init__(self, audio=None, video=None, player=None):
        self.player = player
        self.audio = ToggleableTrack(audio) if audio is not None else None
        self.video = ToggleableTrack(video) if video is not None else None
        self._relay = MediaRelay()
        self.released = False

    @classmethod
    def open(cls, source: str = MEDIA_SOURCE, format: str = MEDIA_FORMAT, options=None):
        """Open the capture device, raising MediaAccessDenied if it is unavailable."""
        try:
            player = MediaPlayer(source, format=format, options=options or {})
        except (OSError, FFmpegError) as e:
            raise MediaAccessDenied(f"Unable to access camera/microphone: {e}") from e
        if player.audio is None and player.video is None:
            raise MediaAccessDenied(f"{source} has no audio or video")
        return cls(audio=player.audio, video=player.video, player=player)

    def tracks(self):
        return [t for t in (self.audio, self.video) if t is not None]

    def tracks_for_peer(self):
        """Fresh relay proxies of the local tracks for one peer connection."""
        return [self._relay.subscribe(t) for t in self.tracks()]

    def toggle(self, kind: str):
        """Flip the enabled flag of the local track of ``kind``; None if absent."""
        track = self.audio if kind == "audio" else self.video
        if track is None:
            return None
        track.enabled = not track.enabled
        logger.info("Local %s %s", kind, "enabled" if track.enabled else "disabled")
        return track.enabled

    def release(self):
        if self.released:
            return
        self.released = True
        for track in self.tracks():
            track.stop()


class RemoteSink:
    """Consumes a remote peer's tracks so frames never pile up."""

    def __init__(self, connection_id: str, record_dir=None):
        self.connection_id = connection_id
        self.record_dir = record_dir
        self._consumers = []

    async def add_track(self, track):
        if self.record_dir:
            path = os.path.join(self.record_dir, f"{self.connection_id}-{track.kind}.mp4")
            consumer = MediaRecorder(path)
        else:
            consumer = MediaBlackhole()
        consumer.addTrack(track)
        await consumer.start()
        self._consumers.append(consumer)

    async def stop(self):
        consumers, self._consumers = self._consumers, []
        for consumer in consumers:
            await consumer.stop()

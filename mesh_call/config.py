# config.py
# --------------------------------------------------------------------
# Shared constants; every value can be overridden from the environment
# --------------------------------------------------------------------

import os

ROOM_CAPACITY = int(os.getenv("MESH_ROOM_CAPACITY", "10"))
MAX_DISPLAY_NAME = 30

SIGNAL_HOST = os.getenv("MESH_SIGNAL_HOST", "0.0.0.0")
SIGNAL_PORT = int(os.getenv("MESH_SIGNAL_PORT", "3000"))
SIGNAL_URL = os.getenv("MESH_SIGNAL_URL", "ws://localhost:3000")

STUN_URLS = [
    url.strip()
    for url in os.getenv(
        "MESH_STUN_URLS",
        "stun:stun.l.google.com:19302,"
        "stun:stun1.l.google.com:19302,"
        "stun:stun2.l.google.com:19302",
    ).split(",")
    if url.strip()
]

# What MediaPlayer opens for local capture, e.g. "/dev/video0" with "v4l2"
MEDIA_SOURCE = os.getenv("MESH_MEDIA_SOURCE", "/dev/video0")
MEDIA_FORMAT = os.getenv("MESH_MEDIA_FORMAT") or None

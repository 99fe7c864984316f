"""
Flask front end for one mesh call participant.

This file serves the join and room pages, takes user actions (join, mute,
camera toggle, leave) over HTTP POST, and streams the events of the
`MeshPeerConnector` to the browser over a WebSocket.
"""
import argparse
import json
import logging
import os
import queue

from flask import Flask, jsonify, render_template, request
from flask_sock import Sock
from simple_websocket import ConnectionClosed

from mesh_call.config import MAX_DISPLAY_NAME, ROOM_CAPACITY, SIGNAL_URL
from mesh_call.peer_connector import MeshPeerConnector

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SECRET_KEY"] = os.urandom(24)
app.config["SIGNAL_URL"] = SIGNAL_URL
app.config["RECORD_DIR"] = os.getenv("MESH_RECORD_DIR") or None
sock = Sock(app)

# Events posted by the connector, drained by the /ws route.
ui_events = queue.Queue()
# The active connector; None until the user joins.
peer_connector = None


def _error(message, status=400):
    return jsonify({"status": "error", "message": message}), status


def _require_connector():
    if peer_connector is None:
        return None, _error("Not in a call", 409)
    return peer_connector, None


# --- Pages ---
@app.route("/")
def index():
    """Join page: asks for a display name."""
    return render_template("index.html", max_name=MAX_DISPLAY_NAME)


@app.route("/room")
def room():
    return render_template("room.html", capacity=ROOM_CAPACITY)


# --- WebSocket Route ---
@sock.route("/ws")
def ws_events(ws):
    """
    Pushes connector events to the browser until either side goes away.

    Each frame is the JSON form of one event, ``{"kind": ..., "data": ...}``.
    """
    logger.info("UI WebSocket connection established.")
    try:
        while ws.connected:
            try:
                event = ui_events.get(timeout=1.0)
            except queue.Empty:
                continue
            ws.send(json.dumps(event))
    except ConnectionClosed:
        logger.info("UI WebSocket closed by client.")


# --- Action Routes (HTTP POST) ---
@app.route("/join", methods=["POST"])
def join_route():
    """
    Starts a connector for this participant.
    Expects JSON: {"displayName": "..."} (1..30 characters after trimming).
    """
    global peer_connector
    data = request.get_json(silent=True) or {}
    display_name = data.get("displayName")
    if not isinstance(display_name, str) or not display_name.strip():
        return _error("Display name not provided")
    display_name = display_name.strip()
    if len(display_name) > MAX_DISPLAY_NAME:
        return _error(f"Display name must be at most {MAX_DISPLAY_NAME} characters")
    if peer_connector is not None and not peer_connector.closed:
        return _error("Already in a call", 409)

    peer_connector = MeshPeerConnector(
        ui_events,
        display_name,
        signal_url=app.config["SIGNAL_URL"],
        record_dir=app.config["RECORD_DIR"],
    )
    peer_connector.start()
    return jsonify({"status": "joining", "displayName": display_name})


@app.route("/toggle-audio", methods=["POST"])
def toggle_audio_route():
    connector, error = _require_connector()
    if error:
        return error
    enabled = connector.toggle_audio()
    if enabled is None:
        return _error("No local audio track", 409)
    return jsonify({"status": "ok", "audioEnabled": enabled})


@app.route("/toggle-video", methods=["POST"])
def toggle_video_route():
    connector, error = _require_connector()
    if error:
        return error
    enabled = connector.toggle_video()
    if enabled is None:
        return _error("No local video track", 409)
    return jsonify({"status": "ok", "videoEnabled": enabled})


@app.route("/leave", methods=["POST"])
def leave_route():
    """Closes every peer connection and releases the camera/microphone."""
    global peer_connector
    connector, error = _require_connector()
    if error:
        return error
    connector.leave()
    peer_connector = None
    return jsonify({"status": "leaving"})


def main(argv=None):
    parser = argparse.ArgumentParser(description="Mesh call participant UI")
    parser.add_argument("--port", type=int, default=5000, help="Port to run the UI on")
    parser.add_argument("--signal-url", default=SIGNAL_URL, help="Signaling server WebSocket URL")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    app.config["SIGNAL_URL"] = args.signal_url
    # Flask's development server; one participant per process.
    app.run(host="0.0.0.0", port=args.port, debug=False, use_reloader=False)


if __name__ == "__main__":
    main()

"""SignalingServer: frame dispatch with fake channels, then end to end over websockets."""

import asyncio
import json

import pytest
import websockets

from mesh_call import messages
from mesh_call.registry import RoomRegistry
from mesh_call.signaling_server import ClientChannel, SignalingServer


def frame(**fields):
    return json.dumps(fields)


def join(server, channel, connection_id, name):
    server.dispatch(connection_id, channel, frame(type="join-room", displayName=name))


# ===== dispatch =====


def test_join_empty_room_makes_host(channel_factory):
    server = SignalingServer()
    alice = channel_factory()

    join(server, alice, "a", "Alice")

    assert alice.sent == [{"type": "all-users", "users": [], "isHost": True}]


def test_second_join_sees_host_and_is_announced(channel_factory):
    server = SignalingServer()
    alice, bob = channel_factory(), channel_factory()

    join(server, alice, "a", "Alice")
    join(server, bob, "b", "Bob")

    assert bob.sent == [
        {
            "type": "all-users",
            "users": [{"connectionId": "a", "displayName": "Alice", "isHost": True}],
            "isHost": False,
        }
    ]
    assert alice.sent[-1] == {
        "type": "user-joined",
        "connectionId": "b",
        "displayName": "Bob",
        "isHost": False,
    }


def test_full_room_rejects_with_room_full(channel_factory):
    server = SignalingServer(RoomRegistry(capacity=2))
    channels = [channel_factory() for _ in range(3)]
    for i, channel in enumerate(channels):
        join(server, channel, f"p{i}", f"P{i}")

    assert channels[2].sent == [{"type": "room-full"}]
    assert len(server.registry) == 2
    # existing members are not told about the rejected attempt
    assert channels[0].of_type("user-joined") == [
        {"type": "user-joined", "connectionId": "p1", "displayName": "P1", "isHost": False}
    ]


def test_duplicate_join_is_ignored(channel_factory):
    server = SignalingServer()
    alice = channel_factory()

    join(server, alice, "a", "Alice")
    join(server, alice, "a", "Alice again")

    assert len(alice.sent) == 1
    assert server.registry.get("a").display_name == "Alice"


def test_relay_stamps_sender(channel_factory):
    server = SignalingServer()
    alice, bob = channel_factory(), channel_factory()
    join(server, alice, "a", "Alice")
    join(server, bob, "b", "Bob")

    server.dispatch("a", alice, frame(type="offer", description={"sdp": "x"}, to="b", **{"from": "z"}))

    assert bob.sent[-1] == {"type": "offer", "description": {"sdp": "x"}, "from": "a"}


def test_relay_before_join_is_dropped(channel_factory):
    server = SignalingServer()
    alice = channel_factory()
    join(server, alice, "a", "Alice")

    server.dispatch("x", channel_factory(), frame(type="offer", description={"sdp": "x"}, to="a"))

    assert alice.of_type("offer") == []


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps([1, 2]),
        json.dumps({"no": "type"}),
        json.dumps({"type": "join-room"}),
        json.dumps({"type": "offer", "description": {"sdp": "x"}}),
        json.dumps({"type": "ice-candidate", "to": "b"}),
        json.dumps({"type": "mystery"}),
    ],
)
def test_malformed_frames_are_discarded(channel_factory, raw):
    server = SignalingServer()
    alice, bob = channel_factory(), channel_factory()
    join(server, alice, "a", "Alice")
    join(server, bob, "b", "Bob")
    before = (list(alice.sent), list(bob.sent))

    server.dispatch("a", alice, raw)

    assert (alice.sent, bob.sent) == before
    assert len(server.registry) == 2


def test_shutdown_empties_registry(channel_factory):
    server = SignalingServer()
    join(server, channel_factory(), "a", "Alice")
    join(server, channel_factory(), "b", "Bob")

    server.shutdown()

    assert len(server.registry) == 0


class ClosedSocket:
    def __init__(self):
        self.attempts = 0

    async def send(self, data):
        self.attempts += 1
        raise websockets.ConnectionClosed(None, None)


@pytest.mark.asyncio
async def test_channel_drops_frames_once_socket_is_gone():
    socket = ClosedSocket()
    channel = ClientChannel(socket)
    channel.start()

    channel.send({"type": "user-joined", "connectionId": "b"})
    await asyncio.wait_for(channel._writer, timeout=1)
    channel.send({"type": "user-disconnected", "connectionId": "b"})

    assert socket.attempts == 1
    assert channel._outbox.qsize() == 0
    await channel.close()


# ===== end to end =====


async def receive(ws):
    return json.loads(await asyncio.wait_for(ws.recv(), timeout=5))


async def send(ws, **fields):
    await ws.send(messages.encode(fields))


@pytest.mark.asyncio
async def test_two_clients_negotiate_then_one_leaves():
    server = SignalingServer()
    async with websockets.serve(server.handler, "127.0.0.1", 0) as ws_server:
        port = ws_server.sockets[0].getsockname()[1]
        url = f"ws://127.0.0.1:{port}"

        alice = await websockets.connect(url)
        await send(alice, type="join-room", displayName="Alice")
        assert await receive(alice) == {"type": "all-users", "users": [], "isHost": True}

        bob = await websockets.connect(url)
        await send(bob, type="join-room", displayName="Bob")
        bob_all = await receive(bob)
        assert bob_all["isHost"] is False
        assert [(u["displayName"], u["isHost"]) for u in bob_all["users"]] == [("Alice", True)]
        alice_id = bob_all["users"][0]["connectionId"]

        joined = await receive(alice)
        assert joined["type"] == "user-joined"
        assert (joined["displayName"], joined["isHost"]) == ("Bob", False)
        bob_id = joined["connectionId"]

        offer = {"type": "offer", "sdp": "v=0 alice"}
        await send(alice, type="offer", description=offer, to=bob_id)
        assert await receive(bob) == {"type": "offer", "description": offer, "from": alice_id}

        answer = {"type": "answer", "sdp": "v=0 bob"}
        await send(bob, type="answer", description=answer, to=alice_id)
        assert await receive(alice) == {"type": "answer", "description": answer, "from": bob_id}

        await alice.close()
        assert await receive(bob) == {"type": "user-disconnected", "connectionId": alice_id}
        assert await receive(bob) == {"type": "host-changed", "connectionId": bob_id, "isHost": True}
        assert alice_id not in server.registry

        carol = await websockets.connect(url)
        await send(carol, type="join-room", displayName="Carol")
        carol_all = await receive(carol)
        assert carol_all == {
            "type": "all-users",
            "users": [{"connectionId": bob_id, "displayName": "Bob", "isHost": True}],
            "isHost": False,
        }

        await bob.close()
        await carol.close()

import asyncio

import pytest

from pairchat.server.runtime import ServerRuntime


@pytest.fixture
def runtime(tmp_path):
    return ServerRuntime({"db_path": str(tmp_path / "rt.db"), "http_listen": ""})


async def _connect(runtime, sock):
    task = asyncio.create_task(runtime._handle_connection(sock))
    hello = await sock.recv()
    assert hello["type"] == "connected"
    return task, hello["payload"]["sid"]


async def _settle(sock):
    """Round-trip a ping so every earlier frame has been dispatched."""
    sock.push("ping", "sync")
    frame = await sock.recv()
    assert frame == {"type": "pong", "ts": frame["ts"], "payload": "sync"}


@pytest.mark.asyncio
async def test_offer_relayed_between_sockets(runtime, make_socket):
    alice, bob = make_socket(), make_socket()
    task_a, sid_a = await _connect(runtime, alice)
    task_b, sid_b = await _connect(runtime, bob)

    offer = {"targetAddress": sid_b, "sdp": "v=0"}
    alice.push("offer", offer)
    frame = await bob.recv()
    assert frame["type"] == "offer"
    assert frame["payload"] == offer

    bob.push("answer", {"callerId": sid_a, "sdp": "v=0 answer"})
    assert (await alice.recv())["payload"] == {"callerId": sid_a, "sdp": "v=0 answer"}

    alice.hangup()
    bob.hangup()
    await asyncio.gather(task_a, task_b)


@pytest.mark.asyncio
async def test_join_then_broadcast_then_disconnect(runtime, make_socket):
    sock = make_socket()
    task, sid = await _connect(runtime, sock)

    sock.push("joinConversation", "conv-1")
    await _settle(sock)

    broker = runtime.services.broker
    assert await broker.broadcast("conv-1", {"message": "hi"}) == 1
    frame = await sock.recv()
    assert frame["type"] == "newMessage"
    assert frame["payload"] == {"message": "hi"}

    sock.hangup()
    await task
    assert runtime.services.registry.members("conv-1") == ()
    assert runtime.services.registry.lookup(sid) is None
    assert await broker.broadcast("conv-1", {"message": "late"}) == 0


@pytest.mark.asyncio
async def test_register_peer_routes_by_peer_id(runtime, make_socket):
    alice, bob = make_socket(), make_socket()
    task_a, _ = await _connect(runtime, alice)
    task_b, _ = await _connect(runtime, bob)

    bob.push("registerPeer", {"peerId": "bob"})
    await _settle(bob)
    alice.push("ice-candidate", {"targetAddress": "bob", "candidate": {"sdpMid": "0"}})
    assert (await bob.recv())["type"] == "ice-candidate"

    alice.hangup()
    bob.hangup()
    await asyncio.gather(task_a, task_b)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw,code",
    [
        ("{not json", "BAD_FRAME"),
        ('{"payload": 1}', "BAD_FRAME"),
        ('{"type": "dance"}', "UNKNOWN_TYPE"),
        ('{"type": "joinConversation"}', "MISSING_FIELD"),
        ('{"type": "offer", "payload": {"sdp": "v=0"}}', "MISSING_FIELD"),
        ('{"type": "registerPeer", "payload": {}}', "MISSING_FIELD"),
    ],
)
async def test_bad_frames_answered_with_error(runtime, make_socket, raw, code):
    sock = make_socket()
    task, _ = await _connect(runtime, sock)

    sock.push_raw(raw)
    frame = await sock.recv()
    assert frame["type"] == "error"
    assert frame["payload"]["code"] == code

    # the connection keeps working afterwards
    await _settle(sock)
    sock.hangup()
    await task


@pytest.mark.asyncio
async def test_offer_to_absent_peer_is_silent(runtime, make_socket):
    sock = make_socket()
    task, _ = await _connect(runtime, sock)

    sock.push("offer", {"targetAddress": "ghost", "sdp": "v=0"})
    await _settle(sock)
    assert sock.outbound.empty()

    sock.hangup()
    await task

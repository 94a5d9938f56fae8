import httpx
import pytest
import pytest_asyncio

from pairchat.server.api import create_app
from pairchat.server.services import ChatServices


@pytest.fixture
def services(store, registry):
    return ChatServices.build(store, registry)


@pytest_asyncio.fixture
async def client(services):
    transport = httpx.ASGITransport(app=create_app(services))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.mark.asyncio
async def test_alice_and_bob_end_to_end(client, services, make_connection):
    res = await client.post("/api/conversations", json={"senderUsername": "alice", "receiverUsername": "bob"})
    assert res.status_code == 200
    cid = res.json()["conversationId"]

    again = await client.post("/api/conversations", json={"senderUsername": "bob", "receiverUsername": "alice"})
    assert again.json() == {"conversationId": cid}

    alice_ws, bob_ws = make_connection(), make_connection()
    for conn in (alice_ws, bob_ws):
        services.registry.add(conn)
        services.broker.join(conn, cid)

    res = await client.post(
        "/api/messages",
        json={"conversationId": cid, "senderUsername": "alice", "receiverUsername": "bob", "message": "hi"},
    )
    assert res.status_code == 200
    stored = res.json()
    assert stored["conversationId"] == cid
    assert stored["senderUsername"] == "alice"
    assert stored["whosend"] == "alice"
    assert stored["_id"]

    [pushed] = bob_ws.events("newMessage")
    assert pushed["message"] == "hi"
    assert pushed == stored
    # echo to the sender's own socket is intended
    assert alice_ws.events("newMessage") == [stored]

    res = await client.get(f"/api/messages/conversation/{cid}")
    assert res.status_code == 200
    [only] = res.json()
    assert only["conversationId"] == cid
    assert only["senderUsername"] == "alice"
    assert only["whosend"] == "alice"

    res = await client.get("/api/messages/list/alice")
    assert res.json() == [{"conversationId": cid, "otherParticipantId": "bob"}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"senderUsername": "alice"},
        {"receiverUsername": "bob"},
        {"senderUsername": "", "receiverUsername": "bob"},
        {"senderUsername": "alice", "receiverUsername": "alice"},
        {"senderUsername": 1, "receiverUsername": ["bob"]},
    ],
)
async def test_create_conversation_bad_request(client, body):
    res = await client.post("/api/conversations", json=body)
    assert res.status_code == 400
    assert res.json()["message"]


@pytest.mark.asyncio
async def test_create_conversation_without_body(client):
    res = await client.post("/api/conversations")
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_send_message_missing_field(client, services, make_connection):
    conn = make_connection()
    services.registry.add(conn)
    services.broker.join(conn, "c1")

    res = await client.post("/api/messages", json={"conversationId": "c1", "senderUsername": "alice", "receiverUsername": "bob"})
    assert res.status_code == 400
    assert res.json()["code"] == "VALIDATION_ERROR"
    assert conn.frames == []


@pytest.mark.asyncio
async def test_unknown_conversation_lists_empty(client):
    res = await client.get("/api/messages/conversation/nope")
    assert res.status_code == 200
    assert res.json() == []


@pytest.mark.asyncio
async def test_storage_failure_is_500_and_nothing_broadcast(client, services, make_connection):
    conn = make_connection()
    services.registry.add(conn)
    services.broker.join(conn, "c1")
    await services.store.close()

    res = await client.post(
        "/api/messages",
        json={"conversationId": "c1", "senderUsername": "alice", "receiverUsername": "bob", "message": "hi"},
    )
    assert res.status_code == 500
    assert res.json()["code"] == "STORAGE_FAILURE"
    assert conn.frames == []

    assert (await client.get("/api/messages/list/alice")).status_code == 500
    assert (await client.get("/api/messages/conversation/c1")).status_code == 500
    # membership survives a failed request
    assert services.registry.members("c1") == (conn,)


@pytest.mark.asyncio
async def test_health_reports_registry_size(client, services, make_connection):
    conn = make_connection()
    services.registry.add(conn)
    services.broker.join(conn, "c1")
    res = await client.get("/health")
    assert res.json() == {"status": "ok", "connections": 1, "rooms": 1}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path,raw",
    [
        ("/api/conversations", b'{"senderUsername": "\\ud800", "receiverUsername": "bob"}'),
        (
            "/api/messages",
            b'{"conversationId": "c1", "senderUsername": "alice", "receiverUsername": "bob", "message": "\\ud800"}',
        ),
    ],
)
async def test_unencodable_text_is_bad_request(client, path, raw):
    res = await client.post(path, content=raw, headers={"content-type": "application/json"})
    assert res.status_code == 400
    assert res.json()["code"] in {"VALIDATION_ERROR", "BAD_REQUEST"}

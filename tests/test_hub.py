import asyncio
import json

import pytest

from relay.session import CloseReason, SessionState

pytestmark = pytest.mark.anyio


async def settle():
    await asyncio.sleep(0.02)


@pytest.fixture
async def relay(hub):
    yield hub
    await hub.shutdown()


async def join(hub, make_ws, room_id, sender_id):
    ws = make_ws()
    session = await hub.connect(ws, room_id)
    await hub.router.dispatch(session, json.dumps({"type": "init", "senderId": sender_id}))
    await settle()
    return session, ws


async def test_connect_accepts_without_joining(relay, make_ws):
    ws = make_ws()
    session = await relay.connect(ws, "r1")
    assert ws.accepted
    assert session.state is SessionState.HANDSHAKING
    assert "r1" not in relay.registry
    assert relay.session_count == 1


async def test_join_announces_user_count_to_everyone(relay, make_ws):
    a, ws_a = await join(relay, make_ws, "r1", "A")
    assert ws_a.frames() == [{"type": "user_count", "count": 1}]

    b, ws_b = await join(relay, make_ws, "r1", "B")
    assert ws_b.frames() == [{"type": "user_count", "count": 2}]
    assert ws_a.frames("user_count")[-1] == {"type": "user_count", "count": 2}
    assert a.is_active and b.is_active


async def test_third_session_is_evicted_with_room_full(relay, make_ws):
    a, ws_a = await join(relay, make_ws, "r1", "A")
    b, ws_b = await join(relay, make_ws, "r1", "B")
    sent_before = (len(ws_a.sent), len(ws_b.sent))

    c, ws_c = await join(relay, make_ws, "r1", "C")

    assert c.state is SessionState.CLOSED
    assert (ws_c.close_code, ws_c.close_reason) == (1008, "room_full")
    assert ws_c.sent == []
    assert relay.registry.occupancy("r1") == 2
    assert a.is_active and b.is_active
    assert (len(ws_a.sent), len(ws_b.sent)) == sent_before


async def test_room_frees_up_after_departure(relay, make_ws):
    a, _ = await join(relay, make_ws, "r1", "A")
    await join(relay, make_ws, "r1", "B")
    await relay.close_session(a)

    c, ws_c = await join(relay, make_ws, "r1", "C")
    assert c.is_active
    assert ws_c.frames() == [{"type": "user_count", "count": 2}]


async def test_departure_notifies_remaining_peer(relay, make_ws):
    a, ws_a = await join(relay, make_ws, "r1", "A")
    b, ws_b = await join(relay, make_ws, "r1", "B")
    already = len(ws_b.sent)

    await relay.close_session(a, peer_closed=True)
    await settle()

    after = ws_b.frames()[already:]
    assert after[0] == {"type": "user_count", "count": 1}
    assert after[1]["type"] == "system"
    assert after[1]["text"] == "A user has left the room."
    assert isinstance(after[1]["id"], int)
    assert len(after) == 2
    assert "r1" in relay.registry
    assert not ws_a.closed


async def test_last_departure_removes_room(relay, make_ws):
    a, _ = await join(relay, make_ws, "r1", "A")
    b, _ = await join(relay, make_ws, "r1", "B")
    await relay.close_session(a)
    await relay.close_session(b)
    assert "r1" not in relay.registry
    assert relay.session_count == 0


async def test_close_session_is_idempotent(relay, make_ws):
    a, ws_a = await join(relay, make_ws, "r1", "A")
    b, ws_b = await join(relay, make_ws, "r1", "B")

    await relay.close_session(a, CloseReason.HEARTBEAT_TIMEOUT)
    await relay.close_session(a, CloseReason.NORMAL)
    await settle()

    assert a.close_reason is CloseReason.HEARTBEAT_TIMEOUT
    assert (ws_a.close_code, ws_a.close_reason) == (1001, "heartbeat_timeout")
    assert len(ws_b.frames("system")) == 1
    assert ws_b.frames("user_count")[-1] == {"type": "user_count", "count": 1}


async def test_duplicate_sender_replaces_previous_session(relay, make_ws):
    old, ws_old = await join(relay, make_ws, "r1", "A")
    b, ws_b = await join(relay, make_ws, "r1", "B")

    new, ws_new = await join(relay, make_ws, "r1", "A")

    assert new.is_active
    assert old.state is SessionState.CLOSED
    assert ws_old.close_reason == "session_replaced"
    assert relay.registry.occupancy("r1") == 2
    assert ws_b.frames("system") == []
    assert ws_b.frames("user_count")[-1] == {"type": "user_count", "count": 2}


async def test_replacement_announces_count_before_closing_old_socket(relay, make_ws):
    old, ws_old = await join(relay, make_ws, "r1", "A")
    b, ws_b = await join(relay, make_ws, "r1", "B")
    ws_old.close_gate = asyncio.Event()

    ws_new = make_ws()
    new = await relay.connect(ws_new, "r1")
    activating = asyncio.create_task(
        relay.router.dispatch(new, json.dumps({"type": "init", "senderId": "A"}))
    )
    await settle()

    assert not activating.done()
    assert ws_new.frames("user_count") == [{"type": "user_count", "count": 2}]
    assert ws_b.frames("user_count")[-1] == {"type": "user_count", "count": 2}

    ws_old.close_gate.set()
    await activating
    assert ws_old.close_reason == "session_replaced"


async def test_send_failure_closes_session_as_transport_error(relay, make_ws):
    a, ws_a = await join(relay, make_ws, "r1", "A")
    b, ws_b = await join(relay, make_ws, "r1", "B")

    ws_b.fail_sends = True
    await relay.router.dispatch(a, json.dumps({"type": "chat", "id": 1, "text": "hi", "senderId": "A"}))
    await settle()

    assert b.close_reason is CloseReason.TRANSPORT_ERROR
    assert relay.registry.occupancy("r1") == 1
    assert ws_a.frames("user_count")[-1] == {"type": "user_count", "count": 1}


async def test_closing_discards_pending_frames(relay, make_ws):
    a, ws_a = await join(relay, make_ws, "r1", "A")
    a.send('{"type": "pong"}')
    await relay.close_session(a)
    await settle()
    assert len(a.outbox) == 0
    assert ws_a.frames("pong") == []


async def test_shutdown_closes_every_session(relay, make_ws):
    a, ws_a = await join(relay, make_ws, "r1", "A")
    b, ws_b = await join(relay, make_ws, "r2", "B")
    pending = await relay.connect(make_ws(), "r3")

    await relay.shutdown()

    assert all(s.state is SessionState.CLOSED for s in (a, b, pending))
    assert ws_a.close_reason == "normal"
    assert len(relay.registry) == 0

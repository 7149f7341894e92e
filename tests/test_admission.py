import asyncio
import random

from fakes import connect, make_hub, send


def test_first_join_creates_room_and_issues_token() -> None:
    async def scenario() -> None:
        hub = make_hub()
        a, a_ws = connect(hub)
        await send(hub, a, type="join", room="r1")

        created = a_ws.last("room_created")
        assert created["room"] == "r1"
        assert created["peerId"] == a.id
        assert created["token"]
        assert a.is_host and a.seated

        room = hub.rooms.get("r1")
        assert room.host_id == a.id
        assert room.members == {a.id}

    asyncio.run(scenario())


def test_join_with_token_starts_negotiation_on_host_only() -> None:
    async def scenario() -> None:
        hub = make_hub()
        a, a_ws = connect(hub)
        b, b_ws = connect(hub)
        await send(hub, a, type="join", room="r1")
        token = a_ws.last("room_created")["token"]

        await send(hub, b, type="join", room="r1", token=token)

        assert b_ws.types() == ["joined"]
        assert b_ws.last("joined")["peerId"] == b.id
        assert a_ws.types() == ["room_created", "start_negotiation"]
        assert hub.rooms.get("r1").host_id == a.id

    asyncio.run(scenario())


def test_token_bypasses_password_and_approval_once() -> None:
    async def scenario() -> None:
        hub = make_hub()
        a, a_ws = connect(hub)
        b, b_ws = connect(hub)
        c, c_ws = connect(hub)
        await send(hub, a, type="join", room="r1", password="secret", manualApproval=True)
        token = a_ws.last("room_created")["token"]

        await send(hub, b, type="join", room="r1", token=token)
        assert b.seated
        assert "approval_request" not in a_ws.types()

        await send(hub, b, type="leave")
        assert b.room_id is None

        # the same token a second time falls back to the password rules
        await send(hub, c, type="join", room="r1", token=token)
        assert c_ws.last("error")["code"] == "invalid_password"
        assert c.room_id is None

    asyncio.run(scenario())


def test_expired_token_is_judged_on_password_rules() -> None:
    async def scenario() -> None:
        hub = make_hub(join_token_ttl_seconds=-1)
        a, a_ws = connect(hub)
        b, b_ws = connect(hub)
        await send(hub, a, type="join", room="r1", password="secret")
        token = a_ws.last("room_created")["token"]

        await send(hub, b, type="join", room="r1", token=token)
        assert b_ws.last("error")["code"] == "invalid_password"

        await send(hub, b, type="join", room="r1", token=token, password="secret")
        assert b.seated

    asyncio.run(scenario())


def test_wrong_password_then_right_password() -> None:
    async def scenario() -> None:
        hub = make_hub()
        a, a_ws = connect(hub)
        b, b_ws = connect(hub)
        await send(hub, a, type="join", room="r1", password="secret")
        room = hub.rooms.get("r1")
        assert room.password_hash is not None
        assert b"secret" not in room.password_hash

        await send(hub, b, type="join", room="r1", password="wrong")
        assert b_ws.types() == ["error"]
        assert b_ws.last("error")["code"] == "invalid_password"
        assert b.id not in room.members

        await send(hub, b, type="join", room="r1")
        assert b_ws.last("error")["code"] == "invalid_password"

        await send(hub, b, type="join", room="r1", password="secret")
        assert b_ws.last("joined")["room"] == "r1"
        assert b.id in room.members
        assert a_ws.types()[-1] == "start_negotiation"

    asyncio.run(scenario())


def test_third_member_gets_room_full() -> None:
    async def scenario() -> None:
        hub = make_hub()
        a, _ = connect(hub)
        b, _ = connect(hub)
        c, c_ws = connect(hub)
        await send(hub, a, type="join", room="r1")
        await send(hub, b, type="join", room="r1")
        await send(hub, c, type="join", room="r1")

        assert c_ws.types() == ["error"]
        assert c_ws.last("error")["code"] == "room_full"
        assert c.room_id is None
        assert len(hub.rooms.get("r1").members) == 2

    asyncio.run(scenario())


def test_manual_approval_rejected_peer_is_disconnected() -> None:
    async def scenario() -> None:
        hub = make_hub()
        a, a_ws = connect(hub)
        b, b_ws = connect(hub)
        await send(hub, a, type="join", room="r1", manualApproval=True)
        await send(hub, b, type="join", room="r1", alias="bob")

        request = a_ws.last("approval_request")
        assert request["peerId"] == b.id
        assert request["alias"] == "bob"
        assert b.pending
        assert "start_negotiation" not in a_ws.types()

        await send(hub, a, type="approval_response", peerId=b.id, approved=False)

        assert b_ws.last("rejected")["room"] == "r1"
        assert b_ws.close_code == 1000
        assert b.cleaned_up
        assert hub.rooms.get("r1").members == {a.id}
        assert hub.registry.get(b.id) is None

    asyncio.run(scenario())


def test_manual_approval_approved_peer_is_seated() -> None:
    async def scenario() -> None:
        hub = make_hub()
        a, a_ws = connect(hub)
        b, b_ws = connect(hub)
        await send(hub, a, type="join", room="r1", manualApproval=True)
        await send(hub, b, type="join", room="r1")

        # pending peers are not relayed to
        await send(hub, a, type="signal", data={"sdp": "offer"})
        assert b_ws.types() == []

        await send(hub, a, type="approval_response", peerId=b.id, approved=True)

        assert b_ws.types() == ["approved", "joined"]
        assert b.seated
        assert a_ws.types()[-1] == "start_negotiation"

    asyncio.run(scenario())


def test_pending_member_counts_toward_capacity() -> None:
    async def scenario() -> None:
        hub = make_hub()
        a, a_ws = connect(hub)
        b, _ = connect(hub)
        c, c_ws = connect(hub)
        await send(hub, a, type="join", room="r1", manualApproval=True)
        await send(hub, b, type="join", room="r1")
        await send(hub, c, type="join", room="r1")

        assert c_ws.last("error")["code"] == "room_full"
        assert a_ws.types().count("approval_request") == 1

    asyncio.run(scenario())


def test_approval_response_only_accepted_from_host() -> None:
    async def scenario() -> None:
        hub = make_hub()
        a, a_ws = connect(hub)
        b, b_ws = connect(hub)
        await send(hub, a, type="join", room="r1", manualApproval=True)
        await send(hub, b, type="join", room="r1")

        await send(hub, b, type="approval_response", peerId=b.id, approved=True)
        assert b.pending
        assert "approved" not in b_ws.types()

    asyncio.run(scenario())


def test_pending_approval_times_out() -> None:
    async def scenario() -> None:
        hub = make_hub(approval_timeout_seconds=0.05)
        a, a_ws = connect(hub)
        b, b_ws = connect(hub)
        await send(hub, a, type="join", room="r1", manualApproval=True)
        await send(hub, b, type="join", room="r1")
        assert b.pending

        await asyncio.sleep(0.2)

        assert b_ws.last("rejected")["reason"] == "approval_timeout"
        assert b.cleaned_up
        assert hub.rooms.get("r1").members == {a.id}

    asyncio.run(scenario())


def test_approval_cancels_timeout() -> None:
    async def scenario() -> None:
        hub = make_hub(approval_timeout_seconds=0.05)
        a, _ = connect(hub)
        b, b_ws = connect(hub)
        await send(hub, a, type="join", room="r1", manualApproval=True)
        await send(hub, b, type="join", room="r1")
        await send(hub, a, type="approval_response", peerId=b.id, approved=True)

        await asyncio.sleep(0.2)

        assert b.seated
        assert "rejected" not in b_ws.types()

    asyncio.run(scenario())


def test_join_without_room_is_dropped_silently() -> None:
    async def scenario() -> None:
        hub = make_hub()
        a, a_ws = connect(hub)
        await send(hub, a, type="join")
        await send(hub, a, type="join", room="")
        await hub.handle_incoming_message(a, "{not json")

        assert a_ws.types() == []
        assert len(hub.rooms) == 0
        assert not a.closed

    asyncio.run(scenario())


def test_second_join_from_same_connection_is_refused() -> None:
    async def scenario() -> None:
        hub = make_hub()
        a, a_ws = connect(hub)
        await send(hub, a, type="join", room="r1")
        await send(hub, a, type="join", room="r2")

        assert a_ws.last("error")["code"] == "already_in_room"
        assert "r2" not in hub.rooms

    asyncio.run(scenario())


def test_concurrent_joins_never_exceed_two_members() -> None:
    async def scenario(seed: int) -> None:
        rng = random.Random(seed)
        hub = make_hub()
        conns = [connect(hub) for _ in range(8)]

        async def attempt(conn) -> None:
            await asyncio.sleep(rng.random() / 100)
            await send(hub, conn, type="join", room="r1", password="pw")

        await asyncio.gather(*(attempt(c) for c, _ in conns))

        room = hub.rooms.get("r1")
        assert len(room.members) == 2
        hosts = [c for c, _ in conns if c.is_host]
        assert len(hosts) == 1 and hosts[0].id == room.host_id
        full = [ws for _, ws in conns if "error" in ws.types()]
        assert len(full) == 6

    for seed in range(3):
        asyncio.run(scenario(seed))

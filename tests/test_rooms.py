import asyncio

import pytest

from rendezvous.service.rooms import Room, RoomStore


def test_host_is_fixed_at_creation() -> None:
    room = Room("r1", "c_host")
    assert room.host_id == "c_host"
    assert room.members == {"c_host"}
    with pytest.raises(AttributeError):
        room.host_id = "c_other"


def test_add_and_remove_reject_inconsistent_membership() -> None:
    room = Room("r1", "c_host")
    room.add("c_guest")
    with pytest.raises(ValueError):
        room.add("c_guest")
    room.remove("c_guest")
    with pytest.raises(ValueError):
        room.remove("c_guest")


def test_token_is_single_use() -> None:
    room = Room("r1", "c_host")
    room.set_token("jti-1", now=1000.0)

    assert not room.consume_token("other", now=1001.0, ttl_seconds=60)
    assert room.consume_token("jti-1", now=1001.0, ttl_seconds=60)
    assert not room.consume_token("jti-1", now=1002.0, ttl_seconds=60)


def test_expired_token_is_not_consumed() -> None:
    room = Room("r1", "c_host")
    room.set_token("jti-1", now=1000.0)
    assert not room.consume_token("jti-1", now=1061.0, ttl_seconds=60)
    assert room.token_id == "jti-1"


def test_sweep_drops_empty_rooms_with_expired_tokens() -> None:
    store = RoomStore()
    abandoned = store.create("gone", "c_a", created_at=0.0)
    abandoned.set_token("t1", now=0.0)
    abandoned.members.clear()

    occupied = store.create("kept", "c_b", created_at=0.0)
    occupied.set_token("t2", now=0.0)

    fresh = store.create("fresh", "c_c", created_at=0.0)
    fresh.set_token("t3", now=95.0)
    fresh.members.clear()

    assert store.sweep_expired(now=100.0, ttl_seconds=60) == ["gone"]
    assert "gone" not in store
    assert "kept" in store and "fresh" in store
    # an occupied room survives but its stale token is invalidated
    assert occupied.token_id is None
    assert fresh.token_id == "t3"


def test_guard_serializes_and_is_released() -> None:
    store = RoomStore()
    order: list[str] = []

    async def step(name: str) -> None:
        async with store.guard("r1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    async def scenario() -> None:
        await asyncio.gather(step("a"), step("b"))

    asyncio.run(scenario())
    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert store._locks == {}
    assert store._lock_users == {}

import asyncio

import pytest

from doc_converter.conversion import ObserverRegistry
from stubs import StubObserver


@pytest.mark.asyncio
async def test_every_observer_receives_all_events_in_order() -> None:
    registry = ObserverRegistry()
    observers = [StubObserver() for _ in range(3)]
    for observer in observers:
        await registry.register(observer)

    for i in range(5):
        delivered = await registry.broadcast({"type": "job_update", "payload": {"seq": i}})
        assert delivered == 3

    for observer in observers:
        assert [m["payload"]["seq"] for m in observer.sent_messages] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_late_observer_only_sees_events_after_registration() -> None:
    registry = ObserverRegistry()
    early, late = StubObserver(), StubObserver()
    await registry.register(early)
    await registry.broadcast_job_delete("job-1")
    await registry.register(late)
    await registry.broadcast_job_delete("job-2")

    assert [m["job_id"] for m in early.sent_messages] == ["job-1", "job-2"]
    assert late.sent_messages == [{"type": "job_delete", "job_id": "job-2"}]


@pytest.mark.asyncio
async def test_failed_observer_does_not_block_others() -> None:
    registry = ObserverRegistry()
    broken, healthy = StubObserver(fail=True), StubObserver()
    await registry.register(broken)
    await registry.register(healthy)

    delivered = await registry.broadcast({"type": "job_delete", "job_id": "abc"})

    assert delivered == 1
    assert healthy.sent_messages == [{"type": "job_delete", "job_id": "abc"}]
    # left registered for its own read loop to clean up
    assert len(registry) == 2


@pytest.mark.asyncio
async def test_unregister_during_broadcast_is_safe() -> None:
    registry = ObserverRegistry()
    victim = StubObserver()

    class Unregisterer(StubObserver):
        async def send_text(self, data: str) -> None:
            await registry.unregister(victim)
            await registry.unregister(self)
            await super().send_text(data)

    first = Unregisterer()
    other = StubObserver()
    for observer in (first, victim, other):
        await registry.register(observer)

    await registry.broadcast({"type": "job_delete", "job_id": "x"})
    await registry.broadcast({"type": "job_delete", "job_id": "y"})

    assert [m["job_id"] for m in other.sent_messages] == ["x", "y"]
    assert [m["job_id"] for m in first.sent_messages] == ["x"]
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_concurrent_broadcasts_never_interleave_on_one_observer() -> None:
    registry = ObserverRegistry()
    observers = [StubObserver() for _ in range(2)]
    for observer in observers:
        await registry.register(observer)

    await asyncio.gather(
        *(registry.broadcast({"type": "job_delete", "job_id": str(i)}) for i in range(20))
    )

    for observer in observers:
        assert observer.overlapped is False
        assert sorted(int(m["job_id"]) for m in observer.sent_messages) == list(range(20))


@pytest.mark.asyncio
async def test_slow_send_does_not_hold_membership_lock() -> None:
    registry = ObserverRegistry()
    release = asyncio.Event()

    class SlowObserver(StubObserver):
        async def send_text(self, data: str) -> None:
            await release.wait()
            await super().send_text(data)

    slow = SlowObserver()
    await registry.register(slow)
    broadcast = asyncio.create_task(registry.broadcast({"type": "job_delete", "job_id": "a"}))
    await asyncio.sleep(0.01)

    newcomer = StubObserver()
    await asyncio.wait_for(registry.register(newcomer), timeout=1)
    await asyncio.wait_for(registry.unregister(newcomer), timeout=1)
    assert not broadcast.done()

    release.set()
    assert await broadcast == 1
    assert slow.sent_messages == [{"type": "job_delete", "job_id": "a"}]


@pytest.mark.asyncio
async def test_send_targets_single_registered_observer() -> None:
    registry = ObserverRegistry()
    target, bystander = StubObserver(), StubObserver()
    await registry.register(target)
    await registry.register(bystander)

    assert await registry.send(target, {"type": "pong"}) is True
    assert target.sent_messages == [{"type": "pong"}]
    assert bystander.sent_messages == []

    assert await registry.send(StubObserver(), {"type": "pong"}) is False

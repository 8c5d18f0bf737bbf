import asyncio
import pytest

from services.events import DomainEventQueue, MessagePosted

pytestmark = pytest.mark.asyncio


def _posted(content="hi @bob") -> MessagePosted:
    return MessagePosted(chat_id="chat_1", message_id="msg_1", sender_id="u1", sender_name="Priya", content=content)


async def test_drain_runs_handlers_in_order():
    queue = DomainEventQueue()
    seen = []

    async def record(event):
        seen.append(event.content)

    queue.subscribe(MessagePosted, record)
    queue.publish(_posted("one"))
    queue.publish(_posted("two"))

    assert await queue.drain() == 2
    assert seen == ["one", "two"]
    assert queue.pending == 0


async def test_failing_handler_does_not_block_the_next():
    queue = DomainEventQueue()
    seen = []

    async def explode(event):
        raise RuntimeError("notification store down")

    async def record(event):
        seen.append(event.message_id)

    queue.subscribe(MessagePosted, explode)
    queue.subscribe(MessagePosted, record)
    queue.publish(_posted())
    await queue.drain()
    assert seen == ["msg_1"]


async def test_stop_finishes_event_in_flight():
    queue = DomainEventQueue()
    started = asyncio.Event()
    handled = []

    async def slow(event):
        started.set()
        await asyncio.sleep(0.05)
        handled.append(event.message_id)

    queue.subscribe(MessagePosted, slow)
    queue.start()
    queue.publish(_posted())
    await started.wait()

    await queue.stop()
    assert handled == ["msg_1"]


async def test_stop_runs_events_still_queued():
    queue = DomainEventQueue()
    handled = []

    async def record(event):
        handled.append(event.content)

    queue.subscribe(MessagePosted, record)
    queue.publish(_posted("late"))
    await queue.stop()
    assert handled == ["late"]

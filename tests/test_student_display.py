from __future__ import annotations

import asyncio

import pytest

from livescreen.utils.channel import EVENT_STATE, SessionChannelHub
from livescreen.utils.errors import DataShapeError, PersistenceError
from livescreen.utils.session_state import Pointer, SessionState
from livescreen.utils.student_display import Backoff, StudentDisplay
from livescreen.utils.student_view import render_frame, render_stimulus

ROW_IDLE = {"id": "s1", "status": "in_progress", "current_subtest_id": None}
ROW_PHONICS = {"id": "s1", "status": "in_progress", "current_subtest_id": "PHONICS_CVC"}
PHONICS = {
    "id": "PHONICS_CVC",
    "module_type": "phonics",
    "stimulus_data": {"items": [{"text": "cat"}, {"text": "sun"}]},
}


async def until(condition, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


# --------------------- Rendering ---------------------

def test_frame_kinds():
    state = SessionState()
    assert render_frame(None, None, state)["kind"] == "loading"
    assert render_frame({"status": "completed", "current_subtest_id": "X"}, None, state)["kind"] == "completed"
    assert render_frame(ROW_IDLE, None, state)["kind"] == "waiting"
    # subtest still being fetched
    assert render_frame(ROW_PHONICS, None, state)["kind"] == "waiting"
    # stale subtest from before a navigation
    assert render_frame(ROW_PHONICS, {"id": "HFW_G1"}, state)["kind"] == "waiting"


def test_stimulus_frame_tracks_item_and_pointer():
    state = SessionState(current_item_index=1, pointer_position=Pointer(25.0, 75.0))
    frame = render_frame(ROW_PHONICS, PHONICS, state)
    assert frame["kind"] == "stimulus"
    assert frame["content"] == {"text": "sun"}
    assert frame["item_index"] == 1
    assert frame["pointer"] == {"x": 25.0, "y": 75.0}


def test_placeholder_when_item_is_missing():
    frame = render_frame(ROW_PHONICS, PHONICS, SessionState(current_item_index=5))
    assert frame["kind"] == "placeholder"
    assert frame["message"] == "No stimulus loaded"


@pytest.mark.parametrize(
    "module_type, item, content",
    [
        ("orf", {"passage": "The cat sat."}, {"passage": "The cat sat."}),
        ("orf", {"text": "A dog ran."}, {"passage": "A dog ran."}),
        ("hfw", "the", {"text": "the"}),
        ("phonological_awareness", {"text": "cat", "options": ["hat", "dog"]}, {"text": "cat", "options": ["hat", "dog"]}),
        ("phonological_awareness", {"text": "sun"}, {"text": "sun"}),
        ("print_awareness", {"text": "Show me the title."}, {"text": "Show me the title."}),
        ("comprehension", {"passage": "P", "text": "Q?", "options": ["a", "b"]}, {"passage": "P", "text": "Q?", "options": ["a", "b"]}),
        (None, {"text": "x"}, {"text": "x"}),
    ],
)
def test_render_stimulus_per_module(module_type, item, content):
    assert render_stimulus(module_type, {"items": [item]}, 0) == content


@pytest.mark.parametrize(
    "module_type, data",
    [
        ("phonics", {"items": [{"passage": "only a passage"}]}),
        ("orf", {"items": [{"options": ["a"]}]}),
        ("comprehension", {"items": [{"unrelated": 1}]}),
        ("phonics", {"items": [42]}),
        ("phonics", None),
    ],
)
def test_render_stimulus_rejects_wrong_shapes(module_type, data):
    with pytest.raises(DataShapeError):
        render_stimulus(module_type, data, 0)


# --------------------- Backoff ---------------------

def test_backoff_doubles_up_to_maximum():
    backoff = Backoff(0.5, 3.0, 2.0)
    assert [backoff.next() for _ in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]
    backoff.reset()
    assert backoff.next() == 0.5


def test_backoff_rejects_bad_parameters():
    with pytest.raises(ValueError):
        Backoff(0, 1, 2)
    with pytest.raises(ValueError):
        Backoff(2, 1, 2)


# --------------------- Display ---------------------

class Harness:
    def __init__(self, row=None, subtests=None):
        self.hub = SessionChannelHub()
        self.row = dict(row or ROW_IDLE)
        self.subtests = subtests if subtests is not None else {"PHONICS_CVC": PHONICS}
        self.gate: asyncio.Event | None = None
        self.frames = []
        self.display = StudentDisplay(
            "s1",
            fetch_session=self.fetch_session,
            fetch_subtest=self.fetch_subtest,
            on_frame=self.on_frame,
            hub=self.hub,
            backoff=Backoff(0.01, 0.05, 2.0),
        )

    async def fetch_session(self, session_id):
        return dict(self.row)

    async def fetch_subtest(self, subtest_id):
        if self.gate is not None:
            await self.gate.wait()
        return self.subtests.get(subtest_id)

    async def on_frame(self, frame):
        self.frames.append(frame)

    @property
    def last(self):
        return self.frames[-1] if self.frames else None

    async def start(self):
        task = asyncio.create_task(self.display.run())
        await until(lambda: self.frames)
        return task


async def stop(task):
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_first_frame_comes_from_the_durable_row():
    async def scenario():
        h = Harness(row=ROW_PHONICS)
        task = await h.start()
        await stop(task)
        return h

    h = asyncio.run(scenario())
    assert h.frames[0]["kind"] == "stimulus"
    assert h.frames[0]["content"] == {"text": "cat"}


def test_waiting_frame_while_subtest_loads():
    async def scenario():
        h = Harness()
        task = await h.start()
        assert h.last["kind"] == "waiting"

        h.gate = asyncio.Event()
        h.row = dict(ROW_PHONICS)
        h.hub.publish_row("s1", ROW_PHONICS)
        await asyncio.sleep(0.02)
        kinds_while_blocked = [f["kind"] for f in h.frames]

        h.gate.set()
        await until(lambda: h.last["kind"] == "stimulus")
        await stop(task)
        return kinds_while_blocked, h.last

    blocked, last = asyncio.run(scenario())
    assert blocked[-1] == "waiting"
    assert "stimulus" not in blocked
    assert last["content"] == {"text": "cat"}


def test_state_messages_apply_last_received_wins():
    async def scenario():
        h = Harness(row=ROW_PHONICS)
        task = await h.start()
        h.hub.publish("s1", EVENT_STATE, {"pointerPosition": {"x": 10, "y": 20}})
        h.hub.publish("s1", EVENT_STATE, {"currentItemIndex": 1})
        await until(lambda: h.display.state.current_item_index == 1)
        await stop(task)
        return h

    h = asyncio.run(scenario())
    assert h.last["content"] == {"text": "sun"}
    # the pointer survives a message that does not mention it
    assert h.last["pointer"] == {"x": 10.0, "y": 20.0}


def test_malformed_state_keeps_last_good_state():
    async def scenario():
        h = Harness(row=ROW_PHONICS)
        task = await h.start()
        h.hub.publish("s1", EVENT_STATE, {"currentItemIndex": 1})
        h.hub.publish("s1", EVENT_STATE, {"currentItemIndex": "two"})
        await until(lambda: len(h.frames) >= 3)
        await stop(task)
        return h

    h = asyncio.run(scenario())
    assert h.display.state.current_item_index == 1
    assert h.last["kind"] == "stimulus"


def test_session_end_shows_completed():
    async def scenario():
        h = Harness(row=ROW_PHONICS)
        task = await h.start()
        h.hub.publish_row("s1", {**ROW_PHONICS, "status": "completed"})
        await until(lambda: h.last["kind"] == "completed")
        await stop(task)

    asyncio.run(scenario())


def test_reconnects_after_channel_drop_and_keeps_state():
    async def scenario():
        h = Harness(row=ROW_PHONICS)
        task = await h.start()
        h.hub.publish_state("s1", SessionState(current_item_index=1))
        await until(lambda: h.display.state.current_item_index == 1)

        h.hub.disconnect("s1")
        await until(lambda: h.display.reconnects == 1 and h.hub.subscriber_count("s1") == 1)
        state_after_drop = h.display.state

        h.hub.publish_state("s1", SessionState(current_item_index=0))
        await until(lambda: h.display.state.current_item_index == 0)
        await stop(task)
        return state_after_drop, h

    state_after_drop, h = asyncio.run(scenario())
    assert state_after_drop.current_item_index == 1
    assert h.last["content"] == {"text": "cat"}


def test_failed_subtest_fetch_keeps_waiting():
    async def scenario():
        h = Harness(row=ROW_PHONICS)

        async def failing(subtest_id):
            raise PersistenceError("db down")

        h.display.fetch_subtest = failing
        task = await h.start()
        await stop(task)
        return h

    h = asyncio.run(scenario())
    assert h.last["kind"] == "waiting"

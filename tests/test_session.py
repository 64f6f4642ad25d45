"""SearchSession: fan-out, load more, supersession and history side effects."""

import asyncio

import pytest

from noderef.models.state import SearchStatus
from noderef.orchestrator.dispatcher import Dispatcher
from noderef.orchestrator.session import SearchSession


class RecordingHistory:
    def __init__(self):
        self.entries = []

    async def record_history(self, query_text, result_count):
        self.entries.append((query_text, result_count))


class BrokenHistory:
    async def record_history(self, query_text, result_count):
        raise RuntimeError("history store offline")


@pytest.fixture
def history() -> RecordingHistory:
    return RecordingHistory()


@pytest.fixture
def session(fake_backend, history) -> SearchSession:
    return SearchSession(Dispatcher(fake_backend, page_size=50), history=history)


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


async def test_single_source_first_page(session, fake_backend, raw_item, source_a) -> None:
    fake_backend.add_page(
        1,
        [raw_item("a1", 1), raw_item("a2", 2), raw_item("a3", 3)],
        has_more_items=True,
        total_items=10,
    )

    state = await session.query("q", [source_a])

    assert state.status is SearchStatus.READY
    assert len(state.items) == 3
    assert state.combined_pagination.total_items == 10
    assert state.combined_pagination.has_more_items is True


async def test_two_sources_with_one_unknown_total(
    session, fake_backend, raw_item, source_a, source_b
) -> None:
    fake_backend.add_page(1, [raw_item("a1"), raw_item("a2")], has_more_items=False)
    fake_backend.add_page(
        2, [raw_item("b1"), raw_item("b2"), raw_item("b3")], has_more_items=True, total_items=8
    )

    state = await session.query("q", [source_a, source_b])

    assert state.combined_pagination.has_more_items is True
    assert state.combined_pagination.total_items is None
    assert state.combined_pagination.count == 5


async def test_two_sources_with_known_totals(
    session, fake_backend, raw_item, source_a, source_b
) -> None:
    fake_backend.add_page(1, [raw_item("a1"), raw_item("a2")], has_more_items=False, total_items=2)
    fake_backend.add_page(2, [raw_item("b1")], has_more_items=True, total_items=8)

    state = await session.query("q", [source_a, source_b])

    assert state.combined_pagination.total_items == 10


async def test_load_more_is_noop_when_nothing_left(
    session, fake_backend, raw_item, source_a, source_b
) -> None:
    fake_backend.add_page(1, [raw_item("a1")], has_more_items=False)
    fake_backend.add_page(2, [raw_item("b1")], has_more_items=False)
    before = await session.query("q", [source_a, source_b])
    calls = list(fake_backend.calls)

    assert await session.load_more() is False
    assert fake_backend.calls == calls
    assert session.state is before


async def test_partial_failure(session, fake_backend, raw_item, source_a, source_b) -> None:
    fake_backend.fail(1)
    fake_backend.add_page(2, [raw_item(f"b{i}", i) for i in range(5)])

    state = await session.query("q", [source_a, source_b])

    assert state.status is SearchStatus.READY
    assert len(state.items) == 5
    assert {i.source_id for i in state.items} == {2}
    assert state.error is None
    assert list(state.per_source) == [2]
    assert 1 in state.source_errors


async def test_total_failure_then_new_query(
    session, fake_backend, raw_item, source_a, source_b
) -> None:
    fake_backend.fail(1)
    fake_backend.fail(2)

    state = await session.query("q", [source_a, source_b])

    assert state.status is SearchStatus.READY
    assert state.items == ()
    assert state.error

    fake_backend.add_page(1, [raw_item("a1")], query="again")
    recovered = await session.query("again", [source_a])
    assert recovered.error is None
    assert len(recovered.items) == 1


async def test_query_without_sources_is_noop(session, fake_backend) -> None:
    state = await session.query("q", [])

    assert state.status is SearchStatus.IDLE
    assert fake_backend.calls == []


async def test_load_more_appends_next_window(fake_backend, raw_item, source_a, source_b) -> None:
    session = SearchSession(Dispatcher(fake_backend, page_size=2))
    fake_backend.add_page(
        1, [raw_item("a1", 10), raw_item("a2", 9)], has_more_items=True, total_items=3,
        skip_count=0, max_items=2,
    )
    fake_backend.add_page(2, [raw_item("b1", 5)], has_more_items=False, total_items=1)
    fake_backend.add_page(
        1, [raw_item("a3", 20)], skip_count=2, has_more_items=False, total_items=3, max_items=2,
    )
    await session.query("q", [source_a, source_b])

    assert await session.load_more() is True

    state = session.state
    assert fake_backend.calls[-1] == (1, "q", 2, 2)
    assert [i.id for i in state.items] == ["a3", "a1", "a2", "b1"]
    assert state.per_source[1].skip_count == 2
    assert state.combined_pagination.has_more_items is False
    assert state.combined_pagination.total_items == 4
    assert await session.load_more() is False


async def test_load_more_never_duplicates(session, fake_backend, raw_item, source_a) -> None:
    fake_backend.add_page(1, [raw_item("a1", 3), raw_item("a2", 2)], has_more_items=True)
    # the repository shifted: page two repeats a2
    fake_backend.add_page(
        1, [raw_item("a2", 2), raw_item("a3", 1)], skip_count=50, has_more_items=True
    )
    fake_backend.add_page(1, [raw_item("a3", 1), raw_item("a4", 0)], skip_count=100)
    await session.query("q", [source_a])

    await session.load_more()
    await session.load_more()

    keys = [i.key for i in session.state.items]
    assert len(keys) == len(set(keys))
    assert [k[1] for k in keys] == ["a1", "a2", "a3", "a4"]


async def test_load_more_against_unchanged_remote_is_idempotent(
    session, fake_backend, raw_item, source_a
) -> None:
    page = [raw_item("a1", 3), raw_item("a2", 2)]
    fake_backend.add_page(1, page, has_more_items=True)
    fake_backend.add_page(1, page, skip_count=50, has_more_items=True)
    before = (await session.query("q", [source_a])).items

    await session.load_more()

    assert session.state.items == before


async def test_concurrent_load_more_is_rejected(session, fake_backend, raw_item, source_a) -> None:
    fake_backend.add_page(1, [raw_item("a1")], has_more_items=True)
    fake_backend.add_page(1, [raw_item("a2")], skip_count=50)
    await session.query("q", [source_a])
    gate = fake_backend.gate(1)

    first = asyncio.create_task(session.load_more())
    await _settle()
    assert session.state.is_loading_more
    assert session.state.items  # previous results stay visible

    assert await session.load_more() is False

    gate.set()
    assert await first is True
    assert len(session.state.items) == 2
    assert [c[2] for c in fake_backend.calls] == [0, 50]


async def test_load_more_is_rejected_while_loading(
    session, fake_backend, raw_item, source_a
) -> None:
    fake_backend.add_page(1, [raw_item("a1")], has_more_items=True)
    gate = fake_backend.gate(1)

    task = asyncio.create_task(session.query("q", [source_a]))
    await _settle()
    assert session.state.is_loading
    assert await session.load_more() is False

    gate.set()
    await task


async def test_newer_query_supersedes_in_flight_one(
    session, fake_backend, history, raw_item, source_a
) -> None:
    fake_backend.add_page(1, [raw_item("x1")], query="x")
    fake_backend.add_page(1, [raw_item("y1"), raw_item("y2")], query="y")
    gate_x = fake_backend.gate(1, "x")

    stale = asyncio.create_task(session.query("x", [source_a]))
    await _settle()
    await session.query("y", [source_a])
    gate_x.set()
    await stale
    await session.drain()

    state = session.state
    assert state.query_text == "y"
    assert {i.id for i in state.items} == {"y1", "y2"}
    assert history.entries == [("y", 2)]


async def test_query_during_load_more_discards_the_page(
    session, fake_backend, raw_item, source_a
) -> None:
    fake_backend.add_page(1, [raw_item("a1")], has_more_items=True)
    fake_backend.add_page(1, [raw_item("a2")], skip_count=50)
    fake_backend.add_page(1, [raw_item("z1")], query="z")
    await session.query("q", [source_a])
    gate = fake_backend.gate(1)

    more = asyncio.create_task(session.load_more())
    await _settle()
    await session.query("z", [source_a])
    gate.set()
    await more

    assert session.state.query_text == "z"
    assert [i.id for i in session.state.items] == ["z1"]


async def test_reset_discards_in_flight_results(session, fake_backend, raw_item, source_a) -> None:
    fake_backend.add_page(1, [raw_item("a1")])
    gate = fake_backend.gate(1)

    task = asyncio.create_task(session.query("q", [source_a]))
    await _settle()
    session.reset()
    gate.set()
    await task

    assert session.state.status is SearchStatus.IDLE
    assert session.state.items == ()


async def test_cancelled_query_does_not_leave_session_loading(
    session, fake_backend, raw_item, source_a
) -> None:
    fake_backend.add_page(1, [raw_item("a1")])
    fake_backend.add_page(1, [raw_item("z1")], query="z")
    fake_backend.gate(1)

    task = asyncio.create_task(session.query("q", [source_a]))
    await _settle()
    assert session.state.is_loading
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert session.state.status is SearchStatus.READY
    assert session.state.error is None
    assert not session.state.is_loading
    assert await session.load_more() is False

    state = await session.query("z", [source_a])
    assert [i.id for i in state.items] == ["z1"]


async def test_history_records_total_or_count(
    session, fake_backend, history, raw_item, source_a
) -> None:
    fake_backend.add_page(1, [raw_item("a1")], has_more_items=True, total_items=40)
    fake_backend.add_page(1, [raw_item("b1"), raw_item("b2")], query="  other  ")

    await session.query("q", [source_a])
    await session.query("  other  ", [source_a])
    await session.drain()

    assert history.entries == [("q", 40), ("other", 2)]


async def test_history_skips_blank_and_failed_queries(
    session, fake_backend, history, raw_item, source_a
) -> None:
    fake_backend.add_page(1, [raw_item("a1")], query="   ")
    fake_backend.fail(1, query="broken")

    await session.query("   ", [source_a])
    await session.query("broken", [source_a])
    await session.drain()

    assert history.entries == []


async def test_history_failure_never_reaches_state(fake_backend, raw_item, source_a) -> None:
    session = SearchSession(Dispatcher(fake_backend), history=BrokenHistory())
    fake_backend.add_page(1, [raw_item("a1")])

    state = await session.query("q", [source_a])
    await session.drain()

    assert state.error is None
    assert session.state.error is None
    assert len(session.state.items) == 1


async def test_observers_see_every_transition(session, fake_backend, raw_item, source_a) -> None:
    seen = []
    fake_backend.add_page(1, [raw_item("a1")])

    def broken(state):
        raise ValueError("observer bug")

    session.subscribe(broken)
    unsubscribe = session.subscribe(lambda state: seen.append(state.status))
    await session.query("q", [source_a])
    unsubscribe()
    session.reset()

    assert seen == [SearchStatus.LOADING, SearchStatus.READY]

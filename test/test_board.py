import pytest
import random
from datetime import datetime, timezone

import pydantic_core

from wish_lantern import (
    ANONYMOUS_AUTHOR,
    EmptyWishError,
    StoreError,
    WishBoard,
    WishDeleted,
    WishInserted,
    WishUpdated,
    open_board,
)
from conftest import FakeStore, make_wish, wait_until


# --- reconciliation ---

@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_inserts_with_distinct_ids_grow_collection(seed):
    rng = random.Random(seed)
    board = WishBoard(FakeStore())
    wishes = [make_wish(minutes=rng.randint(0, 100)) for _ in range(rng.randint(1, 20))]
    for wish in wishes:
        board.apply(WishInserted(new=wish))
    assert board.total_count == len({w.id for w in wishes})
    # Inserts keep arrival order.
    assert [w.id for w in board.wishes] == [w.id for w in wishes]


def test_insert_of_known_id_replaces_instead_of_duplicating():
    wish = make_wish("x")
    board = WishBoard(FakeStore())
    board.apply(WishInserted(new=wish))
    board.apply(WishInserted(new=wish))
    assert board.total_count == 1


def test_update_replaces_in_place():
    first, second, third = make_wish("a"), make_wish("b"), make_wish("c")
    board = WishBoard(FakeStore())
    for wish in (first, second, third):
        board.apply(WishInserted(new=wish))

    burned = second.model_copy(update={"burned_at": datetime.now(timezone.utc)})
    board.apply(WishUpdated(new=burned))

    assert [w.id for w in board.wishes] == ["a", "b", "c"]
    assert board.get("b") == burned


def test_update_for_unknown_id_is_a_noop():
    board = WishBoard(FakeStore())
    board.apply(WishInserted(new=make_wish("a")))
    board.apply(WishUpdated(new=make_wish("zzz")))
    assert board.total_count == 1
    assert board.get("zzz") is None


def test_update_replayed_twice_is_idempotent():
    board = WishBoard(FakeStore())
    board.apply(WishInserted(new=make_wish("a")))
    event = WishUpdated(new=make_wish("a", burned=True))
    board.apply(event)
    once = board.wishes
    board.apply(event)
    assert board.wishes == once


@pytest.mark.parametrize("present", [True, False])
def test_delete_removes_id_whether_or_not_present(present):
    board = WishBoard(FakeStore())
    board.apply(WishInserted(new=make_wish("keep")))
    if present:
        board.apply(WishInserted(new=make_wish("gone")))
    board.apply(WishDeleted(id="gone"))
    assert board.get("gone") is None
    assert [w.id for w in board.wishes] == ["keep"]


@pytest.mark.parametrize("event", [None, {"kind": "INSERT"}, "UPDATE", 42])
def test_malformed_events_are_ignored(event):
    board = WishBoard(FakeStore())
    board.apply(WishInserted(new=make_wish("a")))
    assert board.apply(event) is False
    assert board.total_count == 1


def test_listeners_run_after_each_reconciliation():
    board = WishBoard(FakeStore())
    seen = []
    board.listen(lambda b: seen.append(b.total_count))
    board.apply(WishInserted(new=make_wish("a")))
    board.apply(WishInserted(new=make_wish("b")))
    board.apply(object())
    assert seen == [1, 2]


def test_failing_listener_does_not_stop_reconciliation():
    board = WishBoard(FakeStore())

    def broken(_):
        raise RuntimeError("render failed")

    board.listen(broken)
    board.apply(WishInserted(new=make_wish("a")))
    assert board.total_count == 1


# --- derived views ---

@pytest.mark.parametrize("seed", range(5))
def test_derived_views(seed):
    rng = random.Random(seed)
    board = WishBoard(FakeStore())
    for i in range(rng.randint(0, 12)):
        board.apply(WishInserted(new=make_wish(str(i), minutes=i, burned=rng.random() < 0.4)))

    active = board.active_wishes
    assert all(w.burned_at is None for w in active)
    assert len(board.recent_wishes) == min(5, len(active))
    assert board.recent_wishes == active[:5]
    assert board.total_count == len(board.wishes)


# --- initialize ---

@pytest.mark.asyncio
async def test_initialize_loads_newest_first():
    old, new = make_wish("old", minutes=1), make_wish("new", minutes=2)
    board = WishBoard(FakeStore([old, new]))
    await board.initialize()
    assert [w.id for w in board.wishes] == ["new", "old"]
    assert board.load_error is None


@pytest.mark.asyncio
async def test_initialize_failure_leaves_board_empty():
    store = FakeStore([make_wish("a")], fail_on={"list"})
    board = WishBoard(store)
    board.apply(WishInserted(new=make_wish("stale")))
    with pytest.raises(StoreError):
        await board.initialize()
    assert board.wishes == []
    assert isinstance(board.load_error, StoreError)
    # No automatic retry.
    assert store.calls == ["list"]


# --- submit ---

@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   ", "\n\t"])
async def test_submit_rejects_empty_content_before_calling_store(content):
    store = FakeStore()
    board = WishBoard(store)
    with pytest.raises(EmptyWishError):
        await board.submit(content, "someone")
    assert store.calls == []


@pytest.mark.asyncio
async def test_submit_rejects_overlong_fields_before_calling_store():
    store = FakeStore()
    board = WishBoard(store)
    with pytest.raises(pydantic_core.ValidationError):
        await board.submit("x" * 201)
    with pytest.raises(pydantic_core.ValidationError):
        await board.submit("fine", "y" * 51)
    assert store.calls == []


@pytest.mark.asyncio
async def test_submit_does_not_touch_local_state():
    store = FakeStore()
    board = WishBoard(store)
    wish = await board.submit("  hello  ", "")
    assert wish.content == "  hello  "
    assert wish.author == ANONYMOUS_AUTHOR
    assert 0 <= wish.position_x < 1 and 0 <= wish.position_y < 1
    assert board.total_count == 0


@pytest.mark.asyncio
async def test_submit_rings_cue_once_per_success():
    cued = []
    board = WishBoard(FakeStore(), on_submitted=cued.append)
    first = await board.submit("one")
    second = await board.submit("two", "Mina")
    assert cued == [first, second]
    assert second.author == "Mina"


@pytest.mark.asyncio
async def test_submit_failure_raises_without_cue_or_retry():
    cued = []
    store = FakeStore(fail_on={"insert"})
    board = WishBoard(store, on_submitted=cued.append)
    with pytest.raises(StoreError):
        await board.submit("hello")
    assert cued == []
    assert store.calls == ["insert"]


# --- burn ---

@pytest.mark.asyncio
async def test_burn_sends_update_with_current_time():
    fixed = datetime(2026, 1, 1, 0, 5, tzinfo=timezone.utc)
    store = FakeStore([make_wish("a")])
    board = WishBoard(store, clock=lambda: fixed)
    await board.initialize()
    burned = await board.burn("a")
    assert burned.burned_at == fixed
    # Local state waits for the UPDATE event.
    assert board.get("a").burned_at is None


@pytest.mark.asyncio
async def test_burn_of_known_burned_wish_skips_store():
    store = FakeStore([make_wish("a", burned=True)])
    board = WishBoard(store)
    await board.initialize()
    assert await board.burn("a") is None
    assert store.calls == ["list"]


@pytest.mark.asyncio
async def test_burn_failure_propagates():
    store = FakeStore()
    board = WishBoard(store)
    with pytest.raises(StoreError):
        await board.burn("missing")


# --- live session ---

@pytest.mark.asyncio
async def test_submit_scenario_round_trips_through_events():
    store = FakeStore()
    async with open_board(store) as board:
        assert board.total_count == 0
        await board.submit("hello", "")
        await wait_until(lambda: board.total_count == 1)

        wish = board.wishes[0]
        assert wish.content == "hello"
        assert wish.author == ANONYMOUS_AUTHOR
        assert wish.burned_at is None
        assert board.active_wishes == [wish]
    assert store.subscribers == []


@pytest.mark.asyncio
async def test_burn_scenario_round_trips_through_events():
    store = FakeStore([make_wish("x")])
    async with open_board(store) as board:
        assert [w.id for w in board.active_wishes] == ["x"]
        await board.burn("x")
        await wait_until(lambda: not board.active_wishes)
        assert board.total_count == 1
        assert board.get("x").burned_at is not None


@pytest.mark.asyncio
async def test_session_survives_failed_initial_load():
    store = FakeStore(fail_on={"list"})
    async with open_board(store) as board:
        assert board.wishes == []
        assert board.load_error is not None
        store.emit(WishInserted(new=make_wish("late")))
        await wait_until(lambda: board.total_count == 1)


@pytest.mark.asyncio
async def test_events_from_other_clients_are_reconciled_in_order():
    store = FakeStore()
    async with open_board(store) as board:
        wish = make_wish("other")
        store.emit(WishInserted(new=wish))
        store.emit(WishUpdated(new=make_wish("other", burned=True)))
        store.emit(WishInserted(new=make_wish("another")))
        store.emit(WishDeleted(id="another"))
        await wait_until(lambda: board.get("other") is not None and board.get("other").is_burned)
        await wait_until(lambda: board.get("another") is None and store.subscribers[0].queue.empty())
        assert board.total_count == 1


@pytest.mark.asyncio
async def test_content_length_limit_applies_to_text_as_typed():
    store = FakeStore()
    board = WishBoard(store)
    with pytest.raises(pydantic_core.ValidationError):
        await board.submit(" " + "x" * 200)
    assert store.calls == []


def test_stale_insert_never_unburns_a_wish():
    board = WishBoard(FakeStore())
    board.apply(WishInserted(new=make_wish("w", burned=True)))
    active_views = []
    board.listen(lambda b: active_views.append([w.id for w in b.active_wishes]))

    board.apply(WishInserted(new=make_wish("w")))
    board.apply(WishUpdated(new=make_wish("w", burned=True)))

    assert active_views == [[], []]
    assert board.get("w").is_burned


@pytest.mark.asyncio
async def test_events_queued_before_load_do_not_revive_burned_wishes():
    unburned = make_wish("w")
    burned = make_wish("w", burned=True)
    store = FakeStore([burned])
    active_views = []

    original_list = store.list

    async def list_after_changes():
        # Changes made while the load is in flight are already queued.
        store.emit(WishInserted(new=unburned))
        store.emit(WishUpdated(new=burned))
        return await original_list()

    store.list = list_after_changes
    async with open_board(store) as board:
        board.listen(lambda b: active_views.append([w.id for w in b.active_wishes]))
        await wait_until(lambda: store.subscribers[0].queue.empty() and len(active_views) == 2)
        assert active_views == [[], []]
        assert board.active_wishes == []
        assert board.total_count == 1

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from wish_lantern.errors import StoreError
from wish_lantern.models import Wish, WishDeleted, WishDraft, WishInserted, WishUpdated
from wish_lantern.protocols import Subscription

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_wish(wish_id=None, content="a wish", minutes=0, burned=False, author="익명"):
    created_at = BASE_TIME + timedelta(minutes=minutes)
    return Wish(
        id=wish_id or uuid.uuid4().hex,
        content=content,
        author=author,
        created_at=created_at,
        burned_at=created_at + timedelta(seconds=30) if burned else None,
        position_x=0.5,
        position_y=0.5,
    )


class FakeStore:
    """An in-process wish store that echoes every mutation as a change event."""

    table = "wishes"

    def __init__(self, wishes=(), fail_on=()):
        self.rows = {wish.id: wish for wish in wishes}
        self.fail_on = set(fail_on)
        self.calls = []
        self.subscribers = []

    def _check(self, op):
        self.calls.append(op)
        if op in self.fail_on:
            raise StoreError(f"{op} failed")

    def emit(self, event):
        for subscription in self.subscribers:
            subscription.queue.put_nowait(event)

    async def list(self):
        self._check("list")
        return sorted(self.rows.values(), key=lambda w: w.created_at, reverse=True)

    async def insert(self, draft: WishDraft):
        self._check("insert")
        wish = Wish(
            id=uuid.uuid4().hex,
            content=draft.content,
            author=draft.author,
            created_at=datetime.now(timezone.utc),
            position_x=draft.position_x,
            position_y=draft.position_y,
        )
        self.rows[wish.id] = wish
        self.emit(WishInserted(new=wish))
        return wish

    async def update(self, wish_id, burned_at):
        self._check("update")
        if wish_id not in self.rows:
            raise StoreError(f"Wish {wish_id} not found")
        wish = self.rows[wish_id]
        if wish.burned_at is None:
            wish = wish.model_copy(update={"burned_at": burned_at})
            self.rows[wish_id] = wish
            self.emit(WishUpdated(new=wish))
        return wish

    async def delete(self, wish_id):
        self._check("delete")
        if self.rows.pop(wish_id, None) is not None:
            self.emit(WishDeleted(id=wish_id))

    async def subscribe(self, table):
        subscription = Subscription(table, asyncio.Queue())
        self.subscribers.append(subscription)
        return subscription

    async def unsubscribe(self, subscription):
        self.subscribers.remove(subscription)


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Timed out waiting for the board to catch up")
        await asyncio.sleep(0.01)

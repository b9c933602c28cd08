"""
This module defines the abstract protocols for the wish store and its change
notifications.

The board only talks to these `Protocol`-based interfaces, so the SQLite
adaptor can be swapped for another backend (or an in-process fake in tests)
without touching the reconciliation logic.
"""
import asyncio
from datetime import datetime
from typing import AsyncIterator, List, Protocol

from .models import ChangeEvent, Wish, WishDraft


class Subscription:
    """
    A live handle on one table's change events. Events arrive on `queue` in the
    order the notifier observed them; iterate the subscription to drain it.
    """

    def __init__(self, table: str, queue: "asyncio.Queue[ChangeEvent]"):
        self.table = table
        self.queue = queue

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._drain()

    async def _drain(self) -> AsyncIterator[ChangeEvent]:
        while True:
            yield await self.queue.get()


class Notifier(Protocol):
    """
    Defines the contract for pushing row changes to subscribers.
    """

    async def start(self):
        ...

    async def stop(self):
        ...

    async def subscribe(self, table: str) -> asyncio.Queue:
        ...

    async def unsubscribe(self, table: str, queue: asyncio.Queue):
        ...


class WishStore(Protocol):
    """
    Defines the contract every wish store adaptor must implement.
    The store is the single source of truth; none of these calls update a
    subscriber's local state directly.
    """

    table: str

    async def list(self) -> List[Wish]:
        ...

    async def insert(self, draft: WishDraft) -> Wish:
        ...

    async def update(self, wish_id: str, burned_at: datetime) -> Wish:
        ...

    async def delete(self, wish_id: str):
        ...

    async def subscribe(self, table: str) -> Subscription:
        ...

    async def unsubscribe(self, subscription: Subscription):
        ...

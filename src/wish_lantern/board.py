"""
The synchronization core: a local, ordered copy of the wish table that is
loaded once and then kept current from the store's change events.

The board never writes to its own collection from a mutation call. `submit`
and `burn` only forward the request to the store; the resulting INSERT or
UPDATE comes back through the subscription like any other client's change.
"""
import asyncio
import logging
import random
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, List

from .errors import EmptyWishError, StoreError
from .models import (
    ANONYMOUS_AUTHOR,
    Wish,
    WishDeleted,
    WishDraft,
    WishInserted,
    WishUpdated,
)
from .protocols import Subscription, WishStore

RECENT_LIMIT = 5


class WishBoard:
    def __init__(
        self,
        store: WishStore,
        *,
        on_submitted: Callable[[Wish], Any] | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.on_submitted = on_submitted
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._wishes: List[Wish] = []
        self._listeners: List[Callable[["WishBoard"], Any]] = []
        self.load_error: StoreError | None = None

    @property
    def wishes(self) -> List[Wish]:
        """A copy of the synchronized collection, in board order."""
        return list(self._wishes)

    @property
    def active_wishes(self) -> List[Wish]:
        return [wish for wish in self._wishes if wish.burned_at is None]

    @property
    def recent_wishes(self) -> List[Wish]:
        return self.active_wishes[:RECENT_LIMIT]

    @property
    def total_count(self) -> int:
        return len(self._wishes)

    def get(self, wish_id: str) -> Wish | None:
        for wish in self._wishes:
            if wish.id == wish_id:
                return wish
        return None

    def listen(self, callback: Callable[["WishBoard"], Any]):
        """Registers a callback run after every load and every reconciliation."""
        self._listeners.append(callback)

    def _notify(self):
        for callback in self._listeners:
            try:
                callback(self)
            except Exception as e:
                logging.error(f"Board listener {callback!r} failed: {e}")

    async def initialize(self):
        """
        Replaces the collection with a full read of the store, newest first.
        On failure the collection is left empty and the StoreError propagates.
        """
        try:
            wishes = await self.store.list()
        except StoreError as e:
            self._wishes = []
            self.load_error = e
            logging.error(f"Failed to load wishes: {e}")
            raise
        self._wishes = list(wishes)
        self.load_error = None
        logging.info(f"Board loaded {len(self._wishes)} wishes")
        self._notify()

    def apply(self, event: Any) -> bool:
        """
        Reconciles one change event into the collection. Returns False when
        the event was not understood and was ignored.
        """
        match event:
            case WishInserted(new=wish):
                # The subscription is opened before the initial load, so a
                # wish may arrive both ways; keep one copy per id.
                if not self._replace(wish):
                    self._wishes.append(wish)
            case WishUpdated(new=wish):
                self._replace(wish)
            case WishDeleted(id=wish_id):
                self._wishes = [w for w in self._wishes if w.id != wish_id]
            case _:
                logging.warning(f"Ignoring unexpected change event: {event!r}")
                return False
        self._notify()
        return True

    def _replace(self, wish: Wish) -> bool:
        for index, existing in enumerate(self._wishes):
            if existing.id == wish.id:
                # Burning is one-way: a stale copy queued before the initial
                # load must not bring a burned wish back.
                if not (existing.is_burned and not wish.is_burned):
                    self._wishes[index] = wish
                return True
        return False

    async def run(self, subscription: Subscription):
        """Drains the subscription, one event at a time, until cancelled."""
        async for event in subscription:
            self.apply(event)

    async def submit(self, content: str, author: str | None = None) -> Wish:
        # Trimming only decides emptiness; the wish is stored as typed.
        if not content or not content.strip():
            raise EmptyWishError("A wish needs some content.")
        if not author or not author.strip():
            author = ANONYMOUS_AUTHOR
        draft = WishDraft(
            content=content,
            author=author,
            position_x=self._rng.random(),
            position_y=self._rng.random(),
        )
        try:
            wish = await self.store.insert(draft)
        except StoreError as e:
            logging.error(f"Failed to submit wish: {e}")
            raise
        if self.on_submitted is not None:
            self.on_submitted(wish)
        return wish

    async def burn(self, wish_id: str) -> Wish | None:
        """
        Asks the store to burn a wish. Returns None without calling the store
        when the board already knows the wish as burned.
        """
        known = self.get(wish_id)
        if known is not None and known.is_burned:
            logging.debug(f"Wish {wish_id} is already burned")
            return None
        try:
            return await self.store.update(wish_id, self._clock())
        except StoreError as e:
            logging.error(f"Failed to burn wish {wish_id}: {e}")
            raise


@asynccontextmanager
async def open_board(store: WishStore, **kwargs) -> AsyncIterator[WishBoard]:
    """
    Opens a board session: subscribes to the store's table, loads the current
    wishes and keeps reconciling change events until the block exits. The
    subscription is released on exit.
    """
    board = WishBoard(store, **kwargs)
    subscription = await store.subscribe(store.table)
    task: asyncio.Task | None = None
    try:
        try:
            await board.initialize()
        except StoreError:
            # Already logged and recorded on the board; live changes still apply.
            pass
        task = asyncio.create_task(board.run(subscription))
        yield board
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await store.unsubscribe(subscription)

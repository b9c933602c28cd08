from typing import Dict, List
import aiosqlite
import asyncio
import logging
from collections import defaultdict

from wish_lantern.adaptors.sqlite.store import check_table_name
from wish_lantern.models import parse_change_event
from wish_lantern.protocols import Notifier


class SQLiteNotifier(Notifier):
    """
    A centralized watcher that polls the change log once for every subscriber
    and dispatches parsed change events to the queues registered for each table.

    The store writes one `wish_changes` row in the same transaction as every
    mutation, so the change log id gives a single total order of events.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        polling_interval: float = 0.2,
        *,
        table: str = "wishes",
        lock: asyncio.Lock | None = None,
    ):
        self._polling_interval = polling_interval
        self._conn = conn
        self._table = check_table_name(table)
        # Held while polling; shared with the store when both use one connection.
        self._conn_lock = lock or asyncio.Lock()
        self._watchers: Dict[str, List[asyncio.Queue]] = defaultdict(list)
        self._last_id = 0
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    async def _create_schema(self):
        # The notifier is the first thing started for a database, so it owns
        # the schema for both the wishes and the change log.
        await self._conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self._table} (
                id TEXT PRIMARY KEY,
                content TEXT NOT NULL,
                author TEXT,
                created_at TEXT NOT NULL,
                burned_at TEXT,
                position_x REAL NOT NULL DEFAULT 0,
                position_y REAL NOT NULL DEFAULT 0
            )
        """
        )
        await self._conn.execute(
            f"""
            CREATE INDEX IF NOT EXISTS idx_{self._table}_created_at ON {self._table} (created_at)
            """
        )
        await self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS wish_changes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                table_name TEXT NOT NULL,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """
        )
        await self._conn.commit()

    async def start(self):
        """Ensures schema exists and starts the polling task."""
        if self._task:
            return
        await self._create_schema()
        # Subscribers only see changes made after the notifier started.
        async with self._conn.execute("SELECT MAX(id) FROM wish_changes") as cursor:
            row = await cursor.fetchone()
            self._last_id = row[0] if row and row[0] is not None else 0
        self._task = asyncio.create_task(self._poll_for_changes())
        logging.info(f"Notifier started, polling from change ID {self._last_id}")

    async def stop(self):
        """Stops the polling task."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        # The connection is managed by the factory, so we don't close it here.
        logging.info("Notifier stopped")

    async def _poll_for_changes(self):
        """The single background task that polls the change log."""
        while True:
            try:
                async with self._conn_lock:
                    await self._dispatch_new_changes()
            except Exception as e:
                logging.error(f"Notifier poll loop error: {e}")
            await asyncio.sleep(self._polling_interval)

    async def _dispatch_new_changes(self):
        query = "SELECT id, table_name, kind, payload FROM wish_changes WHERE id > ? ORDER BY id"
        async with self._conn.execute(query, (self._last_id,)) as cursor:
            async for row in cursor:
                _id, table_name, kind, payload = row
                event = parse_change_event(payload)
                if event is None or event.kind != kind:
                    logging.warning(
                        f"Notifier skipping malformed {kind} change row with id {_id}"
                    )
                else:
                    for queue in self._watchers.get(table_name, ()):
                        queue.put_nowait(event)
                self._last_id = _id

    async def subscribe(self, table: str) -> asyncio.Queue:
        """Allows a watcher to subscribe to a table's changes."""
        async with self._lock:
            queue = asyncio.Queue()
            self._watchers[table].append(queue)
            return queue

    async def unsubscribe(self, table: str, queue: asyncio.Queue):
        """Removes a watcher's queue."""
        async with self._lock:
            if table in self._watchers and queue in self._watchers[table]:
                self._watchers[table].remove(queue)
                if not self._watchers[table]:
                    del self._watchers[table]

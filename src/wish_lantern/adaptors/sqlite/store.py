from typing import AsyncIterator, List
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import aiosqlite
import asyncio
import logging
import re
import sqlite3
import uuid

import pydantic_core

from wish_lantern.errors import StoreError
from wish_lantern.models import (
    ChangeEvent,
    Wish,
    WishDeleted,
    WishDraft,
    WishInserted,
    WishUpdated,
    dump_change_event,
)
from wish_lantern.protocols import Notifier, Subscription

_WISH_COLUMNS = "id, content, author, created_at, burned_at, position_x, position_y"
_TABLE_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def format_timestamp(ts: datetime) -> str:
    """UTC ISO-8601 with fixed microsecond precision, so text order is time order."""
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _row_to_wish(row) -> Wish:
    _id, content, author, created_at, burned_at, position_x, position_y = row
    return Wish(
        id=_id,
        content=content,
        author=author,
        created_at=datetime.fromisoformat(created_at),
        burned_at=datetime.fromisoformat(burned_at) if burned_at else None,
        position_x=position_x,
        position_y=position_y,
    )


def check_table_name(table: str) -> str:
    """Table names are interpolated into SQL, so only plain identifiers are allowed."""
    if not _TABLE_NAME.fullmatch(table or "") or table == "wish_changes":
        raise ValueError(f"Invalid table name: {table!r}")
    return table


class SQLiteWishStore:
    """
    A wish store backed by SQLite. All writes go through a single connection
    guarded by `write_lock`; reads borrow a connection from `read_pool`, or
    share the write connection under the lock when there is no pool (an
    in-memory database has no other connection to read from).
    Every mutation appends to the `wish_changes` log in the same transaction,
    which is what the notifier turns into change events.
    """

    def __init__(
        self,
        write_conn: aiosqlite.Connection,
        write_lock: asyncio.Lock,
        read_pool: asyncio.Queue | None,
        notifier: Notifier,
        table: str = "wishes",
    ):
        self.write_conn = write_conn
        self.write_lock = write_lock
        self.read_pool = read_pool
        self.notifier = notifier
        self.table = check_table_name(table)

    @asynccontextmanager
    async def _read_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        if self.read_pool is None:
            async with self.write_lock:
                yield self.write_conn
            return
        conn = await self.read_pool.get()
        try:
            yield conn
        finally:
            self.read_pool.put_nowait(conn)

    @asynccontextmanager
    async def _transaction(self, action: str) -> AsyncIterator[aiosqlite.Connection]:
        """
        Runs a write transaction under the write lock. Commits on success and
        rolls back on any exception, so a failed write never leaves the
        connection inside an open transaction.
        """
        async with self.write_lock:
            try:
                # Manually handle the transaction so a wish and its change
                # row are committed together.
                await self.write_conn.execute("BEGIN")
                yield self.write_conn
                await self.write_conn.commit()
            except sqlite3.Error as e:
                await self.write_conn.rollback()
                logging.error(f"Failed to {action}: {e}")
                raise StoreError(f"Failed to {action}: {e}") from e
            except BaseException:
                await self.write_conn.rollback()
                raise

    async def _record_change(self, event: ChangeEvent):
        await self.write_conn.execute(
            "INSERT INTO wish_changes (table_name, kind, payload, timestamp) VALUES (?, ?, ?, ?)",
            (
                self.table,
                event.kind,
                dump_change_event(event),
                format_timestamp(datetime.now(timezone.utc)),
            ),
        )

    async def _fetch_for_update(self, wish_id: str) -> Wish | None:
        async with self.write_conn.execute(
            f"SELECT {_WISH_COLUMNS} FROM {self.table} WHERE id = ?", (wish_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_wish(row) if row else None

    async def list(self) -> List[Wish]:
        """Returns every wish, newest first."""
        wishes = []
        try:
            async with self._read_connection() as conn:
                async with conn.execute(
                    f"SELECT {_WISH_COLUMNS} FROM {self.table} ORDER BY created_at DESC, rowid DESC"
                ) as cursor:
                    async for row in cursor:
                        try:
                            wishes.append(_row_to_wish(row))
                        except (pydantic_core.ValidationError, TypeError, ValueError) as e:
                            logging.warning(f"Skipping invalid wish row {row[0]!r}: {e}")
        except sqlite3.Error as e:
            logging.error(f"Failed to list wishes: {e}")
            raise StoreError(f"Failed to list wishes: {e}") from e
        return wishes

    async def insert(self, draft: WishDraft) -> Wish:
        wish = Wish(
            id=uuid.uuid4().hex,
            content=draft.content,
            author=draft.author,
            created_at=datetime.now(timezone.utc),
            burned_at=None,
            position_x=draft.position_x,
            position_y=draft.position_y,
        )
        async with self._transaction("insert wish") as conn:
            await conn.execute(
                f"INSERT INTO {self.table} ({_WISH_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    wish.id,
                    wish.content,
                    wish.author,
                    format_timestamp(wish.created_at),
                    None,
                    wish.position_x,
                    wish.position_y,
                ),
            )
            await self._record_change(WishInserted(new=wish))
        return wish

    async def update(self, wish_id: str, burned_at: datetime) -> Wish:
        """
        Marks a wish as burned. The transition is one-way: a wish that is
        already burned is returned unchanged and no change event is recorded.
        """
        async with self._transaction(f"burn wish {wish_id}") as conn:
            current = await self._fetch_for_update(wish_id)
            if current is not None and not current.is_burned:
                await conn.execute(
                    f"UPDATE {self.table} SET burned_at = ? WHERE id = ? AND burned_at IS NULL",
                    (format_timestamp(burned_at), wish_id),
                )
                current = await self._fetch_for_update(wish_id)
                await self._record_change(WishUpdated(new=current))
        if current is None:
            raise StoreError(f"Wish {wish_id} not found")
        return current

    async def delete(self, wish_id: str):
        async with self._transaction(f"delete wish {wish_id}") as conn:
            cursor = await conn.execute(
                f"DELETE FROM {self.table} WHERE id = ?", (wish_id,)
            )
            if cursor.rowcount > 0:
                await self._record_change(WishDeleted(id=wish_id))

    async def subscribe(self, table: str) -> Subscription:
        queue = await self.notifier.subscribe(table)
        return Subscription(table, queue)

    async def unsubscribe(self, subscription: Subscription):
        await self.notifier.unsubscribe(subscription.table, subscription.queue)

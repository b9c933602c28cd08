from typing import AsyncIterator
from contextlib import asynccontextmanager
import aiosqlite
import asyncio
import logging
import os
import urllib.parse

from wish_lantern.adaptors.sqlite.notifier import SQLiteNotifier
from wish_lantern.adaptors.sqlite.store import SQLiteWishStore, check_table_name


async def _configure(conn: aiosqlite.Connection, cache_size_kib: int, is_memory_db: bool):
    if not is_memory_db:
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA synchronous = NORMAL;")
    await conn.execute(f"PRAGMA cache_size = {cache_size_kib};")
    await conn.execute("PRAGMA busy_timeout = 5000;")


@asynccontextmanager
async def sqlite_store_factory(
    db_path: str,
    *,
    table: str = "wishes",
    cache_size_kib: int = -16384,
    polling_interval: float = 0.2,
    pool_size: int = 4,
) -> AsyncIterator[SQLiteWishStore]:
    """
    Acquires every resource a SQLite-backed wish store needs (notifier
    connection and polling task, the single write connection, a pool of read
    connections) and yields the store. Everything is released on exit, so a
    store handle never outlives the `async with` block that created it.

    An in-memory database is private to one connection, so the notifier, the
    writes and the reads all share it under the write lock and `pool_size`
    is ignored.
    """
    if not db_path:
        raise ValueError("`db_path` must be provided in the configuration.")
    check_table_name(table)

    is_memory_db = db_path == ":memory:"
    write_lock = asyncio.Lock()
    notifier: SQLiteNotifier | None = None
    connections: list[aiosqlite.Connection] = []
    try:
        if is_memory_db:
            write_conn = await aiosqlite.connect(":memory:")
            connections.append(write_conn)
            await _configure(write_conn, cache_size_kib, is_memory_db)
            notifier = SQLiteNotifier(
                write_conn, polling_interval=polling_interval, table=table, lock=write_lock
            )
            await notifier.start()
            pool = None
            logging.info("Wish store opened in memory")
        else:
            notifier_conn = await aiosqlite.connect(db_path)
            connections.append(notifier_conn)
            await _configure(notifier_conn, cache_size_kib, is_memory_db)
            notifier = SQLiteNotifier(notifier_conn, polling_interval=polling_interval, table=table)
            # Starting the notifier creates the schema, which the read-only
            # connections below rely on.
            await notifier.start()

            write_conn = await aiosqlite.connect(db_path)
            connections.append(write_conn)
            await _configure(write_conn, cache_size_kib, is_memory_db)

            read_connect_string = f"file:{urllib.parse.quote(os.path.abspath(db_path))}?mode=ro"
            pool = asyncio.Queue(maxsize=pool_size)
            for _ in range(pool_size):
                conn = await aiosqlite.connect(read_connect_string, uri=True)
                connections.append(conn)
                await conn.execute(f"PRAGMA cache_size = {cache_size_kib};")
                await conn.execute("PRAGMA busy_timeout = 5000;")
                pool.put_nowait(conn)
            logging.info(f"Wish store opened at {db_path} with {pool_size} read connections")

        yield SQLiteWishStore(
            write_conn=write_conn,
            write_lock=write_lock,
            read_pool=pool,
            notifier=notifier,
            table=table,
        )
    finally:
        if notifier is not None:
            await notifier.stop()
        await asyncio.gather(*(conn.close() for conn in connections))
        logging.info(f"Wish store at {db_path} closed")

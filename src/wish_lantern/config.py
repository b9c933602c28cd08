"""
Configuration for opening a wish store. A config is a plain pydantic model so
it can be built from keyword arguments, a dict, or the environment.
"""
import os
import urllib.parse
from contextlib import asynccontextmanager
from typing import AsyncIterator

from pydantic import BaseModel, Field, field_validator

from .adaptors.sqlite import SQLiteWishStore, sqlite_store_factory
from .adaptors.sqlite.store import check_table_name


class BoardConfig(BaseModel):
    # If no URL is provided, default to an in-memory SQLite database.
    url: str = "sqlite://"
    table: str = "wishes"
    polling_interval: float = Field(default=0.2, gt=0)
    pool_size: int = Field(default=4, ge=1)
    cache_size_kib: int = -16384

    @field_validator("table")
    @classmethod
    def _plain_table_name(cls, table: str) -> str:
        return check_table_name(table)

    @classmethod
    def from_env(cls, environ=None) -> "BoardConfig":
        environ = os.environ if environ is None else environ
        values = {}
        if environ.get("WISH_LANTERN_URL"):
            values["url"] = environ["WISH_LANTERN_URL"]
        if environ.get("WISH_LANTERN_POLLING_INTERVAL"):
            values["polling_interval"] = environ["WISH_LANTERN_POLLING_INTERVAL"]
        if environ.get("WISH_LANTERN_POOL_SIZE"):
            values["pool_size"] = environ["WISH_LANTERN_POOL_SIZE"]
        return cls(**values)


def sqlite_path_from_url(url: str) -> str:
    """
    Turns a SQLite URL into a filesystem path: `sqlite:///wishes.db` is relative,
    `sqlite:////var/lib/wishes.db` is absolute and `sqlite://` (no path) means an
    in-memory database.
    """
    scheme = url.split("://", 1)[0] if "://" in url else ""
    if scheme != "sqlite":
        raise ValueError(f"Unsupported scheme: {scheme}. Only 'sqlite' is supported.")
    parsed = urllib.parse.urlparse(url)
    db_path = parsed.path[1:] if parsed.path.startswith("/") else parsed.path
    if not db_path:
        db_path = ":memory:"
    return db_path


@asynccontextmanager
async def open_store(config: BoardConfig) -> AsyncIterator[SQLiteWishStore]:
    db_path = sqlite_path_from_url(config.url)
    async with sqlite_store_factory(
        db_path,
        table=config.table,
        cache_size_kib=config.cache_size_kib,
        polling_interval=config.polling_interval,
        pool_size=config.pool_size,
    ) as store:
        yield store

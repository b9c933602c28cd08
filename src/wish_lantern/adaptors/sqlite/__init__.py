from .factory import sqlite_store_factory
from .notifier import SQLiteNotifier
from .store import SQLiteWishStore

__all__ = ["sqlite_store_factory", "SQLiteNotifier", "SQLiteWishStore"]

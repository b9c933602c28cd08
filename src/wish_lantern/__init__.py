"""
This module exports the board, the store factory and the data models.
"""
from .board import WishBoard, open_board
from .config import BoardConfig, open_store
from .errors import EmptyWishError, StoreError
from .models import (
    ANONYMOUS_AUTHOR,
    ChangeEvent,
    Wish,
    WishDeleted,
    WishDraft,
    WishInserted,
    WishUpdated,
)
from .adaptors.sqlite import sqlite_store_factory

__all__ = [
    "ANONYMOUS_AUTHOR",
    "BoardConfig",
    "ChangeEvent",
    "EmptyWishError",
    "StoreError",
    "Wish",
    "WishBoard",
    "WishDeleted",
    "WishDraft",
    "WishInserted",
    "WishUpdated",
    "open_board",
    "open_store",
    "sqlite_store_factory",
]

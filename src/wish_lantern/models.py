"""
This module defines the core data models for the wish board using Pydantic.
These models are the data transfer objects shared by the store adaptors and
the board, and the change events form a closed, tagged union so every kind of
row change is handled explicitly.
"""
from datetime import datetime
from typing import Annotated, Any, Literal, Union

import pydantic_core
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

ANONYMOUS_AUTHOR = "익명"
MAX_CONTENT_LENGTH = 200
MAX_AUTHOR_LENGTH = 50


class Wish(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    author: str | None = None
    created_at: datetime
    burned_at: datetime | None = None
    # Normalized [0, 1) start position for the floating lantern.
    position_x: float = 0.0
    position_y: float = 0.0

    @property
    def is_burned(self) -> bool:
        return self.burned_at is not None


class WishDraft(BaseModel):
    """The fields a visitor supplies; the store assigns the rest."""

    content: str = Field(min_length=1, max_length=MAX_CONTENT_LENGTH)
    author: str = Field(default=ANONYMOUS_AUTHOR, max_length=MAX_AUTHOR_LENGTH)
    position_x: float = Field(ge=0.0, lt=1.0)
    position_y: float = Field(ge=0.0, lt=1.0)


class WishInserted(BaseModel):
    kind: Literal["INSERT"] = "INSERT"
    new: Wish


class WishUpdated(BaseModel):
    kind: Literal["UPDATE"] = "UPDATE"
    new: Wish


class WishDeleted(BaseModel):
    kind: Literal["DELETE"] = "DELETE"
    id: str


ChangeEvent = Annotated[
    Union[WishInserted, WishUpdated, WishDeleted], Field(discriminator="kind")
]

_change_event_adapter: TypeAdapter = TypeAdapter(ChangeEvent)


def parse_change_event(raw: Any) -> ChangeEvent | None:
    """
    Validates a raw payload (JSON text, bytes or a mapping) into a change event.
    Returns None for anything malformed so callers can skip it.
    """
    try:
        if isinstance(raw, (str, bytes)):
            return _change_event_adapter.validate_json(raw)
        return _change_event_adapter.validate_python(raw)
    except pydantic_core.ValidationError:
        return None


def dump_change_event(event: ChangeEvent) -> str:
    return _change_event_adapter.dump_json(event).decode("utf-8")

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

Entity = TypeVar("Entity")

LIKE_ESCAPE = "\\"


def escape_like(text: str) -> str:
    """Make `text` match literally inside a LIKE pattern (use with escape=LIKE_ESCAPE)."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


def contains_pattern(text: str) -> str:
    return f"%{escape_like(text.strip())}%"


class BaseRepository(ABC, Generic[Entity]):
    """
    Write surface shared by the counterparty and approved-record stores.
    Writes commit on the session they were opened with. Nothing is ever
    deleted: templates and approved records only accumulate.
    """

    @abstractmethod
    async def create(self, entity: Entity) -> Entity:
        raise NotImplementedError

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, Union, runtime_checkable

from sqlalchemy import Connection, Engine
from typing_extensions import TypeAlias

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = (
    "BindT",
    "ConnectionHandle",
)


@runtime_checkable
class ConnectionHandle(Protocol):
    """Protocol for the database connection a cleaner operates on."""

    @property
    def in_transaction(self) -> bool:
        """``True`` while a transaction started by :meth:`begin` is open."""
        ...

    def execute(self, sql: str) -> Any:
        """Execute a raw statement.

        Args:
            sql: The statement to execute.
        """
        ...

    def begin(self) -> None:
        """Begin a transaction unless one is already open."""
        ...

    def commit(self) -> None:
        """Commit the open transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the open transaction."""
        ...

    def table_names(self) -> list[str]:
        """Return every table known to the database, parents before children."""
        ...

    def truncate(self, tables: Sequence[str]) -> None:
        """Remove all rows from ``tables``.

        Args:
            tables: Table names ordered parents before children.
        """
        ...

    def close(self) -> None:
        """Release the underlying resources."""
        ...


BindT: TypeAlias = Union[Engine, Connection, ConnectionHandle]
"""Anything a cleaner can be built from or looked up by."""

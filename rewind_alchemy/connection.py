"""SQLAlchemy implementation of :class:`~rewind_alchemy.typing.ConnectionHandle`."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from rewind_alchemy.exceptions import RewinderError, TransactionError, TruncationError, wrap_database_exception
from rewind_alchemy.operations import TruncateTables

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy import Connection, Engine, RootTransaction

__all__ = ("EngineHandle",)

logger = logging.getLogger(__name__)


class EngineHandle:
    """Connection handle backed by a SQLAlchemy :class:`Engine <sqlalchemy.engine.Engine>`.

    The transaction strategy works on :attr:`connection`, a single connection opened on first use.
    Code under test must write through that connection for its changes to be rolled back, e.g.::

        session = Session(bind=handle.connection, join_transaction_mode="create_savepoint")

    Truncation always runs on a connection of its own.

    Args:
        engine: The engine of the database to clean.
        owns_engine: Dispose ``engine`` on :meth:`close`.
    """

    __slots__ = ("_connection", "_table_names", "_transaction", "engine", "owns_engine")

    def __init__(self, engine: Engine, owns_engine: bool = False) -> None:
        self.engine = engine
        self.owns_engine = owns_engine
        self._connection: Optional[Connection] = None
        self._transaction: Optional[RootTransaction] = None
        self._table_names: Optional[list[str]] = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.engine.url.render_as_string(hide_password=True)!r})"

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def connection(self) -> Connection:
        """The connection the transaction strategy rolls back."""
        if self._connection is None or self._connection.closed:
            self._connection = self.engine.connect()
        return self._connection

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None and self._transaction.is_active

    def matches(self, bind: Engine | Connection) -> bool:
        """Check whether ``bind`` points at the database of this handle.

        Args:
            bind: An engine or a connection.

        Returns:
            ``True`` for the same engine, a connection of it, or an engine with the same URL.
            In-memory SQLite databases only match their own engine.
        """
        engine = bind.engine
        if engine is self.engine or bind is self._connection:
            return True
        if self.engine.url.database in {None, "", ":memory:"}:
            return False
        return engine.url == self.engine.url

    def execute(self, sql: str) -> Any:
        with wrap_database_exception(RewinderError, "failed to execute statement"):
            return self.connection.execute(text(sql))

    def begin(self) -> None:
        if self.in_transaction:
            return
        with wrap_database_exception(TransactionError, "failed to begin transaction"):
            connection = self.connection
            # an autobegun transaction is adopted instead of raising
            self._transaction = connection.get_transaction() if connection.in_transaction() else connection.begin()  # type: ignore[assignment]
        logger.debug("Began transaction on %r", self)

    def commit(self) -> None:
        transaction, self._transaction = self._transaction, None
        if transaction is None or not transaction.is_active:
            return
        with wrap_database_exception(TransactionError, "failed to commit transaction"):
            transaction.commit()

    def rollback(self) -> None:
        transaction, self._transaction = self._transaction, None
        if transaction is None or not transaction.is_active:
            return
        try:
            with wrap_database_exception(TransactionError, "failed to roll back transaction"):
                transaction.rollback()
        except TransactionError:
            self._discard_connection()
            raise
        logger.debug("Rolled back transaction on %r", self)

    def table_names(self) -> list[str]:
        """Tables of the database, parents first, reflected once until :meth:`close`."""
        if self._table_names is None:
            with wrap_database_exception(TruncationError, "failed to list tables"), self.engine.connect() as connection:
                inspector = inspect(connection)
                self._table_names = [
                    name for name, _ in inspector.get_sorted_table_and_fkc_names() if name is not None
                ]
        return list(self._table_names)

    def truncate(self, tables: Sequence[str]) -> None:
        statements = TruncateTables.create_statements(
            list(tables),
            self.dialect_name,
            self.engine.dialect.identifier_preparer.quote,
        )
        if not statements:
            return
        with wrap_database_exception(TruncationError, f"failed to truncate {', '.join(tables)}"):
            with self.engine.begin() as connection:
                for statement in statements:
                    logger.debug("Executing: %s", statement)
                    connection.execute(text(statement))
                if self.dialect_name == "sqlite":
                    self._reset_sqlite_sequence(connection, tables)

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
        self._connection = None
        self._table_names = None
        self._transaction = None
        if self.owns_engine:
            self.engine.dispose()

    def _discard_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            connection.invalidate()
            connection.close()
        except SQLAlchemyError as exc:
            logger.debug("Ignoring error while discarding a broken connection: %s", exc)

    @staticmethod
    def _reset_sqlite_sequence(connection: Connection, tables: Sequence[str]) -> None:
        """Restart ``AUTOINCREMENT`` counters of the emptied tables."""
        has_sequence = connection.execute(
            text("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'")
        ).first()
        if has_sequence is None:
            return
        placeholders = ", ".join(f":table_{index}" for index in range(len(tables)))
        connection.execute(
            text(f"DELETE FROM sqlite_sequence WHERE name IN ({placeholders})"),
            {f"table_{index}": table for index, table in enumerate(tables)},
        )

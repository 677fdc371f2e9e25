"""Per connection cleaner."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Optional

from rewind_alchemy._listeners import remove_insert_tracking, setup_insert_tracking
from rewind_alchemy.connection import EngineHandle
from rewind_alchemy.exceptions import ImproperConfigurationError, TransactionError
from rewind_alchemy.statement import extract_table_name
from rewind_alchemy.strategy import Strategy, StrategyT

if TYPE_CHECKING:
    from collections.abc import Generator, Iterable

    from rewind_alchemy._listeners import InsertTrackingListener
    from rewind_alchemy.typing import ConnectionHandle

__all__ = (
    "DEFAULT_BOOKKEEPING_TABLES",
    "ConnectionCleaner",
)

logger = logging.getLogger(__name__)

DEFAULT_BOOKKEEPING_TABLES: tuple[str, ...] = ("alembic_version",)
"""Tables a cleaner never empties, whatever inserts it recorded."""


class ConnectionCleaner:
    """Restores a single database to its baseline between tests.

    With :attr:`Strategy.TRANSACTION <rewind_alchemy.strategy.Strategy.TRANSACTION>` the cleaner keeps
    a transaction open on its handle and rolls it back on every clean. With
    :attr:`Strategy.TRUNCATION <rewind_alchemy.strategy.Strategy.TRUNCATION>` it remembers the tables
    ``INSERT`` statements wrote to and empties only those.

    Args:
        name: The connection name the cleaner is registered under.
        handle: The database to clean.
        strategy: How the database is restored.
        only: When not empty, never truncate tables outside this list.
        except_: Never truncate these tables.
        bookkeeping_tables: Tables never truncated, in addition to ``except_``.
        truncate_all_when_untracked: Truncate every known table when no insert was recorded.
    """

    def __init__(
        self,
        name: str,
        handle: ConnectionHandle,
        strategy: StrategyT = Strategy.TRUNCATION,
        only: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
        bookkeeping_tables: Iterable[str] = DEFAULT_BOOKKEEPING_TABLES,
        truncate_all_when_untracked: bool = True,
    ) -> None:
        self.name = name
        self.handle = handle
        self.strategy = Strategy.coerce(strategy)
        self.only: list[str] = list(only or [])
        self.except_: list[str] = list(except_ or [])
        self.bookkeeping_tables = tuple(bookkeeping_tables)
        self.truncate_all_when_untracked = truncate_all_when_untracked
        self.inserted_tables: list[str] = []
        self.listener: Optional[InsertTrackingListener] = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, strategy={self.strategy.value!r})"

    @property
    def transaction_open(self) -> bool:
        return self.handle.in_transaction

    def configure(
        self,
        strategy: Optional[StrategyT] = None,
        only: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
    ) -> None:
        """Overwrite the stored options.

        ``only`` and ``except_`` are always replaced, ``None`` clearing them. The strategy is kept
        when ``strategy`` is ``None``. Leaving the transaction strategy rolls back the open
        transaction.
        """
        if strategy is not None:
            self.strategy = Strategy.coerce(strategy)
            self._leave_transaction()
        self.only = list(only or [])
        self.except_ = list(except_ or [])

    def record_inserted_table(self, sql: str) -> Optional[str]:
        """Remember the table ``sql`` inserts into.

        Args:
            sql: Any statement executed against the database.

        Returns:
            The recorded table, or ``None`` when nothing was recorded.
        """
        if self.strategy is not Strategy.TRUNCATION:
            return None
        table = extract_table_name(sql)
        if table is None:
            return None
        if table not in self.inserted_tables:
            logger.debug("Cleaner %r recorded insert into %r", self.name, table)
            self.inserted_tables.append(table)
        return table

    def start(self) -> None:
        """Begin the transaction the next clean rolls back.

        Idempotent, and a no-op for the truncation strategy.
        """
        if self.strategy is Strategy.TRANSACTION and not self.handle.in_transaction:
            self.handle.begin()

    def clean(
        self,
        only: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
        strategy: Optional[StrategyT] = None,
    ) -> None:
        """Restore the database to its baseline.

        Options given here apply to this call only; the stored ones are restored afterwards,
        also when cleaning fails.

        Args:
            only: Override of the stored ``only`` list.
            except_: Override of the stored ``except_`` list.
            strategy: Override of the stored strategy.

        Raises:
            TransactionError: If the transaction could not be rolled back or begun again.
            TruncationError: If the tables could not be listed or emptied.
        """
        with self._override(only, except_, strategy):
            self._clean(all_tables=False)

    def clean_all(
        self,
        only: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
        strategy: Optional[StrategyT] = None,
    ) -> None:
        """Like :meth:`clean`, but truncate every known table instead of the recorded ones.

        Recorded inserts are ignored for the choice of tables, but still reset.
        """
        with self._override(only, except_, strategy):
            self._clean(all_tables=True)

    def clean_with(
        self,
        strategy: StrategyT,
        only: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
    ) -> None:
        self.clean_all(only=only, except_=except_, strategy=strategy)

    def tables_to_truncate(self, all_tables: bool = False) -> list[str]:
        """Resolve the tables the truncation strategy empties, parents before children.

        Recorded inserts select the candidates. Without any, every table known to the
        connection is a candidate unless ``truncate_all_when_untracked`` is off. ``only``
        narrows the candidates down, ``except_`` and the bookkeeping tables are never emptied.

        Args:
            all_tables: Ignore recorded inserts.

        Returns:
            list[str]: Table names.
        """
        excluded = {*self.except_, *self.bookkeeping_tables}
        if not all_tables and not self.inserted_tables and not self.truncate_all_when_untracked:
            return []

        tables = self.handle.table_names()
        if not all_tables and self.inserted_tables:
            tables = [table for table in tables if table in self.inserted_tables]
        if self.only:
            tables = [table for table in tables if table in self.only]
        return [table for table in tables if table not in excluded]

    def enable_insert_tracking(self) -> None:
        """Record inserts executed through the engine of an :class:`EngineHandle`."""
        if not isinstance(self.handle, EngineHandle):
            msg = f"Insert tracking needs an EngineHandle, cleaner {self.name!r} has {self.handle!r}"
            raise ImproperConfigurationError(msg)
        if self.listener is None:
            self.listener = setup_insert_tracking(self.handle.engine, self)

    def close(self) -> None:
        """Stop tracking inserts and release the handle."""
        if self.listener is not None and isinstance(self.handle, EngineHandle):
            remove_insert_tracking(self.handle.engine, self.listener)
        self.listener = None
        self.handle.close()

    @contextmanager
    def _override(
        self,
        only: Optional[Iterable[str]],
        except_: Optional[Iterable[str]],
        strategy: Optional[StrategyT],
    ) -> Generator[None, None, None]:
        saved = (self.strategy, self.only, self.except_)
        if strategy is not None:
            self.strategy = Strategy.coerce(strategy)
            self._leave_transaction()
        if only is not None:
            self.only = list(only)
        if except_ is not None:
            self.except_ = list(except_)
        try:
            yield
        finally:
            self.strategy, self.only, self.except_ = saved
            if strategy is not None:
                self._leave_transaction()

    def _leave_transaction(self) -> None:
        """Roll back a transaction left open by the transaction strategy once it no longer applies."""
        if self.strategy is not Strategy.TRANSACTION and self.handle.in_transaction:
            logger.debug("Cleaner %r rolling back the transaction of its previous strategy", self.name)
            self.handle.rollback()

    def _clean(self, all_tables: bool) -> None:
        try:
            if self.strategy is Strategy.TRANSACTION:
                self._rollback()
            else:
                self._truncate(all_tables)
        finally:
            self.inserted_tables.clear()

    def _rollback(self) -> None:
        error: Optional[TransactionError] = None
        if self.handle.in_transaction:
            try:
                self.handle.rollback()
            except TransactionError as exc:
                logger.error("Cleaner %r failed to roll back: %s", self.name, exc)
                error = exc
        try:
            self.handle.begin()
        except TransactionError as exc:
            if error is not None:
                raise exc from error
            raise
        if error is not None:
            raise error

    def _truncate(self, all_tables: bool) -> None:
        tables = self.tables_to_truncate(all_tables=all_tables)
        if not tables:
            logger.debug("Cleaner %r has nothing to truncate", self.name)
            return
        logger.debug("Cleaner %r truncating %s", self.name, ", ".join(tables))
        self.handle.truncate(tables)

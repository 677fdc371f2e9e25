"""Registry of connection cleaners.

A :class:`CleanerRegistry` holds one :class:`~rewind_alchemy.cleaner.ConnectionCleaner` per connection
name plus the defaults new cleaners are created with. It is an ordinary object: create one per test
process (or per worker), and :meth:`~CleanerRegistry.reset` it at the start of a run.

Example:
    Cleaning two databases after every test::

        registry = CleanerRegistry(
            RewinderConfig(
                database_configuration={"test": "sqlite:///test.sqlite3", "test2": "sqlite:///test2.sqlite3"}
            )
        )
        registry["test"]
        registry["test2"]

        with registry.cleaning():
            run_test()
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Optional, Union

from sqlalchemy import Connection, Engine

from rewind_alchemy.cleaner import ConnectionCleaner
from rewind_alchemy.config import RewinderConfig
from rewind_alchemy.connection import EngineHandle
from rewind_alchemy.exceptions import (
    CleanupError,
    ImproperConfigurationError,
    RewinderError,
    UnknownConnectionError,
)
from rewind_alchemy.strategy import Strategy, StrategyT

if TYPE_CHECKING:
    from collections.abc import Callable, Generator, Iterable, Iterator

    from rewind_alchemy.typing import BindT, ConnectionHandle

__all__ = ("CleanerRegistry",)

logger = logging.getLogger(__name__)


class CleanerRegistry:
    """Connection cleaners keyed by connection name, in registration order.

    Args:
        config: Connection definitions and defaults. A fresh :class:`RewinderConfig` when omitted.
    """

    def __init__(self, config: Optional[RewinderConfig] = None) -> None:
        self.config = config if config is not None else RewinderConfig()
        self._cleaners: dict[str, ConnectionCleaner] = {}
        self._restore_defaults()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({list(self._cleaners)!r})"

    def __getitem__(self, name: str) -> ConnectionCleaner:
        return self.get_or_create(name)

    def __contains__(self, name: object) -> bool:
        return name in self._cleaners

    def __iter__(self) -> Iterator[ConnectionCleaner]:
        return iter(self.cleaners)

    def __len__(self) -> int:
        return len(self._cleaners)

    @property
    def cleaners(self) -> list[ConnectionCleaner]:
        """Registered cleaners in registration order."""
        return list(self._cleaners.values())

    def get(self, name: str) -> ConnectionCleaner:
        """Return the cleaner registered for ``name``.

        Raises:
            UnknownConnectionError: If no cleaner is registered for ``name``.
        """
        try:
            return self._cleaners[name]
        except KeyError as exc:
            msg = f"No cleaner registered for connection {name!r}"
            raise UnknownConnectionError(msg) from exc

    def get_or_create(
        self,
        name: str,
        bind: Optional[BindT] = None,
        *,
        strategy: Optional[StrategyT] = None,
        only: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
    ) -> ConnectionCleaner:
        """Return the cleaner for ``name``, creating and registering it on first use.

        An existing cleaner is returned as is: the options only apply to a cleaner created by
        this call. Use :meth:`set_strategy` to reconfigure registered cleaners.

        Args:
            name: The connection name.
            bind: Engine, connection or handle of the database. Looked up in the database
                configuration when omitted.
            strategy: Strategy of a new cleaner, the default strategy otherwise.
            only: ``only`` list of a new cleaner, the default one otherwise.
            except_: ``except_`` list of a new cleaner, the default one otherwise.

        Raises:
            UnknownConnectionError: If ``bind`` is omitted and ``name`` is not configured.

        Returns:
            ConnectionCleaner: The registered cleaner.
        """
        cleaner = self._cleaners.get(name)
        if cleaner is not None:
            return cleaner
        return self.create_cleaner(name, bind, strategy=strategy, only=only, except_=except_)

    def create_cleaner(
        self,
        name: str,
        bind: Optional[BindT] = None,
        *,
        strategy: Optional[StrategyT] = None,
        only: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
    ) -> ConnectionCleaner:
        """Create and register a cleaner for ``name``.

        Raises:
            ImproperConfigurationError: If a cleaner is already registered for ``name``.
            UnknownConnectionError: If ``bind`` is omitted and ``name`` is not configured.

        Returns:
            ConnectionCleaner: The new cleaner.
        """
        if name in self._cleaners:
            msg = f"A cleaner is already registered for connection {name!r}"
            raise ImproperConfigurationError(msg)

        cleaner = ConnectionCleaner(
            name,
            self._create_handle(name, bind),
            strategy=strategy if strategy is not None else self.strategy,
            only=only if only is not None else self.only,
            except_=except_ if except_ is not None else self.except_,
            bookkeeping_tables=self.config.bookkeeping_tables,
            truncate_all_when_untracked=self.config.truncate_all_when_untracked,
        )
        if self.config.track_inserts and isinstance(cleaner.handle, EngineHandle):
            cleaner.enable_insert_tracking()
        self._cleaners[name] = cleaner
        logger.info("Registered %r for %r", cleaner, cleaner.handle)
        return cleaner

    def find_cleaner(self, bind: Union[Engine, Connection]) -> Optional[ConnectionCleaner]:
        """Return the cleaner whose database ``bind`` points at.

        Engine identity wins over URL equality.

        Args:
            bind: An engine or a connection.

        Returns:
            The matching cleaner or ``None``.
        """
        handles = [
            cleaner for cleaner in self._cleaners.values() if isinstance(cleaner.handle, EngineHandle)
        ]
        for cleaner in handles:
            if bind.engine is cleaner.handle.engine:  # type: ignore[attr-defined]
                return cleaner
        return next((cleaner for cleaner in handles if cleaner.handle.matches(bind)), None)  # type: ignore[attr-defined]

    def record_inserted_table(self, connection: Union[str, Engine, Connection], sql: str) -> Optional[str]:
        """Record the table ``sql`` inserts into on the cleaner of ``connection``.

        This is the entry point for instrumentation outside of the engine listener.

        Args:
            connection: A connection name, or the engine or connection ``sql`` ran on.
            sql: The executed statement.

        Raises:
            UnknownConnectionError: If ``connection`` is a name without registered cleaner.

        Returns:
            The recorded table or ``None``.
        """
        if isinstance(connection, str):
            return self.get(connection).record_inserted_table(sql)
        cleaner = self.find_cleaner(connection)
        if cleaner is None:
            logger.warning("Ignoring insert on %r, no cleaner is registered for it", connection.engine)
            return None
        return cleaner.record_inserted_table(sql)

    def set_strategy(
        self,
        strategy: StrategyT,
        *,
        only: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
    ) -> None:
        """Replace the defaults and apply them to every registered cleaner.

        The default connection is registered first when nothing is registered yet.

        Args:
            strategy: The new default strategy.
            only: The new default ``only`` list; ``None`` clears it.
            except_: The new default ``except_`` list; ``None`` clears it.
        """
        self.strategy = Strategy.coerce(strategy)
        self.only = list(only or [])
        self.except_ = list(except_ or [])
        logger.info("Cleaning strategy set to %r (only=%r, except=%r)", self.strategy.value, self.only, self.except_)
        self._ensure_default_cleaner()
        for cleaner in self._cleaners.values():
            cleaner.configure(self.strategy, self.only, self.except_)

    def start(self) -> None:
        """Begin the transactions of every transaction strategy cleaner."""
        self._ensure_default_cleaner()
        self._each(lambda cleaner: cleaner.start(), "start")

    def clean(
        self,
        *,
        only: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
        strategy: Optional[StrategyT] = None,
    ) -> None:
        """Clean every registered database, in registration order.

        Overrides apply to this call only. Every cleaner is attempted even when an earlier one fails.

        Raises:
            CleanupError: If at least one cleaner failed; ``errors`` holds the individual failures.
        """
        self._ensure_default_cleaner()
        self._each(lambda cleaner: cleaner.clean(only=only, except_=except_, strategy=strategy), "clean")

    def clean_all(
        self,
        *,
        only: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
        strategy: Optional[StrategyT] = None,
    ) -> None:
        """Fully clean every registered database, keeping the bookkeeping tables.

        Raises:
            CleanupError: If at least one cleaner failed.
        """
        self._ensure_default_cleaner()
        self._each(lambda cleaner: cleaner.clean_all(only=only, except_=except_, strategy=strategy), "clean_all")

    def clean_with(
        self,
        strategy: StrategyT,
        *,
        only: Optional[Iterable[str]] = None,
        except_: Optional[Iterable[str]] = None,
    ) -> None:
        """Fully clean every registered database once with the given strategy and options."""
        self.clean_all(only=only, except_=except_, strategy=strategy)

    @contextmanager
    def cleaning(self) -> Generator[CleanerRegistry, None, None]:
        """Clean every registered database when the block exits, however it exits.

        An exception raised by the block propagates unchanged. A cleanup failure following it is
        logged rather than replacing it.

        Example:
            ::

                with registry.cleaning():
                    session.add(Foo(name="foo1"))
                    session.commit()
        """
        try:
            yield self
        except BaseException:
            try:
                self.clean()
            except RewinderError:
                logger.exception("Cleanup after a failed block also failed")
            raise
        self.clean()

    def reset(self) -> None:
        """Forget every cleaner and restore the configured defaults.

        Listeners are removed and engines created from the database configuration are disposed.
        """
        cleaners, self._cleaners = list(self._cleaners.values()), {}
        for cleaner in cleaners:
            cleaner.close()
        self._restore_defaults()
        logger.debug("Registry reset, %d cleaner(s) dropped", len(cleaners))

    def _restore_defaults(self) -> None:
        self.strategy = Strategy.coerce(self.config.strategy)
        self.only = list(self.config.only)
        self.except_ = list(self.config.except_)

    def _create_handle(self, name: str, bind: Optional[BindT]) -> ConnectionHandle:
        if bind is None:
            engine, owns_engine = self.config.get_engine(name)
            return EngineHandle(engine, owns_engine=owns_engine)
        if isinstance(bind, (Engine, Connection)):
            return EngineHandle(bind.engine)
        return bind

    def _ensure_default_cleaner(self) -> None:
        name = self.config.default_connection
        if not self._cleaners and self.config.has_connection(name):
            self.create_cleaner(name)

    def _each(self, operation: Callable[[ConnectionCleaner], None], label: str) -> None:
        errors: list[Exception] = []
        for cleaner in list(self._cleaners.values()):
            try:
                operation(cleaner)
            except Exception as exc:  # noqa: BLE001
                logger.error("%s failed for %r: %s", label, cleaner, exc)
                errors.append(exc)
        if errors:
            raise CleanupError(errors=errors) from errors[0]

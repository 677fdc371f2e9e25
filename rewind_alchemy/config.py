from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from sqlalchemy import URL, Engine, create_engine
from sqlalchemy.exc import ArgumentError

from rewind_alchemy.cleaner import DEFAULT_BOOKKEEPING_TABLES
from rewind_alchemy.exceptions import ImproperConfigurationError, UnknownConnectionError
from rewind_alchemy.strategy import Strategy, StrategyT

__all__ = (
    "ConnectionDefinition",
    "RewinderConfig",
)

ConnectionDefinition = Union[str, URL, Engine, Mapping[str, Any]]
"""A connection string, a :class:`URL <sqlalchemy.engine.URL>`, an existing engine, or a mapping
with a ``url`` key plus :func:`create_engine <sqlalchemy.create_engine>` keyword arguments."""


@dataclass
class RewinderConfig:
    """Database rewinder configuration.

    Example:
        Two databases cleaned by truncation, the second one built with extra engine options::

            config = RewinderConfig(
                database_configuration={
                    "test": "sqlite:///db/test.sqlite3",
                    "test2": {"url": "postgresql+psycopg://app@localhost/test2", "pool_size": 1},
                },
                except_=["spatial_ref_sys"],
            )
    """

    database_configuration: dict[str, ConnectionDefinition] = field(default_factory=dict)
    """Connection definitions keyed by connection name."""
    strategy: StrategyT = Strategy.TRUNCATION
    """Default strategy of new cleaners."""
    only: list[str] = field(default_factory=list)
    """Default ``only`` list of new cleaners."""
    except_: list[str] = field(default_factory=list)
    """Default ``except_`` list of new cleaners."""
    bookkeeping_tables: tuple[str, ...] = DEFAULT_BOOKKEEPING_TABLES
    """Tables a full clean never empties, ``alembic_version`` by default."""
    default_connection: str = "test"
    """Connection registered implicitly when an operation needs a cleaner and none exists yet."""
    engine_config: dict[str, Any] = field(default_factory=dict)
    """Keyword arguments passed to :func:`create_engine <sqlalchemy.create_engine>` for every definition."""
    create_engine_callable: Callable[..., Engine] = create_engine
    """Callable that creates engines from definitions."""
    truncate_all_when_untracked: bool = True
    """Truncate every table of a connection when no insert into it was recorded.

    Keeps databases clean when inserts bypass the tracked engine, at the cost of emptying
    tables that were never touched."""
    track_inserts: bool = True
    """Attach the insert tracking listener to the engine of every new cleaner."""

    def __post_init__(self) -> None:
        self.strategy = Strategy.coerce(self.strategy)

    def has_connection(self, name: str) -> bool:
        return name in self.database_configuration

    def get_engine(self, name: str) -> tuple[Engine, bool]:
        """Return the engine for a configured connection.

        Args:
            name: The connection name.

        Raises:
            UnknownConnectionError: If ``name`` is not configured.
            ImproperConfigurationError: If the definition cannot be turned into an engine.

        Returns:
            The engine and whether it was created here (and should be disposed by its user).
        """
        try:
            definition = self.database_configuration[name]
        except KeyError as exc:
            msg = f"No database configuration for connection {name!r}"
            raise UnknownConnectionError(msg) from exc

        if isinstance(definition, Engine):
            return definition, False
        if isinstance(definition, (str, URL)):
            url, options = definition, {}
        else:
            options = dict(definition)
            url = options.pop("url", None)
            if url is None:
                msg = f"Database configuration for connection {name!r} has no 'url'"
                raise ImproperConfigurationError(msg)
        try:
            return self.create_engine_callable(url, **{**self.engine_config, **options}), True
        except (ArgumentError, TypeError) as exc:
            msg = f"Invalid database configuration for connection {name!r}: {exc}"
            raise ImproperConfigurationError(msg) from exc

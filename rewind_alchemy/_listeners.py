"""Engine event listeners."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import event

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine
    from sqlalchemy.engine.interfaces import DBAPICursor, ExecutionContext

    from rewind_alchemy.cleaner import ConnectionCleaner

__all__ = (
    "InsertTrackingListener",
    "is_tracking_inserts",
    "remove_insert_tracking",
    "setup_insert_tracking",
)

logger = logging.getLogger("rewind_alchemy")


class InsertTrackingListener:
    """Records the target of every ``INSERT`` an engine executes on a cleaner.

    Registered on the engine's ``before_cursor_execute`` event, so it sees the final SQL string
    sent to the driver, whether it came from the ORM, Core or a raw ``text()`` construct.
    Statements that are not inserts are ignored by the cleaner.
    """

    def __init__(self, cleaner: ConnectionCleaner) -> None:
        self.cleaner = cleaner

    def __call__(
        self,
        conn: Connection,
        cursor: DBAPICursor,
        statement: str,
        parameters: Any,
        context: ExecutionContext | None,
        executemany: bool,
    ) -> None:
        self.cleaner.record_inserted_table(statement)


def setup_insert_tracking(engine: Engine, cleaner: ConnectionCleaner) -> InsertTrackingListener:
    """Attach an :class:`InsertTrackingListener` for ``cleaner`` to ``engine``.

    Args:
        engine: The engine to observe.
        cleaner: The cleaner receiving the inserted tables.

    Returns:
        The registered listener, needed to remove it again.
    """
    listener = InsertTrackingListener(cleaner)
    event.listen(engine, "before_cursor_execute", listener)
    logger.debug("Tracking inserts of %r for cleaner %r", engine, cleaner.name)
    return listener


def remove_insert_tracking(engine: Engine, listener: InsertTrackingListener) -> None:
    if event.contains(engine, "before_cursor_execute", listener):
        event.remove(engine, "before_cursor_execute", listener)


def is_tracking_inserts(engine: Engine, listener: InsertTrackingListener) -> bool:
    return event.contains(engine, "before_cursor_execute", listener)

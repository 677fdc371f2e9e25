from __future__ import annotations

import copy
from collections.abc import Sequence
from typing import Any, Callable

import pytest

from rewind_alchemy.exceptions import TransactionError, TruncationError


class FakeHandle:
    """In memory stand-in for a database connection.

    ``fail_on`` names handle methods that raise the matching driver level error.
    """

    def __init__(self, tables: Sequence[str] = ("foos", "bars", "alembic_version")) -> None:
        self.rows: dict[str, list[Any]] = {table: [] for table in tables}
        self.calls: list[str] = []
        self.truncated: list[list[str]] = []
        self.fail_on: set[str] = set()
        self.closed = False
        self._snapshot: dict[str, list[Any]] | None = None

    @property
    def in_transaction(self) -> bool:
        return self._snapshot is not None

    def insert(self, table: str, row: Any = None) -> None:
        self.rows[table].append(row)

    def execute(self, sql: str) -> Any:
        self.calls.append("execute")
        return None

    def begin(self) -> None:
        self.calls.append("begin")
        if "begin" in self.fail_on:
            raise TransactionError("begin failed")
        if self._snapshot is None:
            self._snapshot = copy.deepcopy(self.rows)

    def commit(self) -> None:
        self.calls.append("commit")
        self._snapshot = None

    def rollback(self) -> None:
        self.calls.append("rollback")
        snapshot, self._snapshot = self._snapshot, None
        if "rollback" in self.fail_on:
            raise TransactionError("rollback failed")
        if snapshot is not None:
            self.rows = snapshot

    def table_names(self) -> list[str]:
        self.calls.append("table_names")
        return list(self.rows)

    def truncate(self, tables: Sequence[str]) -> None:
        self.calls.append("truncate")
        if "truncate" in self.fail_on:
            raise TruncationError("truncate failed")
        self.truncated.append(list(tables))
        for table in tables:
            self.rows[table] = []

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_handle_factory() -> Callable[..., FakeHandle]:
    return FakeHandle


@pytest.fixture
def fake_handle() -> FakeHandle:
    return FakeHandle()

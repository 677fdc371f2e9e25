"""Dialect specific table emptying.

Each backend has its own fastest way of removing every row from a set of tables while
respecting (or temporarily lifting) foreign key constraints:

- PostgreSQL truncates everything in one ``TRUNCATE ... RESTART IDENTITY CASCADE``.
  CockroachDB does not support ``RESTART IDENTITY``.
- MySQL and MariaDB ``TRUNCATE`` each table with ``FOREIGN_KEY_CHECKS`` disabled.
- Every other backend, SQLite included, issues ``DELETE FROM`` children first.
"""

from typing import Callable

__all__ = ("TruncateTables",)


class TruncateTables:
    """Build the statements that empty a list of tables on a given dialect."""

    @staticmethod
    def supports_truncate(dialect_name: str) -> bool:
        """Check if the dialect gets a native ``TRUNCATE``.

        Args:
            dialect_name: Name of the database dialect

        Returns:
            True if ``TRUNCATE`` is used, False if rows are deleted instead
        """
        return dialect_name in {"postgresql", "cockroachdb", "mysql", "mariadb"}

    @staticmethod
    def create_statements(
        tables: "list[str]",
        dialect_name: str,
        quote: Callable[[str], str],
    ) -> "list[str]":
        """Create the statements that empty ``tables``.

        Args:
            tables: Table names ordered parents before children
            dialect_name: Database dialect name
            quote: Identifier quoting function of the dialect

        Returns:
            The statements to execute, in order, inside a single transaction
        """
        if not tables:
            return []
        quoted = [quote(table) for table in tables]

        if not TruncateTables.supports_truncate(dialect_name):
            return [f"DELETE FROM {table}" for table in reversed(quoted)]

        if dialect_name in {"mysql", "mariadb"}:
            return [
                "SET FOREIGN_KEY_CHECKS = 0",
                *(f"TRUNCATE TABLE {table}" for table in quoted),
                "SET FOREIGN_KEY_CHECKS = 1",
            ]

        table_list = ", ".join(quoted)
        if dialect_name == "cockroachdb":
            return [f"TRUNCATE TABLE {table_list} CASCADE"]
        return [f"TRUNCATE TABLE {table_list} RESTART IDENTITY CASCADE"]

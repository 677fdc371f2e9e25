"""INSERT statement inspection.

Only the target of an ``INSERT`` is recognised. The statement is scanned once, left to right:
the ``INSERT`` keyword, any dialect modifiers, an optional ``INTO`` and finally a table
reference of up to four dot separated identifiers (``server.database.schema.table``).

    >>> extract_table_name('INSERT INTO "database"."foos" ("name") VALUES (?)')
    'foos'
    >>> extract_table_name("INSERT INTO server...foos (name) VALUES (?)")
    'foos'
    >>> extract_table_name("UPDATE foos SET name = ?") is None
    True
"""

import re
from typing import Optional

__all__ = (
    "MAX_REFERENCE_PARTS",
    "extract_table_name",
    "split_table_reference",
)

MAX_REFERENCE_PARTS = 4
"""``server.database.schema.table`` is the longest object notation accepted."""

_COMMENTS = r"(?:\s*/\*.*?\*/)*"

_INSERT = re.compile(rf"{_COMMENTS}\s*INSERT\b", re.IGNORECASE | re.DOTALL)
_MODIFIER = re.compile(
    rf"{_COMMENTS}\s*(?P<keyword>INTO|IGNORE|LOW_PRIORITY|DELAYED|HIGH_PRIORITY|"
    r"OR\s+(?:ROLLBACK|ABORT|REPLACE|FAIL|IGNORE))\b",
    re.IGNORECASE | re.DOTALL,
)
_QUOTED = r'"[^"]*"|`[^`]*`|\[[^\]]*\]'
_BARE = r'[^\s.,;()"`\[\]]+'
_REFERENCE = re.compile(rf"{_COMMENTS}\s*(?P<reference>(?:{_QUOTED}|{_BARE}|\.)+)", re.DOTALL)
_PART = re.compile(
    r'"(?P<double>[^"]*)"|`(?P<backtick>[^`]*)`|\[(?P<bracket>[^\]]*)\]|(?P<bare>[^."`\[\]]+)|(?P<dot>\.)'
)


def split_table_reference(reference: str) -> "list[str]":
    """Split a possibly quoted, dotted object reference into its parts.

    Quoting characters are removed and dots inside quoted identifiers are kept.
    Omitted qualifiers come back as empty strings.

    Args:
        reference: A reference such as ``"db"."foos"`` or ``server...foos``.

    Returns:
        list[str]: One entry per dot separated part.
    """
    parts: list[str] = []
    current = ""
    for match in _PART.finditer(reference):
        if match.group("dot") is not None:
            parts.append(current)
            current = ""
            continue
        current += next(value for value in match.group("double", "backtick", "bracket", "bare") if value is not None)
    parts.append(current)
    return parts


def extract_table_name(sql: str) -> Optional[str]:
    """Return the table an ``INSERT`` statement writes to.

    Statements that are not inserts, and inserts whose target cannot be attributed
    confidently, yield ``None``. This function never raises.

    Args:
        sql: The raw statement as sent to the driver.

    Returns:
        Optional[str]: The unquoted table name, case preserved.
    """
    match = _INSERT.match(sql)
    if match is None:
        return None
    position = match.end()
    while modifier := _MODIFIER.match(sql, position):
        position = modifier.end()
        if modifier.group("keyword").upper() == "INTO":
            break

    reference = _REFERENCE.match(sql, position)
    if reference is None:
        return None
    parts = split_table_reference(reference.group("reference"))
    if len(parts) > MAX_REFERENCE_PARTS:
        return None
    return next((part for part in reversed(parts) if part), None)

from enum import Enum
from typing import Union

from rewind_alchemy.exceptions import ImproperConfigurationError

__all__ = ("Strategy", "StrategyT")


class Strategy(str, Enum):
    """How a cleaner restores its database between tests."""

    TRANSACTION = "transaction"
    """Wrap every test in a transaction and roll it back afterwards."""

    TRUNCATION = "truncation"
    """Empty the tables written during the test."""

    @classmethod
    def coerce(cls, value: "StrategyT") -> "Strategy":
        """Resolve a strategy from a member or one of its accepted names.

        ``truncate``, ``deletion`` and ``delete`` are accepted as aliases of :attr:`TRUNCATION`.

        Args:
            value: A :class:`Strategy` or its name.

        Raises:
            ImproperConfigurationError: If the name is not a known strategy.

        Returns:
            Strategy: The matching member.
        """
        if isinstance(value, Strategy):
            return value
        name = value.strip().lower()
        if name in _ALIASES:
            return _ALIASES[name]
        try:
            return cls(name)
        except ValueError as exc:
            msg = f"Unknown cleaning strategy {value!r}, expected one of: {', '.join(m.value for m in cls)}"
            raise ImproperConfigurationError(msg) from exc


StrategyT = Union[Strategy, str]

_ALIASES = {
    "truncate": Strategy.TRUNCATION,
    "deletion": Strategy.TRUNCATION,
    "delete": Strategy.TRUNCATION,
}

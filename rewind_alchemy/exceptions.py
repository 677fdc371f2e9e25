from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

if TYPE_CHECKING:
    from collections.abc import Generator, Sequence

__all__ = (
    "CleanupError",
    "ImproperConfigurationError",
    "RewinderError",
    "TransactionError",
    "TruncationError",
    "UnknownConnectionError",
    "wrap_database_exception",
)


class RewinderError(Exception):
    """Base exception class from which all Rewind Alchemy exceptions inherit."""

    detail: str

    def __init__(self, *args: Any, detail: str = "") -> None:
        """Initialize ``RewinderError``.

        Args:
            *args: args are converted to :class:`str` before passing to :class:`Exception`
            detail: detail of the exception.
        """
        str_args = [str(arg) for arg in args if arg]
        if not detail:
            if str_args:
                detail, *str_args = str_args
            elif hasattr(self, "detail"):
                detail = self.detail
        self.detail = detail
        super().__init__(*str_args)

    def __repr__(self) -> str:
        if self.detail:
            return f"{self.__class__.__name__} - {self.detail}"
        return self.__class__.__name__

    def __str__(self) -> str:
        return " ".join((*self.args, self.detail)).strip()


class ImproperConfigurationError(RewinderError):
    """Improper Configuration error.

    This exception is raised when a connection definition or a cleaner option is invalid.

    Args:
        *args: Variable length argument list passed to parent class.
        detail: Detailed error message.
    """


class UnknownConnectionError(RewinderError):
    """Unknown connection error.

    This exception is raised when an operation references a connection name that is neither
    registered nor present in the database configuration.

    Args:
        *args: Variable length argument list passed to parent class.
        detail: Detailed error message.
    """


class TransactionError(RewinderError):
    """Transaction error.

    This exception is raised when beginning, committing or rolling back a transaction fails at the
    driver level.

    Args:
        *args: Variable length argument list passed to parent class.
        detail: Detailed error message.
    """


class TruncationError(RewinderError):
    """Truncation error.

    This exception is raised when tables could not be listed or emptied, e.g. because of foreign key
    constraints.

    Args:
        *args: Variable length argument list passed to parent class.
        detail: Detailed error message.
    """


class CleanupError(RewinderError):
    """Aggregate cleanup error.

    Raised after every registered cleaner has been visited when at least one of them failed.

    Args:
        *args: Variable length argument list passed to parent class.
        errors: The errors raised by the individual cleaners, in registration order.
        detail: Detailed error message.
    """

    def __init__(self, *args: Any, errors: Sequence[Exception] = (), detail: str = "") -> None:
        self.errors = list(errors)
        if not args and not detail:
            detail = f"{len(self.errors)} cleaner(s) failed: " + "; ".join(
                f"{type(error).__name__}: {error}" for error in self.errors
            )
        super().__init__(*args, detail=detail)


@contextmanager
def wrap_database_exception(
    error_class: type[RewinderError] = RewinderError,
    detail: str | None = None,
) -> Generator[None, None, None]:
    """Do something within context to raise a ``RewinderError`` chained
    from an original ``SQLAlchemyError``.

        >>> try:
        ...     with wrap_database_exception(TruncationError):
        ...         raise SQLAlchemyError("Original Exception")
        ... except TruncationError as exc:
        ...     print(
        ...         f"caught truncation exception from {type(exc.__context__)}"
        ...     )
        caught truncation exception from <class 'sqlalchemy.exc.SQLAlchemyError'>

    Args:
        error_class: The :class:`RewinderError` subclass to raise.
        detail: Message prefix; the original error is appended to it.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        msg = f"{detail}: {exc}" if detail else f"An exception occurred: {exc}"
        raise error_class(detail=msg) from exc

"""Exception hierarchy for querykit.

Every error derives from :class:`QueryKitError` and from the builtin exception
that best describes it, so callers can catch either.
"""

from __future__ import annotations

from typing import Any


class QueryKitError(Exception):
    """Base class for all querykit errors."""


class ValidationError(QueryKitError, ValueError):
    """Bad input to a builder method (operator, arity, identifier, limit...)."""


class StateError(QueryKitError, RuntimeError):
    """A method was called without its required prior calls."""


class ConfigurationError(QueryKitError, ValueError):
    """Invalid database configuration."""


class SoftDeleteNotSupportedError(QueryKitError, TypeError):
    """Soft delete requested on a model without SoftDeleteMixin."""

    def __init__(self, model_name: str) -> None:
        super().__init__(
            f"{model_name} doesn't support soft delete. "
            "Add SoftDeleteMixin to enable soft delete."
        )
        self.model_name = model_name


class ExecutionError(QueryKitError):
    """The driver failed to execute a statement.

    The original driver exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        sql: str | None = None,
        params: list[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.sql = sql
        self.params = params


class ConnectionNotEstablishedError(ExecutionError):
    """No database has been connected."""

    def __init__(self, message: str = "Database not connected") -> None:
        super().__init__(message)

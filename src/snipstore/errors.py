"""Error types and the Result value for snipstore."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from snipstore.models import ImportReport

T = TypeVar("T")


class SnippetStoreError(Exception):
    """Base exception for all snipstore errors, with an optional remediation hint."""

    error_code = "S000"

    def __init__(self, message: str, solution: str | None = None):
        self.message = message
        self.solution = solution

        full_message = f"[{self.error_code}] {message}"
        if solution:
            full_message += f" ({solution})"
        super().__init__(full_message)


class ValidationError(SnippetStoreError):
    """Raised when snippet, query or config data is malformed.

    ``field`` names the first offending field; ``errors`` holds every
    violation that was found.
    """

    error_code = "S001"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        errors: list[str] | tuple[str, ...] = (),
        solution: str | None = None,
    ):
        self.field = field
        self.errors = list(errors) or [message]
        if len(self.errors) > 1 or self.errors[0] != message:
            message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(message, solution)


class StorageError(SnippetStoreError):
    """Raised when the backing file cannot be read or written."""

    error_code = "S002"

    def __init__(
        self,
        message: str,
        path: Path | str | None = None,
        cause: BaseException | None = None,
        solution: str | None = None,
    ):
        self.path = Path(path) if path is not None else None
        self.cause = cause
        if path is not None:
            message = f"{message}: {path}"
        if cause is not None:
            message = f"{message} ({type(cause).__name__}: {cause})"
        super().__init__(message, solution)


class ParseError(StorageError):
    """Raised when a file exists but does not hold a valid snippet collection."""

    error_code = "S003"


class ImportFailedError(SnippetStoreError):
    """Raised when an import could not be persisted.

    The report of everything processed before the failure is kept on
    ``report``.
    """

    error_code = "S004"

    def __init__(self, message: str, report: ImportReport, solution: str | None = None):
        self.report = report
        super().__init__(message, solution)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success/failure outcome for APIs that report errors instead of raising."""

    value: T | None = None
    error: SnippetStoreError | None = None

    @classmethod
    def ok(cls, value: T | None = None) -> Result[T]:
        return cls(value=value)

    @classmethod
    def fail(cls, error: SnippetStoreError) -> Result[T]:
        return cls(error=error)

    @property
    def success(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, raising the stored error on failure."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

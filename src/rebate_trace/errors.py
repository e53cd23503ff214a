"""
Custom exceptions and error handling for the rebate trace pipeline.

Provides:
- Typed exception hierarchy separating fatal from per-record failures
- Error context preservation for debugging
- Partial success handling for the join phase
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any


class RebateTraceError(Exception):
    """Base exception for all rebate trace errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


# =============================================================================
# Client Errors
# =============================================================================


class ClientError(RebateTraceError):
    """Base class for client-related errors."""

    pass


class DocumentStoreError(ClientError):
    """Error from document store operations."""

    pass


class DocumentStoreConnectionError(DocumentStoreError):
    """Failed to connect to the document store."""

    pass


class DocumentStoreQueryError(DocumentStoreError):
    """Error executing a document store read, aggregation or write."""

    pass


class SearchError(ClientError):
    """Error from the roster search backend."""

    pass


class SearchConnectionError(SearchError):
    """Failed to reach the search backend."""

    pass


class SearchQueryError(SearchError):
    """Search backend rejected or failed a query."""

    pass


class SearchTimeoutError(SearchError):
    """Search call did not complete within its deadline."""

    pass


# =============================================================================
# Pipeline Errors
# =============================================================================


class PipelineError(RebateTraceError):
    """Base class for pipeline-related errors."""

    pass


class ConfigurationError(PipelineError):
    """Run configuration is invalid or incomplete."""

    pass


class IndexBuildError(PipelineError):
    """Index construction failed; the run must not reach the join phase."""

    pass


class IndexFrozenError(PipelineError):
    """Insert attempted on an index that has already been frozen."""

    pass


class JoinError(PipelineError):
    """Fatal error during the join phase."""

    pass


class MissingIndexEntryError(JoinError):
    """A claim's customer key is absent from the completed license index."""

    pass


class RecordError(PipelineError):
    """
    Data error confined to a single claim.

    Collected into the join report; the claim is excluded from output.
    """

    pass


class InvoiceDateError(RecordError):
    """Invoice date could not be decoded."""

    pass


class ZeroQuantityError(RecordError):
    """Shipped quantity is zero so unit values are undefined."""

    pass


class ClaimValidationError(RecordError):
    """Claim document is missing fields or has ill-typed values."""

    pass


# =============================================================================
# Partial Success Handling
# =============================================================================


@dataclass
class RecordFailure:
    """A record excluded from output, with the error that excluded it."""

    item_id: str | None
    error: RecordError


@dataclass
class PartialSuccessResult:
    """
    Outcome of a batch in which individual records may be excluded.

    Successes are only counted; failures keep their error for the
    data-quality report.
    """

    success_count: int = 0
    failed: list[RecordFailure] = field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def total_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def partial_success(self) -> bool:
        return self.success_count > 0 and self.failure_count > 0

    def add_success(self) -> None:
        self.success_count += 1

    def add_failure(self, error: RecordError, item_id: str | None = None) -> None:
        self.failed.append(RecordFailure(item_id=item_id, error=error))

    def failures_by_type(self) -> dict[str, int]:
        """Count failures per error class name."""
        return dict(Counter(type(f.error).__name__ for f in self.failed))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'success_count': self.success_count,
            'failure_count': self.failure_count,
            'total_count': self.total_count,
            'all_succeeded': self.all_succeeded,
            'failures_by_type': self.failures_by_type(),
            'failed_ids': [f.item_id for f in self.failed if f.item_id],
            'errors': [{'item_id': f.item_id, 'error': str(f.error)} for f in self.failed],
        }


# =============================================================================
# Error Handling Utilities
# =============================================================================


def wrap_mongo_error(exc: Exception, context: dict[str, Any] | None = None) -> DocumentStoreError:
    """
    Wrap a MongoDB driver exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed DocumentStoreError subclass
    """
    error_str = str(exc).lower()
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if (
        'connection' in error_str
        or 'connect' in error_str
        or 'timed out' in error_str
        or 'serverselection' in type(exc).__name__.lower()
    ):
        return DocumentStoreConnectionError(
            f"Document store connection failed: {exc}",
            context=ctx,
        )
    return DocumentStoreQueryError(
        f"Document store query error: {exc}",
        context=ctx,
    )


def wrap_search_error(exc: Exception, context: dict[str, Any] | None = None) -> SearchError:
    """
    Wrap a search backend exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed SearchError subclass
    """
    if isinstance(exc, SearchError):
        return exc

    error_str = str(exc).lower()
    type_name = type(exc).__name__.lower()
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if 'timeout' in type_name or 'timed out' in error_str:
        return SearchTimeoutError(
            f"Search call timed out: {exc}",
            context=ctx,
        )
    if 'connect' in type_name or 'connection' in error_str:
        return SearchConnectionError(
            f"Search backend connection failed: {exc}",
            context=ctx,
        )
    return SearchQueryError(
        f"Search query error: {exc}",
        context=ctx,
    )

"""
Collaborator interfaces the pipeline depends on.

The pipeline only talks to these protocols; MongoDocumentStore and
MeilisearchClient are the production implementations, and tests use
in-memory fakes.
"""

from typing import Any, AsyncGenerator, Protocol

from ..models.contract import Contract
from ..models.license import CustomerGroup
from ..models.roster import RosterHit
from ..sources import SourceProfile


class DocumentStore(Protocol):
    """Source of contracts and claims, and sink for traces."""

    async def find_contracts(self) -> list[Contract]:
        """Return every contract record, regardless of its validity flag."""
        ...

    def find_claims(
        self,
        filter: dict[str, Any],
        sort: dict[str, int] | None = None,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Stream raw claim documents matching the filter; callers may aclose() early."""
        ...

    async def distinct_customer_groups(
        self,
        filter: dict[str, Any],
        profile: SourceProfile,
    ) -> list[CustomerGroup]:
        """Return the distinct (contract, name, addr, city, state) tuples for the filter."""
        ...

    async def replace_all(self, collection: str, documents: list[dict[str, Any]]) -> int:
        """Delete a collection's contents and insert documents in order."""
        ...


class SearchBackend(Protocol):
    """Fuzzy search over the member roster."""

    async def search(
        self,
        query: str,
        filter: str | None = None,
        limit: int = 1,
    ) -> list[RosterHit]:
        """Return up to ``limit`` ranked hits for the query."""
        ...

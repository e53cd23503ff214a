"""
Pytest configuration and shared fixtures.

The document store and roster search backend are replaced by in-memory fakes
so every test runs without MongoDB or Meilisearch.

Key fixtures:
- make_claim: build a raw MEDLINE warehouse claim document
- make_store: FakeDocumentStore factory
- make_search: FakeSearchBackend factory
- run_config: RunConfig for the standard August 2022 MEDLINE file
"""

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from rebate_trace.clients.mongo_client import parse_customer_groups  # noqa: E402
from rebate_trace.config import RunConfig  # noqa: E402
from rebate_trace.errors import DocumentStoreQueryError  # noqa: E402
from rebate_trace.models import Contract, CustomerGroup, RosterHit  # noqa: E402
from rebate_trace.sources import MEDLINE, SourceProfile  # noqa: E402

_GROUP_FIELDS = ('contract', 'name', 'addr', 'city', 'state')


class FakeDocumentStore:
    """In-memory DocumentStore with call recording."""

    def __init__(
        self,
        contracts: list[dict[str, Any]] | None = None,
        claims: list[dict[str, Any]] | None = None,
        fail_on: str | None = None,
    ):
        self.contracts = contracts or []
        self.claims = claims or []
        self.fail_on = fail_on
        self.outputs: dict[str, list[dict[str, Any]]] = {}
        self.find_claims_calls: list[tuple[dict[str, Any], dict[str, int] | None]] = []
        self.group_calls = 0

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_on == operation:
            raise DocumentStoreQueryError(f'{operation} failed', context={'operation': operation})

    async def find_contracts(self) -> list[Contract]:
        self._maybe_fail('find_contracts')
        return [Contract.from_document(d) for d in self.contracts]

    async def find_claims(self, filter, sort=None):
        self.find_claims_calls.append((filter, sort))
        self._maybe_fail('find_claims')
        docs = list(self.claims)
        for column, direction in reversed(list((sort or {}).items())):
            docs.sort(key=lambda d: d.get(column), reverse=direction < 0)
        for doc in docs:
            await asyncio.sleep(0)
            yield doc

    async def distinct_customer_groups(self, filter, profile: SourceProfile) -> list[CustomerGroup]:
        self.group_calls += 1
        self._maybe_fail('distinct_customer_groups')
        # Project like the $group stage: absent columns are left out of the group
        seen = dict.fromkeys(
            tuple((f, doc[profile.column(f)]) for f in _GROUP_FIELDS if profile.column(f) in doc)
            for doc in self.claims
        )
        return parse_customer_groups([dict(items) for items in seen])

    async def replace_all(self, collection: str, documents: list[dict[str, Any]]) -> int:
        self._maybe_fail('replace_all')
        self.outputs[collection] = list(documents)
        return len(documents)


class FakeSearchBackend:
    """
    In-memory SearchBackend.

    hits maps (query, filter) -> list of member ids. Tracks every call and the
    peak number of concurrent in-flight searches.
    """

    def __init__(
        self,
        hits: dict[tuple[str, str | None], list[str]] | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ):
        self.hits = hits or {}
        self.delay = delay
        self.error = error
        self.calls: list[tuple[str, str | None, int]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def search(self, query: str, filter: str | None = None, limit: int = 1) -> list[RosterHit]:
        self.calls.append((query, filter, limit))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            member_ids = self.hits.get((query, filter), [])
            return [
                RosterHit(id=f'r-{member_id}', member_id=member_id, group_name=filter or '')
                for member_id in member_ids[:limit]
            ]
        finally:
            self.in_flight -= 1


def _claim(
    contract: str = 'C1',
    name: str = 'Acme',
    addr: str = '1 Main',
    city: str = 'X',
    state: str = 'Y',
    ship_qty: int = 10,
    rebate: float = 100.0,
    cost: float = 50.0,
    invoice_date: Any = '2022-08-01',
    claim_nbr: int = 5001,
    invoice_nbr: int = 9001,
    part: str = 'MDS123',
    uom: str = 'CS',
    **extra: Any,
) -> dict[str, Any]:
    """Raw MEDLINE warehouse document."""
    doc = {
        'VendorCont': contract,
        'Debit Memo': claim_nbr,
        'Invoice': invoice_nbr,
        'InvoiceDat': invoice_date,
        'VendorItm': part,
        'Quantity': ship_qty,
        'RebateAmt': rebate,
        'CustName': name,
        'CustStreet': addr,
        'CustCity': city,
        'CustState': state,
        'UoM': uom,
        'ContrCost': cost,
        '__file__': '2750-082022-Rebate_File.xlsx',
        '__month__': '08',
        '__year__': '2022',
    }
    doc.update(extra)
    return doc


@pytest.fixture
def make_claim():
    """Factory for raw MEDLINE claim documents."""
    return _claim


@pytest.fixture
def make_store():
    """Factory for FakeDocumentStore."""
    return FakeDocumentStore


@pytest.fixture
def make_search():
    """Factory for FakeSearchBackend."""
    return FakeSearchBackend


@pytest.fixture
def run_config() -> RunConfig:
    """Run config for the August 2022 MEDLINE rebate file."""
    return RunConfig(
        source=MEDLINE,
        filter=RunConfig.file_filter('2750-082022-Rebate_File.xlsx', '08', '2022'),
        period='AUGUST2022',
        search_concurrency=10,
        join_concurrency=100,
        search_timeout_seconds=5.0,
    )

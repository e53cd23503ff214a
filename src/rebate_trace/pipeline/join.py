"""
Join phase: stream claims, resolve them against the license index, and emit
traces.

Per-record data errors (bad invoice date, zero quantity, invalid document)
exclude the claim and are collected into the join report. A claim whose
customer key is missing from the index means the build and join disagree on
the claim set; that aborts the whole join.
"""

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from ..clients.base import DocumentStore
from ..config import RunConfig
from ..errors import JoinError, PartialSuccessResult, RecordError, ZeroQuantityError
from ..logging import get_logger
from ..models.claim import Claim
from ..models.license import LicenseIndexEntry
from ..models.trace import Trace
from .indexes import LicenseIndex

logger = get_logger(__name__)


class TraceAccumulator:
    """
    Shared output buffer for concurrent join workers.

    Append order follows completion order, not input order.
    """

    def __init__(self):
        self._traces: list[Trace] = []
        self._report = PartialSuccessResult()
        self._lock = asyncio.Lock()

    async def append(self, trace: Trace) -> None:
        async with self._lock:
            self._traces.append(trace)
            self._report.add_success()

    async def reject(self, error: RecordError, item_id: str | None = None) -> None:
        async with self._lock:
            self._report.add_failure(error, item_id=item_id)

    @property
    def traces(self) -> list[Trace]:
        return list(self._traces)

    @property
    def report(self) -> PartialSuccessResult:
        return self._report


@dataclass
class JoinResult:
    """Output of the join phase."""

    traces: list[Trace] = field(default_factory=list)
    report: PartialSuccessResult = field(default_factory=PartialSuccessResult)
    claims_read: int = 0

    @property
    def excluded(self) -> int:
        return self.report.failure_count


def _record_id(document: dict[str, Any]) -> str | None:
    doc_id = document.get('_id')
    return str(doc_id) if doc_id is not None else None


class JoinEngine:
    """
    Streams the filtered claim set and joins each claim to its license entry.

    Claims are read in the configured sort order (customer name ascending by
    default) and processed with bounded concurrency.
    """

    def __init__(self, store: DocumentStore, config: RunConfig):
        self.store = store
        self.config = config

    def to_trace(self, claim: Claim, entry: LicenseIndexEntry) -> Trace:
        """
        Build the trace for a claim and its resolved index entry.

        Raises:
            InvoiceDateError: If the invoice date cannot be decoded
            ZeroQuantityError: If the shipped quantity is zero
        """
        invoice_date = self.config.source.decode_date(claim.invoice_date)

        quantity = abs(claim.ship_qty)
        if quantity == 0:
            raise ZeroQuantityError(
                'Shipped quantity is zero; unit cost and rebate are undefined',
                context={'claim_nbr': str(claim.claim_nbr), 'part': claim.part},
            )

        return Trace(
            claim_nbr=str(claim.claim_nbr),
            invoice_nbr=str(claim.invoice_nbr),
            invoice_date=invoice_date,
            gpo=entry.gpo,
            contract=claim.contract,
            license=entry.license,
            period=self.config.period_label,
            name=claim.name,
            addr=claim.addr,
            city=claim.city,
            state=claim.state,
            part=claim.part,
            unit_rebate=claim.rebate / quantity,
            unit_cost=claim.cost / quantity,
            ship_qty=claim.ship_qty,
            ship_qty_as_cs=0,
            uom=claim.uom,
            rebate=claim.rebate,
            cost=claim.cost,
        )

    async def run(self, license_index: LicenseIndex) -> JoinResult:
        """
        Join every claim in the run filter.

        Args:
            license_index: Frozen license index

        Returns:
            JoinResult with traces and the per-record error report

        Raises:
            JoinError: If the index is incomplete or a claim's key is missing
            DocumentStoreError: If reading claims fails
        """
        if not license_index.frozen:
            raise JoinError('Join started before the license index was complete')

        accumulator = TraceAccumulator()
        semaphore = asyncio.Semaphore(self.config.join_concurrency)
        tasks: list[asyncio.Task] = []
        claims_read = 0

        logger.info(
            'join.started',
            index_entries=len(license_index),
            concurrency=self.config.join_concurrency,
        )

        abort = asyncio.Event()

        async def process(document: dict[str, Any]) -> None:
            try:
                await self._process(document, license_index, accumulator)
            except BaseException:
                abort.set()
                raise
            finally:
                semaphore.release()

        claims = self.store.find_claims(self.config.filter, self.config.claim_sort)
        try:
            async with aclosing(claims):
                async for document in claims:
                    await semaphore.acquire()
                    # Stop streaming once a worker has hit a fatal error
                    if abort.is_set():
                        semaphore.release()
                        break
                    claims_read += 1
                    tasks.append(asyncio.create_task(process(document)))
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        result = JoinResult(
            traces=accumulator.traces,
            report=accumulator.report,
            claims_read=claims_read,
        )
        logger.info(
            'join.complete',
            claims_read=claims_read,
            traces=len(result.traces),
            excluded=result.excluded,
            failures_by_type=result.report.failures_by_type(),
        )
        return result

    async def _process(
        self,
        document: dict[str, Any],
        license_index: LicenseIndex,
        accumulator: TraceAccumulator,
    ) -> None:
        item_id = _record_id(document)
        try:
            claim = Claim.from_document(document, self.config.source)
            entry = license_index.resolve(claim.key)
            trace = self.to_trace(claim, entry)
        except RecordError as e:
            logger.warning(
                'join.record_excluded',
                item_id=item_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await accumulator.reject(e, item_id=item_id)
            return

        await accumulator.append(trace)

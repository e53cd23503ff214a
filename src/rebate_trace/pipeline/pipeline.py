"""
Main pipeline orchestrator for rebate trace enrichment.

Provides end-to-end processing:
1. Load the contract index and enumerate customer groups (concurrently)
2. Build the license index (one roster search per customer group)
3. Freeze the index, then stream and join the claim set
4. Replace the output collection with the joined traces
5. Return results with counts, timings and the per-record error report
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from ..clients.base import DocumentStore, SearchBackend
from ..clients.meilisearch_client import MeilisearchClient
from ..clients.mongo_client import MongoDocumentStore
from ..config import RunConfig, Settings
from ..errors import (
    DocumentStoreError,
    IndexBuildError,
    JoinError,
    PartialSuccessResult,
    PipelineError,
)
from ..logging import PipelineTimer, get_logger, logging_context
from .contract_index import ContractIndexBuilder
from .join import JoinEngine
from .license_index import LicenseIndexBuilder

logger = get_logger(__name__)


@dataclass
class PipelineResult:
    """Result of one pipeline run."""

    # Identifiers
    run_id: str
    source: str
    period: str
    output_collection: str

    # Build statistics
    contracts_loaded: int = 0
    customer_groups: int = 0
    search_lookups: int = 0
    unmatched_licenses: int = 0
    missing_contracts: int = 0
    key_collisions: int = 0

    # Join statistics
    claims_read: int = 0
    traces_built: int = 0
    traces_written: int = 0
    records_excluded: int = 0
    report: PartialSuccessResult = field(default_factory=PartialSuccessResult)
    dry_run: bool = False

    # Timing
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    processing_time_ms: int | None = None
    stage_timings: dict[str, float] = field(default_factory=dict)

    # Fatal errors (the run raised)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True if the run completed without a fatal error."""
        return len(self.errors) == 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'run_id': self.run_id,
            'source': self.source,
            'period': self.period,
            'output_collection': self.output_collection,
            'contracts_loaded': self.contracts_loaded,
            'customer_groups': self.customer_groups,
            'search_lookups': self.search_lookups,
            'unmatched_licenses': self.unmatched_licenses,
            'missing_contracts': self.missing_contracts,
            'key_collisions': self.key_collisions,
            'claims_read': self.claims_read,
            'traces_built': self.traces_built,
            'traces_written': self.traces_written,
            'records_excluded': self.records_excluded,
            'report': self.report.to_dict(),
            'dry_run': self.dry_run,
            'processing_time_ms': self.processing_time_ms,
            'stage_timings': self.stage_timings,
            'success': self.success,
            'errors': self.errors,
        }


class TracePipeline:
    """
    End-to-end rebate trace pipeline.

    Orchestrates:
    - ContractIndexBuilder: contract id -> GPO
    - LicenseIndexBuilder: customer key -> license via roster search
    - JoinEngine: claims -> traces
    - DocumentStore.replace_all: persist traces

    Usage:
        pipeline = TracePipeline(store, search, run_config)
        result = await pipeline.run()
    """

    def __init__(
        self,
        store: DocumentStore,
        search: SearchBackend,
        config: RunConfig,
    ):
        """
        Initialize the pipeline with its collaborators.

        Args:
            store: Document store for contracts, claims and output
            search: Roster search backend
            config: Run configuration
        """
        self.store = store
        self.search = search
        self.config = config

        self.contract_builder = ContractIndexBuilder(store)
        self.license_builder = LicenseIndexBuilder(store, search, config)
        self.join_engine = JoinEngine(store, config)

    @classmethod
    async def from_settings(cls, settings: Settings, config: RunConfig) -> TracePipeline:
        """
        Create a pipeline backed by MongoDB and Meilisearch.

        Args:
            settings: Process settings with connection endpoints
            config: Run configuration

        Returns:
            Configured and connected TracePipeline
        """
        store = MongoDocumentStore(
            uri=settings.MONGODB_URI,
            database=settings.MONGODB_DATABASE,
            contracts_collection=settings.CONTRACTS_COLLECTION,
            claims_collection=settings.CLAIMS_COLLECTION,
        )
        try:
            await store.connect()
        except Exception:
            await store.close()
            raise

        search = MeilisearchClient(
            url=settings.MEILISEARCH_URL,
            api_key=settings.MEILISEARCH_KEY,
            index=settings.MEILISEARCH_INDEX,
            timeout=settings.SEARCH_REQUEST_TIMEOUT_SECONDS,
        )
        return cls(store, search, config)

    async def close(self) -> None:
        """Close client connections that support it."""
        for client in (self.store, self.search):
            close = getattr(client, 'close', None)
            if close is not None:
                await close()

    async def run(self, dry_run: bool = False) -> PipelineResult:
        """
        Run the pipeline for the configured claim set.

        Args:
            dry_run: Build and join, but skip writing the output collection

        Returns:
            PipelineResult with statistics and the per-record error report

        Raises:
            IndexBuildError: If either index could not be built
            JoinError: If the join hit a structural failure
            DocumentStoreError: If reading claims or writing output failed
            PipelineError: For any other failure
        """
        timer = PipelineTimer()
        run_id = uuid4().hex[:12]

        result = PipelineResult(
            run_id=run_id,
            source=self.config.source.tag,
            period=self.config.period_label,
            output_collection=self.config.output_collection,
            dry_run=dry_run,
        )

        with logging_context(
            run_id=run_id,
            source=self.config.source.tag,
            period=self.config.period,
        ):
            logger.info('pipeline.started', filter=self.config.filter, dry_run=dry_run)

            try:
                # Step 1: Contract index and customer groups are independent
                with timer.stage('reference_data'):
                    contract_index, groups = await asyncio.gather(
                        self.contract_builder.build(),
                        self.license_builder.fetch_groups(),
                    )
                result.contracts_loaded = len(contract_index)

                # Step 2: License index (completes and freezes before the join)
                with timer.stage('license_index'):
                    build = await self.license_builder.build(groups, contract_index)
                result.customer_groups = build.groups
                result.search_lookups = build.lookups
                result.unmatched_licenses = build.unmatched
                result.missing_contracts = build.missing_contracts
                result.key_collisions = build.collisions

                # Step 3: Join
                with timer.stage('join'):
                    joined = await self.join_engine.run(build.index)
                result.claims_read = joined.claims_read
                result.traces_built = len(joined.traces)
                result.records_excluded = joined.excluded
                result.report = joined.report

                # Step 4: Sink
                if not dry_run:
                    with timer.stage('sink'):
                        result.traces_written = await self.store.replace_all(
                            self.config.output_collection,
                            [t.to_document() for t in joined.traces],
                        )

            except IndexBuildError as e:
                logger.error('pipeline.index_build_failed', error=str(e))
                result.errors.append(f'Index build failed: {e}')
                raise
            except JoinError as e:
                logger.error('pipeline.join_failed', error=str(e), error_type=type(e).__name__)
                result.errors.append(f'Join failed: {e}')
                raise
            except DocumentStoreError as e:
                logger.error('pipeline.document_store_failed', error=str(e))
                result.errors.append(f'Document store error: {e}')
                raise
            except Exception as e:
                logger.error('pipeline.failed', error=str(e), error_type=type(e).__name__)
                result.errors.append(f'Pipeline error: {e}')
                raise PipelineError(f'Pipeline failed: {e}', context={'run_id': run_id}) from e

            result.completed_at = datetime.now()
            result.processing_time_ms = int(timer.total_ms)
            result.stage_timings = timer.stages.copy()

            logger.info(
                'pipeline.complete',
                claims_read=result.claims_read,
                traces_written=result.traces_written,
                records_excluded=result.records_excluded,
                unmatched_licenses=result.unmatched_licenses,
                missing_contracts=result.missing_contracts,
                **timer.summary(),
            )

        return result

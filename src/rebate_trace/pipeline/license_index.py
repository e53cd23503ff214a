"""
License index construction.

Resolves a member license for every distinct customer group in the claim set:
1. Enumerate distinct (contract, name, addr, city, state) groups
2. Resolve each group's GPO from the contract index
3. Search the roster once per group, scoped to the group's contract
4. Insert the result under the group's 4-part customer key

Lookups run with bounded concurrency and a per-call deadline. Any lookup that
fails aborts the build; the join never sees a partial index.
"""

import asyncio
from dataclasses import dataclass

from ..clients.base import DocumentStore, SearchBackend
from ..config import RunConfig
from ..errors import (
    DocumentStoreError,
    IndexBuildError,
    SearchError,
    SearchTimeoutError,
    wrap_search_error,
)
from ..logging import get_logger
from ..models.license import CustomerGroup, LicenseIndexEntry
from .indexes import MISSING_CONTRACT, NO_LICENSE, ContractIndex, LicenseIndex

logger = get_logger(__name__)


@dataclass
class LicenseIndexBuildResult:
    """Completed license index plus build statistics."""

    index: LicenseIndex
    groups: int = 0
    lookups: int = 0
    unmatched: int = 0
    missing_contracts: int = 0

    @property
    def collisions(self) -> int:
        return self.index.collisions


class LicenseIndexBuilder:
    """
    Builds the customer key -> license index from the filtered claim set.

    Groups are keyed by 5-tuple but the index is keyed by 4-tuple. Two groups
    for the same customer under different contracts therefore share a key;
    whichever insert lands last wins and a collision warning is logged.
    """

    def __init__(
        self,
        store: DocumentStore,
        search: SearchBackend,
        config: RunConfig,
    ):
        """
        Initialize the builder.

        Args:
            store: Document store holding the claim collection
            search: Roster search backend
            config: Run configuration (filter, limits, search filter template)
        """
        self.store = store
        self.search = search
        self.config = config

    async def fetch_groups(self) -> list[CustomerGroup]:
        """
        Enumerate distinct customer groups for the run filter.

        Raises:
            IndexBuildError: If the grouping query fails
        """
        try:
            groups = await self.store.distinct_customer_groups(
                self.config.filter, self.config.source
            )
        except DocumentStoreError as e:
            logger.error('license_index.group_query_failed', error=str(e))
            raise IndexBuildError(
                f'Customer grouping query failed: {e.message}',
                context=e.context,
            ) from e

        logger.info('license_index.groups_fetched', groups=len(groups))
        return groups

    async def build(
        self,
        groups: list[CustomerGroup],
        contract_index: ContractIndex,
    ) -> LicenseIndexBuildResult:
        """
        Resolve every group and return the frozen index.

        Args:
            groups: Customer groups from fetch_groups()
            contract_index: Completed contract index

        Returns:
            LicenseIndexBuildResult with a frozen index

        Raises:
            IndexBuildError: If any roster lookup fails or times out
        """
        # Collapse repeats so each 5-tuple is searched exactly once
        unique = list(dict.fromkeys(groups))
        result = LicenseIndexBuildResult(index=LicenseIndex(), groups=len(unique))
        semaphore = asyncio.Semaphore(self.config.search_concurrency)

        logger.info(
            'license_index.build_started',
            groups=len(unique),
            concurrency=self.config.search_concurrency,
        )

        async def resolve(group: CustomerGroup) -> None:
            async with semaphore:
                license = await self.lookup(group)
            result.lookups += 1

            gpo = contract_index.gpo_for(group.contract)
            if gpo == MISSING_CONTRACT:
                result.missing_contracts += 1
            if license == NO_LICENSE:
                result.unmatched += 1

            entry = LicenseIndexEntry.from_group(group, gpo=gpo, license=license)
            previous = await result.index.insert(group.key, entry)
            if previous is not None:
                logger.warning(
                    'license_index.key_collision',
                    key=group.key,
                    previous_contract=previous.contract,
                    contract=group.contract,
                )

        tasks = [asyncio.create_task(resolve(g)) for g in unique]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        result.index.freeze()
        logger.info(
            'license_index.built',
            entries=len(result.index),
            lookups=result.lookups,
            unmatched=result.unmatched,
            missing_contracts=result.missing_contracts,
            collisions=result.collisions,
        )
        return result

    async def lookup(self, group: CustomerGroup) -> str:
        """
        Search the roster for a group's member license.

        Returns:
            The top hit's member_id, or NO_LICENSE when nothing matches

        Raises:
            IndexBuildError: On a search failure or when the deadline expires
        """
        query = group.key
        search_filter = self.config.search_filter_template.format(contract=group.contract)
        context = {'query': query, 'filter': search_filter}

        try:
            hits = await asyncio.wait_for(
                self.search.search(query, filter=search_filter, limit=1),
                timeout=self.config.search_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = SearchTimeoutError(
                f'Roster search exceeded {self.config.search_timeout_seconds}s',
                context=context,
            )
            logger.error('license_index.lookup_timeout', **context)
            raise IndexBuildError(str(error), context=context) from error
        except SearchError as e:
            logger.error('license_index.lookup_failed', error=str(e), **context)
            raise IndexBuildError(f'Roster search failed: {e.message}', context=context) from e
        except Exception as e:
            wrapped = wrap_search_error(e, dict(context))
            logger.error('license_index.lookup_failed', error=str(wrapped), **context)
            raise IndexBuildError(f'Roster search failed: {wrapped.message}', context=context) from e

        if not hits:
            return NO_LICENSE
        return hits[0].member_id

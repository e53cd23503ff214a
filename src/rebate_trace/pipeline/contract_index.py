"""
Contract index construction.
"""

from pydantic import ValidationError as PydanticValidationError

from ..clients.base import DocumentStore
from ..errors import DocumentStoreError, IndexBuildError
from ..logging import get_logger
from .indexes import ContractIndex

logger = get_logger(__name__)


class ContractIndexBuilder:
    """
    Builds the contract id -> GPO index from every contract record.

    Contracts are not filtered on their validity flag. When the store yields
    the same contract id twice, the later record wins.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    async def build(self) -> ContractIndex:
        try:
            contracts = await self.store.find_contracts()
        except DocumentStoreError as e:
            logger.error('contract_index.load_failed', error=str(e))
            raise IndexBuildError(
                f'Failed to load contracts: {e.message}',
                context=e.context,
            ) from e
        except PydanticValidationError as e:
            logger.error('contract_index.invalid_contract', error=str(e))
            raise IndexBuildError(
                'Contract collection holds an invalid record',
                context={'error_count': e.error_count()},
            ) from e

        mapping: dict[str, str] = {}
        duplicates = 0
        for contract in contracts:
            if contract.contract in mapping:
                duplicates += 1
                logger.warning(
                    'contract_index.duplicate_contract',
                    contract=contract.contract,
                    previous_gpo=mapping[contract.contract],
                    gpo=contract.gpo,
                )
            mapping[contract.contract] = contract.gpo

        logger.info(
            'contract_index.built',
            contracts=len(mapping),
            duplicates=duplicates,
        )
        return ContractIndex(mapping, duplicates=duplicates)

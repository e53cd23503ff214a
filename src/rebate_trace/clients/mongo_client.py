"""
MongoDB client wrapper for the rebate trace pipeline.

Handles:
- Connection management with the pymongo async client
- Contract and claim reads from the warehouse database
- Customer grouping aggregation for the license index
- Replace-all writes of trace output
"""

from typing import Any, AsyncGenerator

from pydantic import ValidationError as PydanticValidationError
from pymongo import AsyncMongoClient
from pymongo.errors import ConnectionFailure, PyMongoError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import wrap_mongo_error
from ..logging import get_logger
from ..models.contract import Contract
from ..models.license import CustomerGroup
from ..sources import SourceProfile

logger = get_logger(__name__)

_GROUP_FIELDS = ('contract', 'name', 'addr', 'city', 'state')

_transient = retry(
    retry=retry_if_exception_type(ConnectionFailure),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)


def build_group_pipeline(filter: dict[str, Any], profile: SourceProfile) -> list[dict[str, Any]]:
    """
    Aggregation pipeline producing distinct customer groups.

    Groups on the 5-tuple (contract, name, addr, city, state) and projects the
    warehouse columns back to canonical field names.
    """
    columns = {f: profile.column(f) for f in _GROUP_FIELDS}
    return [
        {'$match': filter},
        {'$group': {'_id': {f: f'${col}' for f, col in columns.items()}}},
        {'$project': {'_id': 0, **{f: f'$_id.{f}' for f in _GROUP_FIELDS}}},
    ]


def parse_customer_groups(documents: list[dict[str, Any]]) -> list[CustomerGroup]:
    """Validate grouping output, dropping incomplete groups with a warning."""
    groups = []
    for doc in documents:
        try:
            groups.append(CustomerGroup.model_validate(doc))
        except PydanticValidationError as e:
            logger.warning(
                'mongo.incomplete_customer_group',
                group=doc,
                invalid_fields=['.'.join(map(str, err['loc'])) for err in e.errors()],
            )
    return groups


class MongoDocumentStore:
    """
    Async MongoDB document store.

    Reads contracts and claims from the warehouse database and writes trace
    output collections into the same database.
    """

    def __init__(
        self,
        uri: str,
        database: str = 'busserebatetraces',
        contracts_collection: str = 'contracts',
        claims_collection: str = 'data_warehouse',
        client: AsyncMongoClient | None = None,
    ):
        """
        Initialize the store.

        Args:
            uri: MongoDB connection string
            database: Database holding contracts, claims and outputs
            contracts_collection: Contract reference collection
            claims_collection: Warehouse claim collection
            client: Pre-built client (mainly for tests)
        """
        if not uri and client is None:
            raise ValueError('MongoDB URI is required')

        self.uri = uri
        self.database_name = database
        self.contracts_collection = contracts_collection
        self.claims_collection = claims_collection
        self._client = client

    @property
    def client(self) -> AsyncMongoClient:
        if self._client is None:
            self._client = AsyncMongoClient(self.uri)
        return self._client

    @property
    def db(self):
        return self.client[self.database_name]

    async def connect(self) -> None:
        """Verify connectivity with a ping."""
        try:
            await self.client.admin.command('ping')
        except PyMongoError as e:
            raise wrap_mongo_error(e, {'database': self.database_name}) from e

    async def close(self) -> None:
        """Close the client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def find_contracts(self) -> list[Contract]:
        """Load every contract record; the validity flag is not filtered on."""
        try:
            docs = await self._fetch_contracts()
        except PyMongoError as e:
            raise wrap_mongo_error(e, {'collection': self.contracts_collection}) from e
        return [Contract.from_document(d) for d in docs]

    @_transient
    async def _fetch_contracts(self) -> list[dict[str, Any]]:
        cursor = self.db[self.contracts_collection].find({})
        return await cursor.to_list(length=None)

    async def find_claims(
        self,
        filter: dict[str, Any],
        sort: dict[str, int] | None = None,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """
        Stream claim documents matching the filter.

        Args:
            filter: Warehouse filter document
            sort: Optional sort spec, e.g. {'CustName': 1}

        Yields:
            Raw claim documents
        """
        collection = self.db[self.claims_collection]
        try:
            cursor = collection.find(filter, sort=list(sort.items()) if sort else None)
            try:
                async for doc in cursor:
                    yield doc
            finally:
                await cursor.close()
        except PyMongoError as e:
            raise wrap_mongo_error(e, {'collection': self.claims_collection}) from e

    async def distinct_customer_groups(
        self,
        filter: dict[str, Any],
        profile: SourceProfile,
    ) -> list[CustomerGroup]:
        """
        Return distinct (contract, name, addr, city, state) tuples for the filter.

        Groups with a missing or non-text column are skipped; their claims are
        rejected individually during the join.
        """
        pipeline = build_group_pipeline(filter, profile)
        try:
            docs = await self._aggregate(pipeline)
        except PyMongoError as e:
            raise wrap_mongo_error(e, {'collection': self.claims_collection}) from e
        return parse_customer_groups(docs)

    @_transient
    async def _aggregate(self, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        cursor = await self.db[self.claims_collection].aggregate(pipeline)
        return await cursor.to_list(length=None)

    async def replace_all(self, collection: str, documents: list[dict[str, Any]]) -> int:
        """
        Replace a collection's contents with documents.

        The delete and insert are not transactional; a failure between them
        leaves the collection empty, and the next run rewrites it.

        Returns:
            Number of inserted documents
        """
        coll = self.db[collection]
        try:
            deleted = await coll.delete_many({})
            inserted = 0
            if documents:
                result = await coll.insert_many(documents, ordered=True)
                inserted = len(result.inserted_ids)
        except PyMongoError as e:
            raise wrap_mongo_error(e, {'collection': collection}) from e

        logger.info(
            'mongo.replace_all',
            collection=collection,
            deleted=deleted.deleted_count,
            inserted=inserted,
        )
        return inserted

    async def health_check(self) -> dict[str, bool | str]:
        """
        Verify database connectivity.

        Returns:
            Dict with 'healthy' bool, database name, and optional error
        """
        try:
            await self.client.admin.command('ping')
            return {'healthy': True, 'database': self.database_name}
        except PyMongoError as e:
            return {'healthy': False, 'error': str(e)}

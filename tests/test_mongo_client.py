"""
Tests for the MongoDB document store with a mocked async client.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import OperationFailure

from rebate_trace.clients import MongoDocumentStore
from rebate_trace.clients.mongo_client import build_group_pipeline
from rebate_trace.errors import DocumentStoreQueryError
from rebate_trace.sources import MEDLINE


def _store(collection: MagicMock) -> MongoDocumentStore:
    client = MagicMock()
    client.__getitem__.return_value.__getitem__.return_value = collection
    client.close = AsyncMock()
    return MongoDocumentStore(uri='mongodb://mongo.test', client=client)


class TestGroupPipeline:
    def test_pipeline_shape(self):
        filter = {'__month__': '08'}

        pipeline = build_group_pipeline(filter, MEDLINE)

        assert pipeline[0] == {'$match': filter}
        assert pipeline[1]['$group']['_id'] == {
            'contract': '$VendorCont',
            'name': '$CustName',
            'addr': '$CustStreet',
            'city': '$CustCity',
            'state': '$CustState',
        }
        assert pipeline[2]['$project']['_id'] == 0
        assert pipeline[2]['$project']['name'] == '$_id.name'


class TestMongoDocumentStore:
    @pytest.mark.asyncio
    async def test_find_contracts(self):
        collection = MagicMock()
        collection.find.return_value.to_list = AsyncMock(
            return_value=[{'_id': 'x', 'contract': 'C1', 'gpo': 'G1', 'valid': True}]
        )

        contracts = await _store(collection).find_contracts()

        assert [(c.contract, c.gpo) for c in contracts] == [('C1', 'G1')]
        collection.find.assert_called_once_with({})

    @pytest.mark.asyncio
    async def test_find_claims_streams_sorted(self):
        collection = MagicMock()
        collection.find.return_value.__aiter__.return_value = [{'CustName': 'A'}, {'CustName': 'B'}]
        collection.find.return_value.close = AsyncMock()

        docs = [d async for d in _store(collection).find_claims({'__month__': '08'}, {'CustName': 1})]

        assert [d['CustName'] for d in docs] == ['A', 'B']
        collection.find.assert_called_once_with({'__month__': '08'}, sort=[('CustName', 1)])
        collection.find.return_value.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_find_claims_closes_cursor_when_abandoned(self):
        collection = MagicMock()
        collection.find.return_value.__aiter__.return_value = [{'CustName': 'A'}, {'CustName': 'B'}]
        collection.find.return_value.close = AsyncMock()

        stream = _store(collection).find_claims({})
        assert (await stream.__anext__())['CustName'] == 'A'
        await stream.aclose()

        collection.find.return_value.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_distinct_customer_groups(self):
        collection = MagicMock()
        cursor = MagicMock()
        cursor.to_list = AsyncMock(
            return_value=[{'contract': 'C1', 'name': 'Acme', 'addr': '1 Main', 'city': 'X', 'state': 'Y'}]
        )
        collection.aggregate = AsyncMock(return_value=cursor)

        groups = await _store(collection).distinct_customer_groups({'__month__': '08'}, MEDLINE)

        assert [g.key for g in groups] == ['Acme 1 Main X Y']
        collection.aggregate.assert_awaited_once_with(build_group_pipeline({'__month__': '08'}, MEDLINE))

    @pytest.mark.asyncio
    async def test_incomplete_groups_are_skipped(self):
        collection = MagicMock()
        cursor = MagicMock()
        cursor.to_list = AsyncMock(
            return_value=[
                {'contract': 'C1', 'name': 'Acme', 'addr': '1 Main', 'city': 'X', 'state': 'Y'},
                {'contract': 'C1', 'name': 'Beta', 'city': 'X', 'state': 'Y'},
                {'contract': 'C1', 'name': None, 'addr': '2 Main', 'city': 'X', 'state': 'Y'},
            ]
        )
        collection.aggregate = AsyncMock(return_value=cursor)

        groups = await _store(collection).distinct_customer_groups({}, MEDLINE)

        assert [g.key for g in groups] == ['Acme 1 Main X Y']

    @pytest.mark.asyncio
    async def test_replace_all(self):
        collection = MagicMock()
        collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=5))
        collection.insert_many = AsyncMock(return_value=MagicMock(inserted_ids=['a', 'b']))

        count = await _store(collection).replace_all('tracings', [{'n': 1}, {'n': 2}])

        assert count == 2
        collection.delete_many.assert_awaited_once_with({})
        collection.insert_many.assert_awaited_once_with([{'n': 1}, {'n': 2}], ordered=True)

    @pytest.mark.asyncio
    async def test_replace_all_with_no_documents_clears(self):
        collection = MagicMock()
        collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=5))
        collection.insert_many = AsyncMock()

        count = await _store(collection).replace_all('tracings', [])

        assert count == 0
        collection.delete_many.assert_awaited_once()
        collection.insert_many.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_driver_error_wrapped(self):
        collection = MagicMock()
        collection.delete_many = AsyncMock(side_effect=OperationFailure('not authorized on tracings'))

        with pytest.raises(DocumentStoreQueryError) as exc_info:
            await _store(collection).replace_all('tracings', [{'n': 1}])
        assert exc_info.value.context['collection'] == 'tracings'
        assert exc_info.value.context['error_type'] == 'OperationFailure'

    @pytest.mark.asyncio
    async def test_close(self):
        store = _store(MagicMock())
        client = store.client

        await store.close()

        client.close.assert_awaited_once()

    def test_uri_required(self):
        with pytest.raises(ValueError):
            MongoDocumentStore(uri='')

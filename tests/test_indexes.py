"""
Tests for the contract and license indexes and their builders.
"""

import asyncio

import pytest

from rebate_trace.errors import (
    IndexBuildError,
    IndexFrozenError,
    JoinError,
    MissingIndexEntryError,
    SearchConnectionError,
)
from rebate_trace.models import CustomerGroup, LicenseIndexEntry
from rebate_trace.pipeline import (
    MISSING_CONTRACT,
    NO_LICENSE,
    ContractIndex,
    ContractIndexBuilder,
    LicenseIndex,
    LicenseIndexBuilder,
)


def _entry(contract='C1', gpo='G1', license='M100', name='Acme'):
    return LicenseIndexEntry(
        contract=contract, gpo=gpo, license=license, name=name, addr='1 Main', city='X', state='Y'
    )


class TestContractIndex:
    def test_known_and_unknown_contract(self):
        index = ContractIndex({'C1': 'G1'})

        assert index.gpo_for('C1') == 'G1'
        assert index.gpo_for('C9') == MISSING_CONTRACT
        assert 'C1' in index
        assert len(index) == 1

    def test_mapping_is_copied(self):
        source = {'C1': 'G1'}
        index = ContractIndex(source)
        source['C2'] = 'G2'

        assert 'C2' not in index


class TestLicenseIndex:
    @pytest.mark.asyncio
    async def test_insert_and_resolve(self):
        index = LicenseIndex()
        await index.insert('Acme 1 Main X Y', _entry())
        index.freeze()

        assert index.resolve('Acme 1 Main X Y').license == 'M100'

    @pytest.mark.asyncio
    async def test_insert_replaces_and_counts_collision(self):
        index = LicenseIndex()
        first = await index.insert('k', _entry(contract='C1'))
        previous = await index.insert('k', _entry(contract='C2'))

        assert first is None
        assert previous.contract == 'C1'
        assert index.get('k').contract == 'C2'
        assert index.collisions == 1

    @pytest.mark.asyncio
    async def test_insert_after_freeze_raises(self):
        index = LicenseIndex()
        index.freeze()

        with pytest.raises(IndexFrozenError):
            await index.insert('k', _entry())

    @pytest.mark.asyncio
    async def test_resolve_before_freeze_raises(self):
        index = LicenseIndex()
        await index.insert('k', _entry())

        with pytest.raises(JoinError):
            index.resolve('k')

    def test_resolve_missing_key_raises(self):
        index = LicenseIndex()
        index.freeze()

        with pytest.raises(MissingIndexEntryError) as exc_info:
            index.resolve('Nobody 0 Nowhere ZZ')
        assert exc_info.value.context['key'] == 'Nobody 0 Nowhere ZZ'


class TestContractIndexBuilder:
    @pytest.mark.asyncio
    async def test_build(self, make_store):
        store = make_store(
            contracts=[
                {'contract': 'C1', 'gpo': 'G1', 'valid': True},
                {'contract': 'C2', 'gpo': 'G2', 'valid': False},
            ]
        )

        index = await ContractIndexBuilder(store).build()

        assert index.gpo_for('C1') == 'G1'
        # Validity flag is not filtered on
        assert index.gpo_for('C2') == 'G2'

    @pytest.mark.asyncio
    async def test_duplicate_contract_last_wins(self, make_store):
        store = make_store(
            contracts=[
                {'contract': 'C1', 'gpo': 'G1'},
                {'contract': 'C1', 'gpo': 'G9'},
            ]
        )

        index = await ContractIndexBuilder(store).build()

        assert index.gpo_for('C1') == 'G9'
        assert index.duplicates == 1

    @pytest.mark.asyncio
    async def test_empty_collection(self, make_store):
        index = await ContractIndexBuilder(make_store()).build()

        assert len(index) == 0

    @pytest.mark.asyncio
    async def test_store_failure_raises_build_error(self, make_store):
        store = make_store(fail_on='find_contracts')

        with pytest.raises(IndexBuildError):
            await ContractIndexBuilder(store).build()

    @pytest.mark.asyncio
    async def test_invalid_record_raises_build_error(self, make_store):
        store = make_store(contracts=[{'contract': 'C1'}])

        with pytest.raises(IndexBuildError):
            await ContractIndexBuilder(store).build()


class TestLicenseIndexBuilder:
    @pytest.mark.asyncio
    async def test_one_search_per_group(self, make_store, make_search, make_claim, run_config):
        store = make_store(claims=[make_claim(), make_claim(), make_claim(name='Beta')])
        search = make_search(hits={('Acme 1 Main X Y', 'group_name = C1'): ['M100']})
        builder = LicenseIndexBuilder(store, search, run_config)

        groups = await builder.fetch_groups()
        result = await builder.build(groups, ContractIndex({'C1': 'G1'}))

        assert result.groups == 2
        assert result.lookups == 2
        assert sorted(q for q, _, _ in search.calls) == ['Acme 1 Main X Y', 'Beta 1 Main X Y']
        assert all(f == 'group_name = C1' and limit == 1 for _, f, limit in search.calls)
        assert result.index.frozen

        entry = result.index.resolve('Acme 1 Main X Y')
        assert entry.gpo == 'G1'
        assert entry.license == 'M100'

    @pytest.mark.asyncio
    async def test_zero_hits_records_no_license(self, make_store, make_search, make_claim, run_config):
        store = make_store(claims=[make_claim()])
        builder = LicenseIndexBuilder(store, make_search(), run_config)

        result = await builder.build(await builder.fetch_groups(), ContractIndex({'C1': 'G1'}))

        assert result.index.resolve('Acme 1 Main X Y').license == NO_LICENSE
        assert result.unmatched == 1

    @pytest.mark.asyncio
    async def test_unknown_contract_gets_missing_gpo(self, make_store, make_search, make_claim, run_config):
        store = make_store(claims=[make_claim(contract='C7')])
        builder = LicenseIndexBuilder(store, make_search(), run_config)

        result = await builder.build(await builder.fetch_groups(), ContractIndex({}))

        assert result.index.resolve('Acme 1 Main X Y').gpo == MISSING_CONTRACT
        assert result.missing_contracts == 1

    @pytest.mark.asyncio
    async def test_same_customer_two_contracts_collides(
        self, make_store, make_search, make_claim, run_config
    ):
        store = make_store(claims=[make_claim(contract='C1'), make_claim(contract='C2')])
        search = make_search(
            hits={
                ('Acme 1 Main X Y', 'group_name = C1'): ['M1'],
                ('Acme 1 Main X Y', 'group_name = C2'): ['M2'],
            }
        )
        builder = LicenseIndexBuilder(store, search, run_config)

        result = await builder.build(
            await builder.fetch_groups(), ContractIndex({'C1': 'G1', 'C2': 'G2'})
        )

        assert len(search.calls) == 2
        assert len(result.index) == 1
        assert result.collisions == 1
        entry = result.index.resolve('Acme 1 Main X Y')
        assert (entry.contract, entry.license) in {('C1', 'M1'), ('C2', 'M2')}

    @pytest.mark.asyncio
    async def test_repeated_groups_searched_once(self, make_search, make_store, run_config):
        group = CustomerGroup(contract='C1', name='Acme', addr='1 Main', city='X', state='Y')
        search = make_search()
        builder = LicenseIndexBuilder(make_store(), search, run_config)

        result = await builder.build([group, group], ContractIndex({'C1': 'G1'}))

        assert len(search.calls) == 1
        assert result.collisions == 0

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, make_store, make_search, make_claim, run_config):
        claims = [make_claim(name=f'Customer {i}') for i in range(25)]
        search = make_search(delay=0.01)
        config = run_config.model_copy(update={'search_concurrency': 3})
        builder = LicenseIndexBuilder(make_store(claims=claims), search, config)

        result = await builder.build(await builder.fetch_groups(), ContractIndex({'C1': 'G1'}))

        assert result.lookups == 25
        assert 1 < search.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_search_failure_aborts_build(self, make_store, make_search, make_claim, run_config):
        search = make_search(error=SearchConnectionError('roster unreachable'))
        builder = LicenseIndexBuilder(make_store(claims=[make_claim()]), search, run_config)

        with pytest.raises(IndexBuildError) as exc_info:
            await builder.build(await builder.fetch_groups(), ContractIndex({'C1': 'G1'}))
        assert exc_info.value.context['filter'] == 'group_name = C1'

    @pytest.mark.asyncio
    async def test_unexpected_search_exception_aborts_build(
        self, make_store, make_search, make_claim, run_config
    ):
        search = make_search(error=ValueError('malformed response'))
        builder = LicenseIndexBuilder(make_store(claims=[make_claim()]), search, run_config)

        with pytest.raises(IndexBuildError, match='malformed response'):
            await builder.build(await builder.fetch_groups(), ContractIndex({'C1': 'G1'}))

    @pytest.mark.asyncio
    async def test_search_timeout_aborts_build(self, make_store, make_search, make_claim, run_config):
        search = make_search(delay=1.0)
        config = run_config.model_copy(update={'search_timeout_seconds': 0.01})
        builder = LicenseIndexBuilder(make_store(claims=[make_claim()]), search, config)

        with pytest.raises(IndexBuildError, match='exceeded'):
            await builder.build(await builder.fetch_groups(), ContractIndex({'C1': 'G1'}))

    @pytest.mark.asyncio
    async def test_failure_cancels_outstanding_lookups(self, make_store, run_config):
        started = []

        class SlowThenFailing:
            async def search(self, query, filter=None, limit=1):
                started.append(query)
                if query.startswith('Bad'):
                    raise SearchConnectionError('down')
                await asyncio.sleep(10)
                return []

        groups = [
            CustomerGroup(contract='C1', name='Bad', addr='1', city='X', state='Y'),
            CustomerGroup(contract='C1', name='Slow', addr='1', city='X', state='Y'),
        ]
        builder = LicenseIndexBuilder(make_store(), SlowThenFailing(), run_config)

        with pytest.raises(IndexBuildError):
            await asyncio.wait_for(builder.build(groups, ContractIndex({})), timeout=2)

    @pytest.mark.asyncio
    async def test_group_query_failure(self, make_store, make_search, run_config):
        builder = LicenseIndexBuilder(
            make_store(fail_on='distinct_customer_groups'), make_search(), run_config
        )

        with pytest.raises(IndexBuildError):
            await builder.fetch_groups()

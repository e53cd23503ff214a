"""
Lookup indexes shared between the build and join phases.

ContractIndex is built in one shot and is immutable. LicenseIndex is filled
concurrently by the license builder, then frozen before the join reads it.
"""

import asyncio
from types import MappingProxyType
from typing import Iterator, Mapping

from ..errors import IndexFrozenError, JoinError, MissingIndexEntryError
from ..models.license import LicenseIndexEntry

MISSING_CONTRACT = 'MISSING CONTRACT'
NO_LICENSE = '0'


class ContractIndex:
    """Read-only contract id -> GPO mapping."""

    def __init__(self, mapping: Mapping[str, str], duplicates: int = 0):
        self._mapping = MappingProxyType(dict(mapping))
        self.duplicates = duplicates

    def gpo_for(self, contract: str) -> str:
        """GPO for a contract, or MISSING_CONTRACT when the contract is unknown."""
        return self._mapping.get(contract, MISSING_CONTRACT)

    def __contains__(self, contract: object) -> bool:
        return contract in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)


class LicenseIndex:
    """
    Customer key -> LicenseIndexEntry mapping.

    Inserts are serialized by a single lock and rejected once the index is
    frozen. Reads through resolve() are only allowed after freeze().
    """

    def __init__(self):
        self._entries: dict[str, LicenseIndexEntry] = {}
        self._lock = asyncio.Lock()
        self._frozen = False
        self.collisions = 0

    @property
    def frozen(self) -> bool:
        return self._frozen

    async def insert(self, key: str, entry: LicenseIndexEntry) -> LicenseIndexEntry | None:
        """
        Insert an entry, replacing any existing entry for the key.

        Returns:
            The replaced entry, if the key was already present

        Raises:
            IndexFrozenError: If the index has been frozen
        """
        async with self._lock:
            if self._frozen:
                raise IndexFrozenError(
                    'License index is frozen',
                    context={'key': key},
                )
            previous = self._entries.get(key)
            self._entries[key] = entry
            if previous is not None:
                self.collisions += 1
            return previous

    def freeze(self) -> None:
        """Mark the index complete; no further inserts are accepted."""
        self._frozen = True

    def get(self, key: str) -> LicenseIndexEntry | None:
        return self._entries.get(key)

    def resolve(self, key: str) -> LicenseIndexEntry:
        """
        Look up the entry for a customer key during the join.

        Raises:
            JoinError: If the index has not been frozen yet
            MissingIndexEntryError: If the key was never indexed
        """
        if not self._frozen:
            raise JoinError('License index read before the build completed')
        entry = self._entries.get(key)
        if entry is None:
            raise MissingIndexEntryError(
                'Customer key missing from license index',
                context={'key': key, 'index_size': len(self._entries)},
            )
        return entry

    def items(self) -> Iterator[tuple[str, LicenseIndexEntry]]:
        return iter(self._entries.items())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

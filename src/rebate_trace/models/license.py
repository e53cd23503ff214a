"""
License index models: the customer groups looked up in the roster and the
entries they resolve to.
"""

from pydantic import BaseModel, ConfigDict

from ..keys import customer_key


class CustomerGroup(BaseModel):
    """
    A distinct (contract, name, addr, city, state) tuple from the claim set.

    One roster lookup is issued per group.
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    contract: str
    name: str
    addr: str
    city: str
    state: str

    @property
    def key(self) -> str:
        """Composite customer key used to join claims against the index."""
        return customer_key(self.name, self.addr, self.city, self.state)


class LicenseIndexEntry(BaseModel):
    """Resolved reference data for one customer key."""

    model_config = ConfigDict(frozen=True)

    contract: str
    name: str
    addr: str
    city: str
    state: str
    gpo: str
    license: str

    @classmethod
    def from_group(cls, group: CustomerGroup, gpo: str, license: str) -> 'LicenseIndexEntry':
        return cls(
            contract=group.contract,
            name=group.name,
            addr=group.addr,
            city=group.city,
            state=group.state,
            gpo=gpo,
            license=license,
        )

"""
Claim model: one rebate transaction read from the data warehouse.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ClaimValidationError
from ..keys import customer_key
from ..sources import SourceProfile


class Claim(BaseModel):
    """
    A single rebate claim, with warehouse columns renamed to canonical fields.

    invoice_date is kept in its raw warehouse encoding; the source profile
    decodes it during the join.
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    contract: str
    claim_nbr: int | str
    invoice_nbr: int | str
    invoice_date: Any = Field(..., description='Raw invoice date (source-specific encoding)')
    part: str
    ship_qty: int = Field(..., description='Shipped quantity; negative for returns')
    rebate: float
    name: str
    addr: str
    city: str
    state: str
    uom: str
    cost: float = Field(..., description='Contract cost for the line')

    @classmethod
    def from_document(cls, document: dict[str, Any], profile: SourceProfile) -> 'Claim':
        """
        Build a Claim from a raw warehouse document.

        Raises:
            ClaimValidationError: If required columns are missing or ill-typed
        """
        try:
            return cls.model_validate(profile.remap(document))
        except PydanticValidationError as e:
            raise ClaimValidationError(
                f"Invalid {profile.tag} claim document",
                context={
                    'document_id': str(document.get('_id')),
                    'fields': sorted({str(err['loc'][0]) for err in e.errors() if err['loc']}),
                },
            ) from e

    @property
    def key(self) -> str:
        """Composite customer key for the license index lookup."""
        return customer_key(self.name, self.addr, self.city, self.state)

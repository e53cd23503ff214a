"""
Contract model: reference data mapping a vendor contract to its GPO.
"""

from typing import Any

from pydantic import BaseModel, Field


class Contract(BaseModel):
    """A vendor contract as stored in the contracts collection."""

    contract: str = Field(..., description='Vendor contract identifier')
    gpo: str = Field(..., description='Group Purchasing Organization code')
    valid: bool = Field(default=True, description='Validity flag (not used for filtering)')
    agreement: dict[str, float | None] = Field(
        default_factory=dict, description='Part number -> agreed price'
    )

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> 'Contract':
        data = {k: v for k, v in document.items() if k != '_id'}
        return cls.model_validate(data)

"""
Trace model: the normalized, enriched record produced for each claim.
"""

from datetime import date, datetime, time
from typing import Any

from pydantic import BaseModel, Field


class Trace(BaseModel):
    """A claim joined with its resolved GPO and license."""

    # Distributor references
    claim_nbr: str
    invoice_nbr: str
    invoice_date: date

    # Resolved reference data
    gpo: str = Field(..., description="GPO code or 'MISSING CONTRACT'")
    contract: str
    license: str = Field(..., description="Member identifier or '0' when unmatched")
    period: str

    # Customer
    name: str
    addr: str
    city: str
    state: str

    # Rebate and sales
    part: str
    unit_rebate: float
    unit_cost: float
    ship_qty: int
    ship_qty_as_cs: int = 0
    uom: str
    rebate: float
    cost: float

    def to_document(self) -> dict[str, Any]:
        """Convert to a document-store compatible dict (dates become datetimes)."""
        doc = self.model_dump()
        doc['invoice_date'] = datetime.combine(self.invoice_date, time.min)
        return doc

"""
Source profiles for the rebate data warehouse.

Each distributor file is ingested with its own column names and its own
invoice date encoding. A SourceProfile captures both, plus the tag stamped on
the period label of every trace produced from it.
"""

import re
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .errors import ConfigurationError, InvoiceDateError

_COMPACT_DATE = re.compile(r'^\d{8}$')
_ISO_DATE = re.compile(r'^\d{4}-\d{2}-\d{2}$')


class DateFormat(str, Enum):
    """Invoice date encodings seen across ingestion variants."""

    ISO = 'iso'  # 2022-08-01
    COMPACT = 'compact'  # 20220801
    MIXED = 'mixed'  # either of the above


_ISO = (_ISO_DATE, '%Y-%m-%d')
_COMPACT = (_COMPACT_DATE, '%Y%m%d')

_DATE_PATTERNS = {
    DateFormat.ISO: (_ISO,),
    DateFormat.COMPACT: (_COMPACT,),
    DateFormat.MIXED: (_ISO, _COMPACT),
}


def decode_invoice_date(value: Any, fmt: DateFormat) -> date:
    """
    Decode a warehouse invoice date into a calendar date.

    Native dates and datetimes pass through. Integers (and integral floats)
    are rendered to digits first, so 20220801 decodes under COMPACT and MIXED.

    Raises:
        InvoiceDateError: If the value does not match the expected encoding
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    if isinstance(value, bool):
        raw = None
    elif isinstance(value, int):
        raw = str(value)
    elif isinstance(value, float) and value.is_integer():
        raw = str(int(value))
    elif isinstance(value, str):
        raw = value.strip()
    else:
        raw = None

    strptime_fmt = None
    if raw is not None:
        strptime_fmt = next(
            (f for pattern, f in _DATE_PATTERNS[fmt] if pattern.match(raw)), None
        )
    if strptime_fmt is None:
        raise InvoiceDateError(
            f"Invoice date {value!r} does not match {fmt.value} format",
            context={'value': repr(value), 'format': fmt.value},
        )

    try:
        return datetime.strptime(raw, strptime_fmt).date()
    except ValueError as e:
        raise InvoiceDateError(
            f"Invoice date {value!r} is not a valid calendar date",
            context={'value': repr(value), 'format': fmt.value, 'original_error': str(e)},
        ) from e


# Canonical claim fields every profile must map
CLAIM_FIELDS = (
    'contract',
    'claim_nbr',
    'invoice_nbr',
    'invoice_date',
    'part',
    'ship_qty',
    'rebate',
    'name',
    'addr',
    'city',
    'state',
    'uom',
    'cost',
)


class SourceProfile(BaseModel):
    """Column mapping and date encoding for one ingestion variant."""

    tag: str = Field(..., description='Source system tag, e.g. MEDLINE')
    columns: dict[str, str] = Field(
        ..., description='Canonical claim field -> warehouse column name'
    )
    date_format: DateFormat = DateFormat.ISO

    model_config = {'frozen': True}

    def column(self, field_name: str) -> str:
        """Warehouse column for a canonical claim field."""
        try:
            return self.columns[field_name]
        except KeyError:
            raise ConfigurationError(
                f"Source profile {self.tag} has no column for '{field_name}'",
                context={'source': self.tag, 'field': field_name},
            ) from None

    def remap(self, document: dict[str, Any]) -> dict[str, Any]:
        """Rename warehouse columns in a raw document to canonical field names."""
        return {
            field_name: document[column]
            for field_name, column in self.columns.items()
            if column in document
        }

    def decode_date(self, value: Any) -> date:
        return decode_invoice_date(value, self.date_format)


MEDLINE = SourceProfile(
    tag='MEDLINE',
    columns={
        'contract': 'VendorCont',
        'claim_nbr': 'Debit Memo',
        'invoice_nbr': 'Invoice',
        'invoice_date': 'InvoiceDat',
        'part': 'VendorItm',
        'ship_qty': 'Quantity',
        'rebate': 'RebateAmt',
        'name': 'CustName',
        'addr': 'CustStreet',
        'city': 'CustCity',
        'state': 'CustState',
        'uom': 'UoM',
        'cost': 'ContrCost',
    },
    # InvoiceDat arrives as text dates or as yyyymmdd integers
    date_format=DateFormat.MIXED,
)

DEFAULT_SOURCE = 'MEDLINE'

_REGISTRY: dict[str, SourceProfile] = {
    MEDLINE.tag: MEDLINE,
}


def register_source_profile(profile: SourceProfile) -> None:
    """Register a source profile, validating that every claim field is mapped."""
    missing = [f for f in CLAIM_FIELDS if f not in profile.columns]
    if missing:
        raise ConfigurationError(
            f"Source profile {profile.tag} is missing columns",
            context={'source': profile.tag, 'missing': missing},
        )
    _REGISTRY[profile.tag.upper()] = profile


def get_source_profile(name: str) -> SourceProfile:
    """Look up a registered source profile by name (case-insensitive)."""
    profile = _REGISTRY.get(name.upper())
    if profile is None:
        raise ConfigurationError(
            f"Unknown source profile: {name}",
            context={'known': sorted(_REGISTRY)},
        )
    return profile

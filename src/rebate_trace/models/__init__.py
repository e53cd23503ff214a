"""
Data models for the rebate trace pipeline.
"""

from .claim import Claim
from .contract import Contract
from .license import CustomerGroup, LicenseIndexEntry
from .roster import RosterHit
from .trace import Trace

__all__ = [
    'Claim',
    'Contract',
    'CustomerGroup',
    'LicenseIndexEntry',
    'RosterHit',
    'Trace',
]

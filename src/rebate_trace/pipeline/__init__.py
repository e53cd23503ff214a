"""
Pipeline components for contract/license index construction and the claim join.
"""

from .contract_index import ContractIndexBuilder
from .indexes import MISSING_CONTRACT, NO_LICENSE, ContractIndex, LicenseIndex
from .join import JoinEngine, JoinResult, TraceAccumulator
from .license_index import LicenseIndexBuilder, LicenseIndexBuildResult
from .pipeline import PipelineResult, TracePipeline

__all__ = [
    # Main Pipeline
    'TracePipeline',
    'PipelineResult',
    # Indexes
    'ContractIndex',
    'LicenseIndex',
    'MISSING_CONTRACT',
    'NO_LICENSE',
    # Builders
    'ContractIndexBuilder',
    'LicenseIndexBuilder',
    'LicenseIndexBuildResult',
    # Join
    'JoinEngine',
    'JoinResult',
    'TraceAccumulator',
]

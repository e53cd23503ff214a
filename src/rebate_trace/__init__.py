"""
Rebate Trace Pipeline

Normalizes distributor rebate claims into trace records, enriching each claim
with its contract's GPO and the customer's roster license.
"""

__version__ = '0.1.0'

# Re-export key classes for convenience
from .pipeline import (
    TracePipeline,
    PipelineResult,
    ContractIndexBuilder,
    LicenseIndexBuilder,
    JoinEngine,
    ContractIndex,
    LicenseIndex,
    MISSING_CONTRACT,
    NO_LICENSE,
)
from .config import RunConfig, Settings, get_settings
from .keys import customer_key
from .sources import DateFormat, SourceProfile, get_source_profile
from .logging import (
    configure_logging,
    get_logger,
    logging_context,
    PipelineTimer,
)
from .errors import (
    RebateTraceError,
    PipelineError,
    IndexBuildError,
    JoinError,
    MissingIndexEntryError,
    RecordError,
    InvoiceDateError,
    ZeroQuantityError,
    DocumentStoreError,
    SearchError,
    PartialSuccessResult,
)

__all__ = [
    # Version
    '__version__',
    # Main Pipeline
    'TracePipeline',
    'PipelineResult',
    # Components
    'ContractIndexBuilder',
    'LicenseIndexBuilder',
    'JoinEngine',
    'ContractIndex',
    'LicenseIndex',
    'MISSING_CONTRACT',
    'NO_LICENSE',
    'customer_key',
    # Configuration
    'RunConfig',
    'Settings',
    'get_settings',
    'DateFormat',
    'SourceProfile',
    'get_source_profile',
    # Logging
    'configure_logging',
    'get_logger',
    'logging_context',
    'PipelineTimer',
    # Errors
    'RebateTraceError',
    'PipelineError',
    'IndexBuildError',
    'JoinError',
    'MissingIndexEntryError',
    'RecordError',
    'InvoiceDateError',
    'ZeroQuantityError',
    'DocumentStoreError',
    'SearchError',
    'PartialSuccessResult',
]

"""
Configuration management for the rebate trace pipeline.

Process-level settings are loaded from environment variables (and a project
root .env file) once at startup. Everything a run needs is then carried in an
explicit RunConfig that is passed into each pipeline component.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

from .clients.meilisearch_client import SEARCH_ATTEMPTS, SEARCH_BACKOFF_SECONDS
from .sources import DEFAULT_SOURCE, SourceProfile, get_source_profile

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


class Settings(BaseSettings):
    """Process settings loaded from environment variables."""

    # MongoDB
    MONGODB_URI: str
    MONGODB_DATABASE: str = 'busserebatetraces'
    CONTRACTS_COLLECTION: str = 'contracts'
    CLAIMS_COLLECTION: str = 'data_warehouse'
    TRACES_COLLECTION: str = 'tracings'

    # Meilisearch
    MEILISEARCH_URL: str
    MEILISEARCH_KEY: str = ''
    MEILISEARCH_INDEX: str = 'rosters'

    # Pipeline
    PERIOD: str = ''
    SEARCH_CONCURRENCY: int = Field(default=10, ge=1, le=100)
    JOIN_CONCURRENCY: int = Field(default=100, ge=1, le=1000)
    SEARCH_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0, le=300)
    SEARCH_REQUEST_TIMEOUT_SECONDS: float = Field(default=8.0, gt=0, le=100)

    # Logging
    LOG_LEVEL: str = 'INFO'
    LOG_JSON: bool = False

    @model_validator(mode='after')
    def _retries_fit_search_deadline(self) -> 'Settings':
        # Every retried attempt plus the backoff between them must finish before
        # the per-lookup deadline cancels the search
        budget = SEARCH_ATTEMPTS * self.SEARCH_REQUEST_TIMEOUT_SECONDS + SEARCH_BACKOFF_SECONDS
        if budget > self.SEARCH_TIMEOUT_SECONDS:
            raise ValueError(
                f'SEARCH_TIMEOUT_SECONDS ({self.SEARCH_TIMEOUT_SECONDS}) must cover '
                f'{SEARCH_ATTEMPTS} attempts of SEARCH_REQUEST_TIMEOUT_SECONDS '
                f'({self.SEARCH_REQUEST_TIMEOUT_SECONDS}) plus {SEARCH_BACKOFF_SECONDS}s backoff'
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


class RunConfig(BaseModel):
    """Everything a single pipeline run needs, independent of the environment."""

    source: SourceProfile = Field(default_factory=lambda: get_source_profile(DEFAULT_SOURCE))
    filter: dict[str, Any] = Field(default_factory=dict, description='Claim filter document')
    sort: dict[str, int] | None = Field(
        default=None, description='Claim sort spec (defaults to customer name ascending)'
    )
    period: str = Field(..., min_length=1, description='Period label, e.g. AUGUST2022')
    output_collection: str = 'tracings'

    search_concurrency: int = Field(default=10, ge=1)
    join_concurrency: int = Field(default=100, ge=1)
    search_timeout_seconds: float = Field(default=30.0, gt=0)
    search_filter_template: str = 'group_name = {contract}'

    @property
    def period_label(self) -> str:
        """Period string stamped on every trace, e.g. AUGUST2022-MEDLINE."""
        return f'{self.period}-{self.source.tag}'

    @property
    def claim_sort(self) -> dict[str, int]:
        if self.sort is not None:
            return self.sort
        return {self.source.column('name'): 1}

    @staticmethod
    def file_filter(file_name: str, month: str, year: str) -> dict[str, Any]:
        """Standard warehouse filter for one ingested rebate file."""
        return {
            '__file__': {'$regex': file_name, '$options': 'i'},
            '__month__': month,
            '__year__': year,
        }

    @classmethod
    def for_file(
        cls,
        file_name: str,
        month: str,
        year: str,
        period: str,
        source: str = DEFAULT_SOURCE,
        settings: Settings | None = None,
    ) -> 'RunConfig':
        """
        Build a run config for one rebate file.

        Args:
            file_name: File name pattern matched against the __file__ column
            month: Two-digit month, e.g. '08'
            year: Four-digit year, e.g. '2022'
            period: Period label
            source: Source profile name
            settings: Process settings supplying limits and collection names

        Returns:
            RunConfig for the file
        """
        extra: dict[str, Any] = {}
        if settings is not None:
            extra = {
                'output_collection': settings.TRACES_COLLECTION,
                'search_concurrency': settings.SEARCH_CONCURRENCY,
                'join_concurrency': settings.JOIN_CONCURRENCY,
                'search_timeout_seconds': settings.SEARCH_TIMEOUT_SECONDS,
            }
        return cls(
            source=get_source_profile(source),
            filter=cls.file_filter(file_name, month, year),
            period=period,
            **extra,
        )

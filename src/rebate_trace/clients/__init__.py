"""
External service clients for the rebate trace pipeline.
"""

from .base import DocumentStore, SearchBackend
from .meilisearch_client import MeilisearchClient
from .mongo_client import MongoDocumentStore

__all__ = [
    'DocumentStore',
    'SearchBackend',
    'MeilisearchClient',
    'MongoDocumentStore',
]

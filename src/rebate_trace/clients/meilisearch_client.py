"""
Meilisearch client wrapper for the member roster index.

Handles:
- Single-result fuzzy search with a filter expression
- Roster maintenance (add / delete documents)
- Retry logic with exponential backoff for transient failures
"""

from typing import Any

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import wrap_search_error
from ..logging import get_logger
from ..models.roster import RosterHit

logger = get_logger(__name__)


def _is_transient(exc: BaseException) -> bool:
    """Network failures and 5xx responses are retried; 4xx are not."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


SEARCH_ATTEMPTS = 3
# Longest total backoff sleep across SEARCH_ATTEMPTS attempts (1s, then 2s)
SEARCH_BACKOFF_SECONDS = 3.0

_transient = retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(SEARCH_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)


class MeilisearchClient:
    """
    Async client for a Meilisearch roster index.

    Speaks the Meilisearch REST API directly over httpx.
    """

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        index: str = 'rosters',
        timeout: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            url: Meilisearch base URL
            api_key: API key sent as a bearer token (optional for open instances)
            index: Roster index uid
            timeout: Per-attempt HTTP timeout in seconds (retries add to it)
            transport: Custom httpx transport (mainly for tests)
        """
        if not url:
            raise ValueError('Meilisearch URL is required')

        self.url = url.rstrip('/')
        self.index = index
        headers = {'Content-Type': 'application/json'}
        if api_key:
            headers['Authorization'] = f'Bearer {api_key}'

        self._client = httpx.AsyncClient(
            base_url=self.url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def search(
        self,
        query: str,
        filter: str | None = None,
        limit: int = 1,
    ) -> list[RosterHit]:
        """
        Fuzzy search the roster.

        Args:
            query: Free-text query
            filter: Meilisearch filter expression, e.g. 'group_name = C1'
            limit: Maximum hits to return

        Returns:
            Ranked roster hits (possibly empty)

        Raises:
            SearchError: After retries are exhausted or on a non-transient failure
        """
        payload: dict[str, Any] = {'q': query, 'limit': limit}
        if filter:
            payload['filter'] = filter

        try:
            data = await self._post(f'/indexes/{self.index}/search', payload)
        except (httpx.HTTPError, ValueError) as e:
            raise wrap_search_error(e, {'query': query, 'filter': filter}) from e

        return [RosterHit.model_validate(hit) for hit in data.get('hits', [])]

    async def add_documents(self, documents: list[RosterHit]) -> dict[str, Any]:
        """
        Add or replace roster documents.

        Returns:
            The enqueued task summary from Meilisearch
        """
        payload = [d.model_dump() for d in documents]
        try:
            task = await self._post(f'/indexes/{self.index}/documents', payload)
        except (httpx.HTTPError, ValueError) as e:
            raise wrap_search_error(e, {'operation': 'add_documents', 'count': len(payload)}) from e
        logger.info('meilisearch.documents_added', count=len(payload), task_uid=task.get('taskUid'))
        return task

    async def delete_documents(self, ids: list[str]) -> dict[str, Any]:
        """
        Delete roster documents by primary key.

        Returns:
            The enqueued task summary from Meilisearch
        """
        try:
            task = await self._post(f'/indexes/{self.index}/documents/delete-batch', ids)
        except (httpx.HTTPError, ValueError) as e:
            raise wrap_search_error(e, {'operation': 'delete_documents', 'count': len(ids)}) from e
        logger.info('meilisearch.documents_deleted', count=len(ids), task_uid=task.get('taskUid'))
        return task

    @_transient
    async def _post(self, path: str, payload: Any) -> dict[str, Any]:
        response = await self._client.post(path, json=payload)
        response.raise_for_status()
        return response.json()

    async def health_check(self) -> dict[str, bool | str]:
        """
        Verify the search backend is reachable.

        Returns:
            Dict with 'healthy' bool, index uid, and optional error
        """
        try:
            response = await self._client.get('/health')
            response.raise_for_status()
            return {'healthy': True, 'url': self.url, 'index': self.index}
        except httpx.HTTPError as e:
            return {'healthy': False, 'error': str(e)}

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

"""
Appwrite adapter for the property listings collection.

This adapter reads documents through the Appwrite Databases REST API
(list documents). Queries are sent as JSON-encoded `queries[]` parameters.
"""

import json
import logging
import os
from typing import Any, Optional

import requests
from dotenv import load_dotenv

from ...common.retry import retry_with_backoff
from ..base import SourceAdapter, SourcePage, SourceRecord

# Load environment variables from .env
load_dotenv()

logger = logging.getLogger(__name__)

# Constants
API_TIMEOUT_SECONDS = 30
DEFAULT_ENDPOINT = "https://cloud.appwrite.io/v1"


def _query(method: str, values: Optional[list[Any]] = None, attribute: Optional[str] = None) -> str:
    """Encode one Appwrite query as JSON."""
    query: dict[str, Any] = {"method": method}
    if attribute is not None:
        query["attribute"] = attribute
    if values is not None:
        query["values"] = values
    return json.dumps(query)


class AppwriteAdapter(SourceAdapter):
    """
    Adapter for an Appwrite document collection.

    Environment Variables Required:
        APPWRITE_ENDPOINT: API endpoint (default: https://cloud.appwrite.io/v1)
        APPWRITE_PROJECT_ID: Project id
        APPWRITE_API_KEY: Server API key with documents.read scope
        APPWRITE_DATABASE_ID: Database id
        APPWRITE_COLLECTION_ID: Collection holding the property documents
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        project_id: Optional[str] = None,
        api_key: Optional[str] = None,
        database_id: Optional[str] = None,
        collection_id: Optional[str] = None,
        timeout: int = API_TIMEOUT_SECONDS,
    ):
        """
        Initialize the Appwrite adapter.

        Args:
            endpoint: API endpoint (defaults to APPWRITE_ENDPOINT env var)
            project_id: Project id (defaults to APPWRITE_PROJECT_ID env var)
            api_key: API key (defaults to APPWRITE_API_KEY env var)
            database_id: Database id (defaults to APPWRITE_DATABASE_ID env var)
            collection_id: Collection id (defaults to APPWRITE_COLLECTION_ID env var)
            timeout: Per-request timeout in seconds

        Raises:
            ValueError: If a required setting is missing
        """
        super().__init__(source_name="appwrite")

        # Load configuration from environment or parameters
        self.endpoint = (endpoint or os.getenv("APPWRITE_ENDPOINT", DEFAULT_ENDPOINT)).rstrip("/")
        self.project_id = project_id or os.getenv("APPWRITE_PROJECT_ID")
        self.api_key = api_key or os.getenv("APPWRITE_API_KEY")
        self.database_id = database_id or os.getenv("APPWRITE_DATABASE_ID")
        self.collection_id = collection_id or os.getenv("APPWRITE_COLLECTION_ID")
        self.timeout = timeout

        missing = [
            name
            for name, value in (
                ("APPWRITE_PROJECT_ID", self.project_id),
                ("APPWRITE_API_KEY", self.api_key),
                ("APPWRITE_DATABASE_ID", self.database_id),
                ("APPWRITE_COLLECTION_ID", self.collection_id),
            )
            if not value
        ]
        if missing:
            raise ValueError(
                f"{', '.join(missing)} must be set in environment or passed as parameter"
            )

        # Track API usage
        self.api_call_count = 0

        logger.info(
            "Appwrite adapter initialized",
            extra={
                "source": self.source_name,
                "endpoint": self.endpoint,
                "collection_id": self.collection_id,
            },
        )

    @property
    def documents_url(self) -> str:
        return (
            f"{self.endpoint}/databases/{self.database_id}"
            f"/collections/{self.collection_id}/documents"
        )

    @retry_with_backoff(
        max_retries=3,
        initial_delay=1.0,
        backoff_factor=2.0,
        exceptions=(requests.exceptions.RequestException, ConnectionError, TimeoutError),
    )
    def _make_api_call(self, queries: list[str]) -> dict[str, Any]:
        """
        List documents with retry logic.

        Args:
            queries: JSON-encoded Appwrite queries

        Returns:
            JSON response as dictionary

        Raises:
            requests.exceptions.RequestException: On API errors
        """
        headers = {
            "X-Appwrite-Project": self.project_id,
            "X-Appwrite-Key": self.api_key,
            "Content-Type": "application/json",
        }

        # Track API usage (before request to count retries)
        self.api_call_count += 1

        logger.debug(
            "Making Appwrite API call",
            extra={"queries": queries, "call_count": self.api_call_count},
        )

        response = requests.get(
            self.documents_url,
            headers=headers,
            params={"queries[]": queries},
            timeout=self.timeout,
        )

        # Handle HTTP errors
        if response.status_code == 401:
            raise requests.exceptions.HTTPError(
                "Invalid API key - check APPWRITE_API_KEY"
            )
        elif response.status_code == 404:
            raise requests.exceptions.HTTPError(
                "Database or collection not found - check APPWRITE_DATABASE_ID/APPWRITE_COLLECTION_ID"
            )
        elif response.status_code == 429:
            raise requests.exceptions.HTTPError(
                "Rate limit exceeded - too many API calls"
            )
        elif response.status_code >= 400:
            raise requests.exceptions.HTTPError(
                f"API error {response.status_code}: {response.text}"
            )

        return response.json()

    def fetch_page(
        self,
        limit: int,
        offset: Optional[int] = None,
        cursor_after: Optional[str] = None,
    ) -> SourcePage:
        """
        Fetch one page of property documents.

        Pages are ordered by `$createdAt` in both modes so a cursor and an
        offset walk see the documents in the same order.
        """
        queries = [_query("limit", [limit]), _query("orderAsc", attribute="$createdAt")]
        if cursor_after is not None:
            queries.append(_query("cursorAfter", [cursor_after]))
        elif offset:
            queries.append(_query("offset", [offset]))

        data = self._make_api_call(queries)
        documents = data.get("documents") or []

        logger.info(
            "Fetched documents from Appwrite",
            extra={
                "offset": offset,
                "cursor_after": cursor_after,
                "documents_returned": len(documents),
                "total": data.get("total"),
            },
        )

        return SourcePage(
            records=[SourceRecord.from_document(doc) for doc in documents],
            total=data.get("total"),
        )

    def ping(self) -> None:
        """Request a single document to verify endpoint and credentials."""
        self._make_api_call([_query("limit", [1])])

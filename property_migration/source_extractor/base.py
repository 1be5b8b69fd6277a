"""Source Adapter Base Class.

This module defines the abstract interface that all document sources must implement,
plus the record and page containers passed between the extractor and the rest of the
migration.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class SourceRecord:
    """One raw document from the source collection.

    The payload is kept as-is; fields are read through `text()` and `raw()` so
    the normalizer decides how each value is interpreted.
    """

    external_id: Optional[str]  # Document id ("$id")
    payload: Mapping[str, Any] = field(repr=False)
    created_at: Optional[str] = None  # "$createdAt" as delivered
    updated_at: Optional[str] = None  # "$updatedAt" as delivered

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "SourceRecord":
        """Build a record from a raw document mapping."""
        external_id = document.get("$id")
        return cls(
            external_id=str(external_id) if external_id not in (None, "") else None,
            payload=document,
            created_at=document.get("$createdAt"),
            updated_at=document.get("$updatedAt"),
        )

    def raw(self, name: str) -> Any:
        """Return the untouched value of a field (None when absent)."""
        return self.payload.get(name)

    def text(self, name: str) -> Optional[str]:
        """Return a field as stripped text, or None when absent or blank."""
        value = self.payload.get(name)
        if value is None or isinstance(value, (list, dict)):
            return None
        text = str(value).strip()
        return text or None


@dataclass
class SourcePage:
    """One page of documents plus the total the source reports.

    `total` is informational only: pagination stops on a short page.
    """

    records: list[SourceRecord]
    total: Optional[int] = None


class SourceAdapter(ABC):
    """Abstract base class for document sources.

    All document sources must implement this interface. This ensures:
    - The same pagination contract for the Appwrite API and the mock source
    - A cheap connectivity check used by the run's preflight

    Usage:
        class MySourceAdapter(SourceAdapter):
            def __init__(self, api_key: str):
                super().__init__(source_name="my_source")
                self.api_key = api_key

            def fetch_page(self, limit, offset=None, cursor_after=None):
                # Implement API fetching logic
                ...

            def ping(self):
                ...
    """

    def __init__(self, source_name: str):
        """Initialize the adapter.

        Args:
            source_name: Unique identifier for this data source
                        (e.g., "appwrite", "mock")
        """
        self.source_name = source_name

    @abstractmethod
    def fetch_page(
        self,
        limit: int,
        offset: Optional[int] = None,
        cursor_after: Optional[str] = None,
    ) -> SourcePage:
        """Fetch one page of documents.

        Exactly one of `offset` and `cursor_after` is used by the caller; both
        None means the first page.

        Args:
            limit: Maximum number of documents to return
            offset: Number of documents to skip (offset pagination)
            cursor_after: Id of the last document of the previous page
                          (cursor pagination)

        Returns:
            SourcePage with the documents in a stable order

        Raises:
            requests.exceptions.RequestException: If the source cannot be read
                                                  after retries
        """
        pass

    @abstractmethod
    def ping(self) -> None:
        """Check that the source is reachable and credentials are valid.

        Raises:
            Exception: Any failure; the run treats it as fatal
        """
        pass

    def __repr__(self) -> str:
        """String representation of the adapter."""
        return f"{self.__class__.__name__}(source='{self.source_name}')"

"""Mock Adapter for Testing.

This adapter simulates the Appwrite property collection for tests and dry runs.
It doesn't make real HTTP requests, but follows the same paging contract.
"""

import json
from typing import Any, Optional

from ..base import SourceAdapter, SourcePage, SourceRecord

AREAS = ["New Cairo", "Sheikh Zayed", "Maadi", "North Coast - Marina", "Fifth Settlement"]
TYPES = ["Apartment", "Villa", "Duplex", "Office", "Chalet"]
COMPOUNDS = ["Mivida", "Hyde Park", "Palm Hills", "Marassi", "Uptown Cairo"]
CONTACTS = [
    ("Ahmed Hassan", "+20 100 123 4567"),
    ("Mona Fathy", "0122-555-0101"),
    ("Karim Adel", "01005550202"),
]


class MockAdapter(SourceAdapter):
    """Mock adapter that returns fake property documents.

    This adapter is useful for:
    - Unit testing without hitting the real API
    - Dry runs of the whole pipeline
    - Testing error handling and retry logic

    Example:
        adapter = MockAdapter(num_documents=50)
        page = adapter.fetch_page(limit=20)
        assert len(page.records) == 20

        page = adapter.fetch_page(limit=20, cursor_after=page.records[-1].external_id)
        assert len(page.records) == 20
    """

    def __init__(
        self,
        num_documents: int = 100,
        documents: Optional[list[dict[str, Any]]] = None,
        fail_on_attempt: int = 0,
        reported_total: Optional[int] = None,
    ):
        """Initialize the mock adapter.

        Args:
            num_documents: Number of fake documents to generate
            documents: Explicit documents to serve instead of generated ones
            fail_on_attempt: If > 0, fail on this attempt number (for testing retries)
            reported_total: Total to report on every page (defaults to the real count)
        """
        super().__init__(source_name="mock")
        if documents is None:
            documents = [self._generate_fake_document(i) for i in range(num_documents)]
        self.documents = documents
        self.fail_on_attempt = fail_on_attempt
        self.reported_total = reported_total
        self.attempt_count = 0
        self.requests: list[dict[str, Any]] = []

    def fetch_page(
        self,
        limit: int,
        offset: Optional[int] = None,
        cursor_after: Optional[str] = None,
    ) -> SourcePage:
        """Serve a slice of the fake documents.

        Args:
            limit: Page size
            offset: Documents to skip
            cursor_after: Id of the last document already served
        """
        # Simulate failure for testing retry logic
        self.attempt_count += 1
        self.requests.append({"limit": limit, "offset": offset, "cursor_after": cursor_after})
        if self.fail_on_attempt > 0 and self.attempt_count == self.fail_on_attempt:
            raise ConnectionError("Simulated API failure for testing")

        if cursor_after is not None:
            ids = [doc.get("$id") for doc in self.documents]
            start = ids.index(cursor_after) + 1 if cursor_after in ids else len(ids)
        else:
            start = offset or 0

        page = self.documents[start:start + limit]
        total = self.reported_total if self.reported_total is not None else len(self.documents)
        return SourcePage(records=[SourceRecord.from_document(doc) for doc in page], total=total)

    def ping(self) -> None:
        """The mock source is always reachable."""
        return None

    def _generate_fake_document(self, index: int) -> dict[str, Any]:
        """Generate a fake property document.

        Args:
            index: Document index for unique data

        Returns:
            Dictionary shaped like an Appwrite property document
        """
        name, phone = CONTACTS[index % len(CONTACTS)]
        compound = COMPOUNDS[index % len(COMPOUNDS)]
        images = [
            {
                "id": f"file{index:05d}{n}",
                "fileUrl": f"https://cloud.appwrite.io/v1/storage/buckets/properties/files/file{index:05d}{n}/view",
                "fileSize": 150_000 + n,
                "mimeType": "image/jpeg",
                "name": f"image_{n + 1}.jpg",
            }
            for n in range(index % 4)
        ]
        videos = (
            [{"url": f"https://www.youtube.com/watch?v=mock{index:05d}", "title": "Walkthrough"}]
            if index % 5 == 0
            else []
        )

        return {
            "$id": f"mockdoc{index:08d}",
            "$createdAt": f"2024-01-{(index % 28) + 1:02d}T10:00:00.000+00:00",
            "$updatedAt": f"2024-02-{(index % 28) + 1:02d}T10:00:00.000+00:00",
            "propertyNumber": f"P-{1000 + index}" if index % 3 else None,
            "compoundName": f"{TYPES[index % len(TYPES)]} in {compound}",
            "description": f"Spacious unit number {index} with garden view",
            "area": AREAS[index % len(AREAS)],
            "category": "Residentail" if index % 7 == 0 else "Residential",
            "type": TYPES[index % len(TYPES)],
            "name": name,
            "mobileNo": phone,
            "tel": None,
            "unitFor": "For Rent" if index % 2 else "For Sale",
            "status": "Available",
            "rooms": str(index % 6 + 1),
            "bathrooms": str(index % 3 + 1),
            "theFloors": str(index % 10),
            "landArea": "",
            "building": f"{120 + index} sqm",
            "totalPrice": f"{(index + 1) * 250_000:,} EGP",
            "currency": "EGP",
            "downPayment": "10%",
            "installment": "[]",
            "inOrOutSideCompound": "Inside" if index % 2 == 0 else "Outside",
            "liked": index % 9 == 0,
            "inHome": False,
            "propertyImage": json.dumps(images),
            "videos": json.dumps(videos),
        }

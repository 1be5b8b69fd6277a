"""Document Source Adapters.

Concrete implementations of the SourceAdapter interface.

Available adapters:
- MockAdapter: Deterministic fake property documents (mock_adapter.py)
- AppwriteAdapter: Appwrite list-documents API (appwrite_adapter.py)
"""

from .appwrite_adapter import AppwriteAdapter
from .mock_adapter import MockAdapter

__all__ = ["AppwriteAdapter", "MockAdapter"]
__version__ = "0.1.0"

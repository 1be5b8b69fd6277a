"""Source Extractor.

Pages through the source document collection and yields typed records.

Main components:
- SourceAdapter: Abstract base class for all document sources
- SourceRecord: Typed field bag around one raw document
- SourceExtractor: Lazy pagination over an adapter
- Adapters: Source-specific implementations (in adapters/ directory)
"""

from .base import SourcePage, SourceRecord, SourceAdapter
from .extractor import ExtractionError, SourceExtractor

__all__ = ["ExtractionError", "SourceAdapter", "SourceExtractor", "SourcePage", "SourceRecord"]
__version__ = "0.1.0"

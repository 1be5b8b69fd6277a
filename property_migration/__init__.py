"""Property Migration Package.

This package moves property listings from an Appwrite document collection into
a normalized PostgreSQL schema:
- source_extractor: Pages through the source collection
- normalizer: Parses loosely typed fields into column values
- resolver: Looks up or creates dimension rows (regions, areas, types, ...)
- migrator: Upserts property rows in concurrent batches
- media_linker: Upserts and trims image/video child rows
- orchestrator: Runs the phases in order and produces the run report
"""

__version__ = "0.1.0"

"""
Normalizer

Turns loosely typed source documents into property rows.

Key responsibilities:
- Parse numbers, booleans, embedded JSON and timestamps (fields.py)
- Canonicalize free text into dimension natural keys
- Derive property code, title and listing enums (property_transform.py)
"""

__version__ = "0.1.0"

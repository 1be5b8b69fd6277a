"""
Dimension resolver package.

Maps free-text dimension values (area, category, type, compound, contact) to
surrogate ids, creating missing rows on first sight.
"""

from .dimension_resolver import DimensionResolver, ResolvedDimensions
from .lexicon import RegionLexicon, RegionMatch, TypeCategoryLexicon

__all__ = [
    "DimensionResolver",
    "RegionLexicon",
    "RegionMatch",
    "ResolvedDimensions",
    "TypeCategoryLexicon",
]

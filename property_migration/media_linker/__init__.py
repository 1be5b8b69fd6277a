"""
Media linker package.

Second pass over migrated properties that writes their image and video rows.
"""

from .linker import MediaLinker, MediaLinkError

__all__ = [
    "MediaLinkError",
    "MediaLinker",
]

"""
Page Type Tags

These values are PINNED: they are hashed into every memory-page fact
and must match the constants used by the external verifier.
"""

from enum import IntEnum


class PageType(IntEnum):
    """Memory page layouts."""

    REGULAR = 0      # Sparse interleaved (address, value) pairs
    CONTINUOUS = 1   # Dense value run from one start address


def tag_bytes(tag: PageType) -> bytes:
    """Convert tag to canonical bytes (one 32-byte big-endian word)."""
    return int(tag).to_bytes(32, 'big')

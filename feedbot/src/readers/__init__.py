"""
Price source readers, one per feed topology.

Usage:
    from feedbot.src.readers import get_reader

    reader = get_reader(feed.category, adapters, ledger=ledger)
    if await reader.is_eligible(feed):
        sample = await reader.read(feed)
"""

# Import base classes and utilities
from .base import (
    READER_REGISTRY,
    BaseReader,
    PriceSample,
    get_reader,
    read_pool,
    register_reader,
)

# Import all reader implementations to trigger registration
from .native import NativeReader
from .record import RecordReader
from .relay import RelayFetchReader

__all__ = [
    "BaseReader",
    "PriceSample",
    "read_pool",
    "register_reader",
    "get_reader",
    "READER_REGISTRY",
    "NativeReader",
    "RecordReader",
    "RelayFetchReader",
]

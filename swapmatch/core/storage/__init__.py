"""Swap, auction and proposal repositories"""
from swapmatch.core.storage.repository import (
    AUCTION_PER_SWAP_CONSTRAINT,
    IDEMPOTENCY_CONSTRAINT,
    PENDING_BOOKING_CONSTRAINT,
    InMemoryRepository,
    Repository,
)
from swapmatch.core.storage.sqlite_adapter import SQLiteRepository

__all__ = [
    "AUCTION_PER_SWAP_CONSTRAINT",
    "IDEMPOTENCY_CONSTRAINT",
    "PENDING_BOOKING_CONSTRAINT",
    "InMemoryRepository",
    "Repository",
    "SQLiteRepository",
]

"""
SwapMatch - auction and compatibility matching engine for booking swaps.

Provides:
- Auctions over a single swap offer, with manual and timeout-driven resolution
- Proposal ledgers with per-auction deduplication and ordering
- Multi-factor compatibility scoring between two offers
"""

__version__ = "0.1.0"

"""HTTP-style request handlers"""
from swapmatch.api.handlers import ApiResponse, SwapMarketAPI

__all__ = ["ApiResponse", "SwapMarketAPI"]

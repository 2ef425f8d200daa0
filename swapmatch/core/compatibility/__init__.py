"""Compatibility scoring and the guarded two-sided analysis"""
from swapmatch.core.compatibility.scorer import (
    CompatibilityFactor,
    CompatibilityResult,
    CompatibilityScorer,
    FactorStatus,
    InvalidInput,
    RecommendationTier,
    WEIGHTS,
)
from swapmatch.core.compatibility.access import SwapAccessGuard
from swapmatch.core.compatibility.analysis import CompatibilityAnalysisService

__all__ = [
    "CompatibilityFactor",
    "CompatibilityResult",
    "CompatibilityScorer",
    "FactorStatus",
    "InvalidInput",
    "RecommendationTier",
    "WEIGHTS",
    "SwapAccessGuard",
    "CompatibilityAnalysisService",
]

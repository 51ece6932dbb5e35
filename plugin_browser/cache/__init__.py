"""
Caching module with entity-tag revalidation, request coalescing and
per-key error suppression.
"""
from .core import CacheEntry, CacheMeta, CacheSource
from .policies import (
    DEFAULT_FRESHNESS_WINDOW_SECONDS,
    DEFAULT_SUPPRESSION_WINDOW_SECONDS,
    FreshnessPolicy,
)
from .coalescer import RequestCoalescer
from .suppression import ErrorSuppressionCache
from .conditional import ConditionalFetchCache

__all__ = [
    # Core types
    "CacheEntry",
    "CacheMeta",
    "CacheSource",
    # Policies
    "DEFAULT_FRESHNESS_WINDOW_SECONDS",
    "DEFAULT_SUPPRESSION_WINDOW_SECONDS",
    "FreshnessPolicy",
    # Coalescing
    "RequestCoalescer",
    # Suppression
    "ErrorSuppressionCache",
    # Conditional fetch
    "ConditionalFetchCache",
]

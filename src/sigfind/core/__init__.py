"""
sigfind Core: configuration, scoring, evaluation, extraction, caching and discovery.

Re-exports the primary classes for convenience::

    from sigfind.core import DiscoveryEngine, ScoringEngine, DiscoveryConfig
"""

from sigfind.core.cache import CacheEntry, DiscoveryCache, LRUCache, ModuleRegistry
from sigfind.core.config import DiscoveryConfig
from sigfind.core.engine import DiscoveryEngine, DiscoveryState, normalize_concurrency
from sigfind.core.evaluator import CandidateEvaluator, FeedbackCollector
from sigfind.core.extractors import (
    CommandExtractor,
    ExtractorRegistry,
    PythonExtractor,
    ScriptExtractor,
)
from sigfind.core.scoring import ScoringEngine, ScoringFactor
from sigfind.core.signature import Signature, normalize_signature
from sigfind.core.validation import MetadataLoader, StructuralValidator

__all__ = [
    "CacheEntry",
    "DiscoveryCache",
    "LRUCache",
    "ModuleRegistry",
    "DiscoveryConfig",
    "DiscoveryEngine",
    "DiscoveryState",
    "normalize_concurrency",
    "CandidateEvaluator",
    "FeedbackCollector",
    "CommandExtractor",
    "ExtractorRegistry",
    "PythonExtractor",
    "ScriptExtractor",
    "ScoringEngine",
    "ScoringFactor",
    "Signature",
    "normalize_signature",
    "MetadataLoader",
    "StructuralValidator",
]

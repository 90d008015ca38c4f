"""
sigfind Scoring Engine

Multi-factor additive scoring of a candidate file against a signature.

Every factor is a small strategy object with a ``key`` and a ``score``
method; the engine sums them into a breakdown keyed by factor.  Weights
come from :class:`~sigfind.core.config.DiscoveryConfig` and are never
hardcoded here.  The total is always derived from the breakdown, so
``sum(breakdown.values()) == total`` holds exactly.
"""

import functools
import logging
import os
import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from sigfind.core.config import DiscoveryConfig
from sigfind.core.models import Candidate, ScoreResult
from sigfind.core.signature import Signature

logger = logging.getLogger(__name__)

CustomScorer = Callable[[Candidate, Signature, str], float]


@functools.lru_cache(maxsize=1024)
def compile_pattern(pattern: str, flags: int = 0) -> "re.Pattern[str]":
    """Compile and memoize *pattern* (cache keyed by pattern string and flags)."""
    return re.compile(pattern, flags)


def mention_pattern(name: str) -> "re.Pattern[str]":
    """``\\bname\\s*\\(`` for a method or function name."""
    return compile_pattern(rf"\b{re.escape(name)}\s*\(")


def word_pattern(name: str) -> "re.Pattern[str]":
    """Whole-word occurrences of *name*."""
    return compile_pattern(rf"\b{re.escape(name)}\b")


def _number(value, default: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


def file_stem(file_name: str) -> str:
    """Filename without its final extension (``Calculator.test.js`` → ``Calculator.test``)."""
    return os.path.splitext(file_name)[0]


# =============================================================================
# Factors
# =============================================================================

class ScoringFactor:
    """One additive scoring factor.

    Subclasses set :attr:`key` (the breakdown name) and implement
    :meth:`score`.  A factor must not depend on any other factor.
    """

    key: str = ""

    def score(self, candidate: Candidate, signature: Signature, content: str,
              config: DiscoveryConfig) -> float:
        raise NotImplementedError


class PathFactor(ScoringFactor):
    """Sum of every configured path substring found in the relative path."""

    key = "path"

    def score(self, candidate, signature, content, config):
        haystack = "/" + candidate.relative_path.replace("\\", "/").lstrip("/").lower()
        paths = config.weights("paths")
        total = 0.0
        for polarity in ("positive", "negative"):
            for needle, weight in (paths.get(polarity) or {}).items():
                if needle.lower() in haystack:
                    total += _number(weight)
        return total


class ExtensionFactor(ScoringFactor):
    key = "extension"

    def score(self, candidate, signature, content, config):
        extension = os.path.splitext(candidate.file_name)[1].lower()
        return _number(config.weights("extensions").get(extension))


class FileNameFactor(ScoringFactor):
    """Best single tier of filename/name agreement (tiers are exclusive)."""

    key = "fileName"

    def score(self, candidate, signature, content, config):
        weights = config.weights("fileName")
        stem = file_stem(candidate.file_name)
        if signature.name_is_pattern:
            if signature.name.search(stem) or signature.name.search(candidate.file_name):
                return _number(weights.get("regexMatch"))
            return 0.0

        name = signature.target_name
        if not name or not stem:
            return 0.0
        if stem == name:
            return _number(weights.get("exactMatch"))
        lowered_stem, lowered_name = stem.lower(), name.lower()
        if lowered_stem == lowered_name:
            return _number(weights.get("caseInsensitive"))
        if lowered_name in lowered_stem or lowered_stem in lowered_name:
            return _number(weights.get("partialMatch"))
        return 0.0


# Lexical declaration hints per requested kind
_TYPE_HINTS: Dict[str, str] = {
    "class": r"\bclass\s+[A-Za-z_$][\w$]*",
    "function": r"\bfunction\b|\bdef\s+[A-Za-z_]\w*\s*\(|=>",
    "module": r"\bmodule\.exports\b|\bexport\s|^\s*import\s|\b__all__\b",
    "object": r"\b(?:const|let|var)\s+[A-Za-z_$][\w$]*\s*=\s*\{|^[A-Za-z_]\w*\s*=\s*(?:\{|dict\()",
}


class TypeHintFactor(ScoringFactor):
    key = "typeHints"

    def score(self, candidate, signature, content, config):
        if not signature.type:
            return 0.0
        hint = _TYPE_HINTS.get(signature.type)
        if hint and compile_pattern(hint, re.MULTILINE).search(content):
            return _number(config.weights("typeHints").get(signature.type))
        return 0.0


class MethodMentionFactor(ScoringFactor):
    key = "methods"

    def score(self, candidate, signature, content, config):
        if not signature.methods:
            return 0.0
        weights = config.weights("methods")
        mentioned = sum(1 for m in signature.methods if mention_pattern(m).search(content))
        cap = int(_number(weights.get("maxMentions"), len(signature.methods)))
        return _number(weights.get("perMention")) * min(mentioned, cap)


class ExportHintFactor(ScoringFactor):
    """Textual evidence of the export access pattern (best match only)."""

    key = "exports"

    _DEFAULT = r"\bexport\s+default\b|\bmodule\.exports\s*="
    _GENERIC = r"\bexport\s|\bmodule\.exports\b|\bexports\.[\w$]+\s*=|\b__all__\b"

    @staticmethod
    def _named_patterns(name: str) -> List[str]:
        n = re.escape(name)
        return [
            rf"\bexport\s+(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
            rf"(?:class|function\*?|const|let|var|interface|type|enum)\s+{n}\b",
            rf"\bexport\s*\{{[^}}]*\b{n}\b[^}}]*\}}",
            rf"\bexports\.{n}\s*=",
            rf"\bmodule\.exports\s*=\s*{n}\b",
            rf"\bmodule\.exports\s*=\s*\{{[^}}]*\b{n}\b",
            rf"^(?:async\s+def|def|class)\s+{n}\b",
            rf"\b__all__\s*=\s*[\[(][^\])]*['\"]{n}['\"]",
        ]

    def score(self, candidate, signature, content, config):
        weights = config.weights("exports")
        name = signature.exports or signature.target_name
        best = 0.0
        if name and any(compile_pattern(p, re.MULTILINE).search(content)
                        for p in self._named_patterns(name)):
            best = max(best, _number(weights.get("namedExport")))
        if compile_pattern(self._DEFAULT).search(content):
            best = max(best, _number(weights.get("defaultExport")))
        if best == 0.0 and compile_pattern(self._GENERIC, re.MULTILINE).search(content):
            best = _number(weights.get("moduleExports"))
        return best


class NameMentionFactor(ScoringFactor):
    key = "names"

    def score(self, candidate, signature, content, config):
        weights = config.weights("names")
        if signature.name_is_pattern:
            pattern = signature.name
        elif signature.target_name:
            pattern = word_pattern(signature.target_name)
        else:
            return 0.0
        cap = int(_number(weights.get("maxMentions"), 0))
        count = 0
        for _ in pattern.finditer(content):
            count += 1
            if count >= cap:
                break
        return _number(weights.get("perMention")) * min(count, cap)


class CustomFactor(ScoringFactor):
    """Sum of pluggable ``(candidate, signature, content) -> number`` scorers."""

    key = "custom"

    def __init__(self, scorers: Optional[List[CustomScorer]] = None):
        self.scorers: List[CustomScorer] = list(scorers or [])

    def score(self, candidate, signature, content, config):
        total = 0.0
        scorers = list(self.scorers) + list(config.scoring.get("custom") or [])
        for scorer in scorers:
            if not callable(scorer):
                continue
            try:
                value = scorer(candidate, signature, content)
            except Exception as e:
                logger.warning(f"Custom scorer {getattr(scorer, '__name__', scorer)!r} failed: {e}")
                continue
            total += _number(value)
        return total


def default_factors() -> List[ScoringFactor]:
    return [
        PathFactor(), ExtensionFactor(), FileNameFactor(), TypeHintFactor(),
        MethodMentionFactor(), ExportHintFactor(), NameMentionFactor(), CustomFactor(),
    ]


# =============================================================================
# Engine
# =============================================================================

class ScoringEngine:
    """
    Pure scoring of ``(candidate, signature, content)``.

    Stateless apart from the registered custom scorers and the module
    level compiled-regex cache.  Factors can be swapped wholesale via the
    *factors* argument without touching the evaluator or engine.
    """

    def __init__(self, config: DiscoveryConfig | None = None,
                 factors: Sequence[ScoringFactor] | None = None):
        self._config = config or DiscoveryConfig()
        self.factors: List[ScoringFactor] = list(factors) if factors is not None else default_factors()

    @property
    def config(self) -> DiscoveryConfig:
        return self._config

    def update_config(self, config: DiscoveryConfig) -> None:
        """Swap the weight tables used by subsequent calls."""
        self._config = config

    def register_scorer(self, scorer: CustomScorer) -> None:
        """Add a custom scorer contributing to the ``custom`` factor."""
        self._custom_factor().scorers.append(scorer)

    def unregister_scorer(self, scorer: CustomScorer) -> None:
        custom = self._custom_factor()
        if scorer in custom.scorers:
            custom.scorers.remove(scorer)

    def _custom_factor(self) -> CustomFactor:
        for factor in self.factors:
            if isinstance(factor, CustomFactor):
                return factor
        factor = CustomFactor()
        self.factors.append(factor)
        return factor

    # ── Public API ────────────────────────────────────────────────

    def score(self, candidate: Candidate, signature: Signature, content: str) -> ScoreResult:
        """Score one candidate; every factor key appears in the breakdown."""
        breakdown: Dict[str, float] = {}
        for factor in self.factors:
            breakdown[factor.key] = breakdown.get(factor.key, 0) + factor.score(
                candidate, signature, content or "", self._config
            )
        return ScoreResult(total=sum(breakdown.values()), breakdown=breakdown)

    # ── Post-load factors ─────────────────────────────────────────

    def score_target_name(self, name: Optional[str], signature: Signature) -> float:
        """Bonus for the resolved export name agreeing with the signature."""
        if not name:
            return 0.0
        if signature.name_is_pattern:
            if signature.name.search(name):
                return _number(self._config.weights("fileName").get("regexMatch"))
            return 0.0
        expected = signature.target_name
        if not expected:
            return 0.0
        if name == expected:
            return _number(self._config.weights("target").get("exactName"))
        if name.lower() == expected.lower():
            return _number(self._config.weights("fileName").get("caseInsensitive"))
        return 0.0

    def score_method_validation(self, confirmed_methods: Iterable[str]) -> float:
        """Bonus per method confirmed present in the resolved export."""
        count = len(list(confirmed_methods))
        return _number(self._config.weights("target").get("methodPresence")) * count

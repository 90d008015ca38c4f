"""
sigfind Candidate Evaluator

Turns one file path into a scored :class:`~sigfind.core.models.Candidate`
(or ``None``).  Every per-file failure is absorbed here so a single
unreadable or unparsable file never aborts the surrounding scan.

Also home to the textual safety filter and the structural pre-filter
applied to extracted metadata before resolution.
"""

import logging
import os
import re
import time
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Set

from sigfind.core.config import DEFAULT_MAX_FILE_SIZE, DiscoveryConfig
from sigfind.core.models import Candidate, ExportEntry
from sigfind.core.scoring import ScoringEngine
from sigfind.core.signature import Signature, pattern_to_literal

logger = logging.getLogger(__name__)

_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])|([A-Z]+)([A-Z][a-z])")
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")

_KIND_COMPATIBILITY = {
    "class": {"class"},
    "function": {"function"},
    "object": {"object"},
    "module": {"module", "object"},
}


def file_mtime_ms(path: str | os.PathLike) -> float:
    """Modification time in milliseconds (raises ``OSError``)."""
    return os.stat(path).st_mtime_ns / 1_000_000


def tokenize_name(name: str) -> List[str]:
    """Split on case boundaries and non-alphanumerics, lower-cased.

    >>> tokenize_name("HTTPClientFactory")
    ['http', 'client', 'factory']
    """
    spaced = _CASE_BOUNDARY.sub(
        lambda m: f"{m.group(1)} {m.group(2)}" if m.group(1) else f"{m.group(3)} {m.group(4)}",
        name,
    )
    return [token.lower() for token in _NON_ALNUM.split(spaced) if token]


def quick_name_check(file_name: str, signature: Signature) -> bool:
    """Cheap pre-I/O filter on the filename alone (extension excluded)."""
    if signature.name is None and not signature.exports:
        return True
    stem = os.path.splitext(file_name)[0]
    lowered = stem.lower()
    if signature.name_is_pattern:
        if signature.name.search(stem):
            return True
    elif signature.name:
        if any(token in lowered for token in tokenize_name(signature.name)):
            return True
    if signature.exports and signature.exports.lower() in lowered:
        return True
    return False


def _is_size(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def kind_matches(kind: str, target_type: str) -> bool:
    return kind in _KIND_COMPATIBILITY.get(target_type, {target_type})


def entry_names(entry: ExportEntry) -> List[str]:
    """Every name an export can be known by (access name, own name, exported name)."""
    names = []
    for name in (entry.access.name, entry.info.name, entry.exported_name):
        if name and name not in names:
            names.append(name)
    return names


def name_matches(entry: ExportEntry, signature: Signature) -> bool:
    if signature.name is None:
        return True
    names = entry_names(entry)
    if signature.name_is_pattern:
        return any(signature.name.search(n) for n in names)
    expected = signature.name.lower()
    return any(n.lower() == expected for n in names)


def matches_signature_metadata(entry: ExportEntry, signature: Signature) -> bool:
    """Structural pre-filter of one export entry against the signature."""
    info = entry.info
    if signature.type and not kind_matches(info.kind, signature.type):
        return False
    if (signature.exports and entry.access.type == "named"
            and entry.access.name != signature.exports):
        return False
    if not name_matches(entry, signature):
        return False
    if signature.methods and not set(signature.methods).issubset(info.methods):
        return False
    if signature.properties and not set(signature.properties).issubset(info.properties):
        return False
    if signature.extends and info.extends != signature.extends:
        return False
    return True


def explain_mismatch(entry: ExportEntry, signature: Signature) -> Optional[str]:
    """First structural constraint *entry* fails, in words (``None`` if none)."""
    info = entry.info
    label = info.name or entry.exported_name or "export"
    if signature.type and not kind_matches(info.kind, signature.type):
        return f"{label} is a {info.kind}, expected {signature.type}"
    if (signature.exports and entry.access.type == "named"
            and entry.access.name != signature.exports):
        return f"exported as '{entry.access.name}', expected '{signature.exports}'"
    if not name_matches(entry, signature):
        return f"name '{label}' does not match"
    missing = [m for m in signature.methods if m not in info.methods]
    if missing:
        return f"{label} is missing methods: {', '.join(missing)}"
    missing = [p for p in signature.properties if p not in info.properties]
    if missing:
        return f"{label} is missing properties: {', '.join(missing)}"
    if signature.extends and info.extends != signature.extends:
        return f"{label} extends {info.extends or 'nothing'}, expected {signature.extends}"
    if signature.instanceof and signature.instanceof not in (info.name, info.extends):
        return f"{label} is not an instance of {signature.instanceof}"
    return None


# =============================================================================
# Feedback
# =============================================================================

class FeedbackCollector:
    """
    In-process record of accepted and rejected resolutions.

    Previously accepted paths for the same signature name earn
    ``scoring.feedback.acceptedBonus``; rejected ones the
    ``rejectedPenalty``.
    """

    def __init__(self):
        self._accepted: Dict[str, Set[str]] = defaultdict(set)
        self._rejected: Dict[str, Set[str]] = defaultdict(set)

    @staticmethod
    def _key(signature: Signature) -> str:
        if signature.name_is_pattern:
            return pattern_to_literal(signature.name)
        return signature.target_name or signature.cache_key()

    def accept(self, signature: Signature, path: str) -> None:
        key = self._key(signature)
        self._rejected[key].discard(path)
        self._accepted[key].add(path)

    def reject(self, signature: Signature, path: str) -> None:
        key = self._key(signature)
        self._accepted[key].discard(path)
        self._rejected[key].add(path)

    def pattern_score(self, candidate: Candidate, signature: Signature,
                      config: DiscoveryConfig) -> float:
        weights = config.weights("feedback")
        key = self._key(signature)
        if candidate.path in self._accepted.get(key, ()):
            return float(weights.get("acceptedBonus", 0))
        if candidate.path in self._rejected.get(key, ()):
            return float(weights.get("rejectedPenalty", 0))
        return 0.0


# =============================================================================
# Evaluator
# =============================================================================

class CandidateEvaluator:
    """
    Per-file evaluation pipeline.

    Steps, in order: quick name check, stat and size gate, content read,
    metadata extraction, scoring (plus recency, feedback and loose-name
    adjustments), minimum-score gate.
    """

    def __init__(self, root: str | os.PathLike, config: DiscoveryConfig | None = None,
                 scoring_engine: ScoringEngine | None = None, extractors=None,
                 alias_resolver=None, feedback: FeedbackCollector | None = None):
        self.root = Path(root).resolve()
        self.config = config or DiscoveryConfig()
        self.scoring = scoring_engine or ScoringEngine(self.config)
        self.extractors = extractors
        self.alias_resolver = alias_resolver
        self.feedback = feedback

    # ── Public API ────────────────────────────────────────────────

    def evaluate(self, path: str | os.PathLike, signature: Signature) -> Optional[Candidate]:
        """Evaluate one file; ``None`` means rejected or unreadable."""
        path = str(path)
        file_name = os.path.basename(path)
        extension = os.path.splitext(file_name)[1].lower()

        quick_matched = self.quick_name_check(file_name, signature)
        if not quick_matched and not self.config.allow_loose_name_match:
            return None

        try:
            stat = os.stat(path)
        except OSError as e:
            logger.debug(f"Cannot stat {path}: {e}")
            return None
        limit = self.max_file_size_for(extension)
        if stat.st_size > limit:
            logger.debug(f"Skipping large file: {path} ({stat.st_size} > {limit} bytes)")
            return None

        try:
            with open(path, "r", encoding="utf-8") as fh:
                content = fh.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Cannot read {path}: {e}")
            return None

        metadata = None
        if self.extractors is not None:
            try:
                metadata = self.extractors.extract(path, content)
            except Exception as e:
                logger.debug(f"Metadata extraction failed for {path}: {e}")

        candidate = Candidate(
            path=path,
            file_name=file_name,
            relative_path=self._relative(path),
            content=content,
            mtime_ms=stat.st_mtime_ns / 1_000_000,
            quick_name_matched=quick_matched,
            metadata=metadata,
        )

        result = self.scoring.score(candidate, signature, content)
        breakdown = dict(result.breakdown)
        breakdown["recency"] = self.recency_bonus(candidate.mtime_ms)
        breakdown["pattern"] = self._feedback_score(candidate, signature)
        breakdown["quickName"] = 0.0 if quick_matched else -abs(self.config.loose_name_penalty)
        candidate.score_breakdown = breakdown
        candidate.score = sum(breakdown.values())

        self._annotate_aliases(candidate)

        if candidate.score <= self.config.min_candidate_score:
            logger.debug(f"Discarding {path}: score {candidate.score} <= {self.config.min_candidate_score}")
            return None
        return candidate

    def quick_name_check(self, file_name: str, signature: Signature) -> bool:
        return quick_name_check(file_name, signature)

    def max_file_size_for(self, extension: str) -> int:
        """Most specific size limit: language parser, global parser, safeguard."""
        language = self.config.language_for_extension(extension)
        if language:
            parser = self.config.languages.get(language, {}).get("parser") or {}
            limit = parser.get("maxFileSize")
            if _is_size(limit):
                return int(limit)
        if _is_size(self.config.parser_max_file_size):
            return int(self.config.parser_max_file_size)
        return DEFAULT_MAX_FILE_SIZE

    def recency_bonus(self, mtime_ms: Optional[float], now: Optional[float] = None) -> float:
        """``maxBonus * 2 ** (-ageHours / halfLifeHours)``; 0 when disabled."""
        weights = self.config.weights("recency")
        max_bonus = weights.get("maxBonus", 0) or 0
        half_life = weights.get("halfLifeHours", 0) or 0
        if mtime_ms is None or max_bonus <= 0 or half_life <= 0:
            return 0.0
        now_ms = now if now is not None else time.time() * 1000
        age_hours = max(0.0, (now_ms - mtime_ms) / 3_600_000)
        return max_bonus * 2 ** (-age_hours / half_life)

    def is_candidate_safe(self, candidate: Candidate) -> bool:
        """Case-insensitive denylist scan of the raw file text."""
        if self.config.allow_unsafe:
            return True
        text = candidate.content.lower()
        for token in self.config.blocked_tokens:
            if token and token.lower() in text:
                logger.debug(f"Unsafe candidate {candidate.path}: contains {token!r}")
                return False
        return True

    def matches_signature_metadata(self, entry: ExportEntry, signature: Signature) -> bool:
        return matches_signature_metadata(entry, signature)

    def select_export(self, candidate: Candidate, signature: Signature) -> Optional[ExportEntry]:
        """First export entry passing the structural pre-filter."""
        if candidate.metadata is None:
            return None
        for entry in candidate.metadata.exports:
            if matches_signature_metadata(entry, signature):
                return entry
        return None

    # ── Helpers ───────────────────────────────────────────────────

    def _relative(self, path: str) -> str:
        try:
            return Path(path).resolve().relative_to(self.root).as_posix()
        except ValueError:
            return Path(path).as_posix()

    def _feedback_score(self, candidate: Candidate, signature: Signature) -> float:
        if self.feedback is None or not self.config.weights("feedback").get("enabled"):
            return 0.0
        return self.feedback.pattern_score(candidate, signature, self.config)

    def _annotate_aliases(self, candidate: Candidate) -> None:
        if self.alias_resolver is None:
            return
        try:
            candidate.aliases = list(self.alias_resolver.aliases_for(candidate.path))
            candidate.base_import = self.alias_resolver.base_url_import(candidate.path)
        except Exception as e:
            logger.debug(f"Alias resolution failed for {candidate.path}: {e}")

"""
sigfind Discovery Engine

Orchestrates discovery for one project root:

    signature → cache lookup → traverse (bounded concurrency)
              → evaluate each file → rank → resolve in order
              → cache the winner → DiscoveryResult

When nothing resolves, a :class:`~sigfind.exceptions.DiscoveryError`
carries the top near misses and a signature suggested from the best
candidate's metadata.

An engine is an explicit value built per root and config; there is no
process-wide registry of engines.
"""

import asyncio
import hashlib
import importlib.util
import logging
import os
import sys
from dataclasses import asdict, dataclass
from enum import Enum
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from tqdm import tqdm

from sigfind.core.aliases import TSConfigAliasResolver
from sigfind.core.cache import CacheEntry, DiscoveryCache, ModuleRegistry
from sigfind.core.config import MAX_CONCURRENCY, DiscoveryConfig
from sigfind.core.evaluator import CandidateEvaluator, FeedbackCollector, explain_mismatch
from sigfind.core.extractors import ExtractorRegistry
from sigfind.core.models import Candidate, DiscoveryResult, NearMiss, ResolvedTarget
from sigfind.core.scoring import ScoringEngine
from sigfind.core.signature import Signature, normalize_signature
from sigfind.core.validation import MetadataLoader, StructuralValidator
from sigfind.exceptions import DiscoveryError, TargetLoadError

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 8

SignatureInput = Union[Signature, Mapping[str, Any], str]


# =============================================================================
# State & statistics
# =============================================================================

class DiscoveryState(Enum):
    IDLE = "idle"
    COLLECTING_CANDIDATES = "collecting_candidates"
    RANKING = "ranking"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"


@dataclass
class DiscoveryStats:
    """Cumulative counters for one engine."""
    traversals: int = 0
    files_visited: int = 0
    files_evaluated: int = 0
    candidates: int = 0
    unsafe: int = 0
    cache_hits: int = 0
    cache_misses: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_concurrency(value: Any, default: int = DEFAULT_CONCURRENCY) -> int:
    """Clamp *value* to ``[1, MAX_CONCURRENCY]``; non-numbers give *default*."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(1, min(number, MAX_CONCURRENCY))


# =============================================================================
# Engine
# =============================================================================

class DiscoveryEngine:
    """
    Signature-based discovery over one project root.

    Collaborators (extractor registry, loader, validator, alias resolver,
    feedback collector) can be injected; defaults are built from the
    config.  The alias resolver defaults to the root's ``tsconfig.json``
    or ``jsconfig.json`` when one exists.
    """

    def __init__(self, root: str | os.PathLike, config: DiscoveryConfig | None = None, *,
                 extractors: ExtractorRegistry | None = None,
                 loader: MetadataLoader | None = None,
                 validator: StructuralValidator | None = None,
                 alias_resolver=None,
                 feedback: FeedbackCollector | None = None,
                 scoring_engine: ScoringEngine | None = None):
        self.root = Path(root).resolve()
        self.config = config or DiscoveryConfig()
        self.max_concurrency = normalize_concurrency(self.config.concurrency)

        self.scoring = scoring_engine or ScoringEngine(self.config)
        self.extractors = extractors or ExtractorRegistry(self.config)
        self.alias_resolver = (
            alias_resolver if alias_resolver is not None
            else TSConfigAliasResolver.from_root(self.root)
        )
        if feedback is None and self.config.weights("feedback").get("enabled"):
            feedback = FeedbackCollector()
        self.feedback = feedback
        self.evaluator = CandidateEvaluator(
            self.root, self.config, self.scoring, self.extractors,
            alias_resolver=self.alias_resolver, feedback=self.feedback,
        )
        self.loader = loader or MetadataLoader()
        self.validator = validator or StructuralValidator(self.scoring)

        self.cache = DiscoveryCache(
            self.config.cache_path(self.root),
            ttl_seconds=self.config.cache_ttl,
            enabled=self.config.cache_enabled,
            memory_size=self.config.cache_memory_size,
        )
        self.modules = ModuleRegistry(self.config.max_cached_modules)
        self.state = DiscoveryState.IDLE
        self.stats = DiscoveryStats()

    # ── Public API ────────────────────────────────────────────────

    async def discover_target(self, signature: SignatureInput,
                              use_cache: bool = True) -> DiscoveryResult:
        """
        Find the best structurally valid target for *signature*.

        Raises:
            SignatureError: The signature is malformed or empty.
            DiscoveryError: No candidate passed safety and validation.
        """
        sig = normalize_signature(signature)
        key = sig.cache_key(str(self.root))

        if use_cache:
            entry = self.cache.get(key)
            if entry is not None:
                self.stats.cache_hits += 1
                self.state = DiscoveryState.RESOLVED
                logger.debug(f"Cache hit for {sig.to_dict()}: {entry.path}")
                return self._cached_result(entry, sig)
            self.stats.cache_misses += 1

        candidates = await self.collect_candidates(sig)
        ranked = self.rank_candidates(candidates)
        result, winner = await self._resolve(ranked, sig)

        entry = self.cache.make_entry(
            result.path, result.access, result.score, winner.mtime_ms,
            kind=result.kind, export_name=result.export_name,
            breakdown=result.score_breakdown,
        )
        await asyncio.to_thread(self.cache.put, key, entry)
        if self.feedback is not None:
            self.feedback.accept(sig, result.path)
        logger.info(f"Resolved {sig.to_dict()} -> {result.relative_path} (score {result.score:g})")
        return result

    def discover(self, signature: SignatureInput, use_cache: bool = True) -> DiscoveryResult:
        """Synchronous :meth:`discover_target` (not for use inside a running loop)."""
        return asyncio.run(self.discover_target(signature, use_cache=use_cache))

    async def collect_candidates(self, signature: SignatureInput, show_progress: bool = False,
                                 include_unsafe: bool = False) -> List[Candidate]:
        """
        Traverse the root and evaluate every eligible file.

        At most ``max_concurrency`` directory scans or file evaluations
        run at once.  Configured skip directories are never entered.
        Unsafe candidates are counted and dropped unless *include_unsafe*.
        Traversal order is not guaranteed; use :meth:`rank_candidates`.
        """
        sig = normalize_signature(signature)
        self.state = DiscoveryState.COLLECTING_CANDIDATES
        self.stats.traversals += 1

        extensions = {ext.lower() for ext in self.config.extensions_for_language(sig.language)}
        skip_dirs = self.config.skip_directories
        semaphore = asyncio.Semaphore(self.max_concurrency)
        candidates: List[Candidate] = []
        progress = tqdm(desc="Scanning", unit="file", disable=not show_progress, leave=False)

        async def visit_file(path: str) -> None:
            async with semaphore:
                candidate = await asyncio.to_thread(self.evaluator.evaluate, path, sig)
            self.stats.files_evaluated += 1
            progress.update(1)
            if candidate is None:
                return
            candidate.safe = self.evaluator.is_candidate_safe(candidate)
            if not candidate.safe:
                self.stats.unsafe += 1
                if not include_unsafe:
                    return
            candidates.append(candidate)

        async def walk(directory: str, depth: int) -> None:
            async with semaphore:
                try:
                    entries = await asyncio.to_thread(self._scan, directory)
                except OSError as e:
                    logger.debug(f"Cannot list {directory}: {e}")
                    return
            tasks = []
            for name, path, is_dir in entries:
                if is_dir:
                    if name in skip_dirs or depth >= self.config.max_depth:
                        continue
                    tasks.append(walk(path, depth + 1))
                    continue
                self.stats.files_visited += 1
                extension = os.path.splitext(name)[1].lower()
                if extension not in extensions:
                    continue
                if any(fnmatch(name, pattern) for pattern in self.config.skip_patterns_for(extension)):
                    continue
                tasks.append(visit_file(path))
            for outcome in await asyncio.gather(*tasks, return_exceptions=True):
                if isinstance(outcome, Exception):
                    logger.warning(f"Evaluation failed under {directory}: {outcome}")

        try:
            await walk(str(self.root), 0)
        finally:
            progress.close()

        self.stats.candidates += len(candidates)
        logger.debug(f"Collected {len(candidates)} candidates under {self.root}")
        return candidates

    def rank_candidates(self, candidates: List[Candidate]) -> List[Candidate]:
        """Score descending, then path ascending."""
        self.state = DiscoveryState.RANKING
        return sorted(candidates, key=lambda c: (-c.score, c.path))

    async def resolve(self, candidates: List[Candidate],
                      signature: SignatureInput) -> DiscoveryResult:
        """Resolve already-ranked *candidates* (raises ``DiscoveryError``)."""
        result, _ = await self._resolve(candidates, normalize_signature(signature))
        return result

    def clear_cache(self) -> None:
        """Reset the memory cache, the persisted file and the module registry."""
        self.cache.clear()
        self.modules.clear()
        logger.info(f"Cleared discovery cache for {self.root}")

    def record_feedback(self, signature: SignatureInput, path: str, accepted: bool = True) -> None:
        """Remember whether *path* was the right answer for *signature*."""
        if self.feedback is None:
            self.feedback = FeedbackCollector()
            self.evaluator.feedback = self.feedback
        sig = normalize_signature(signature)
        if accepted:
            self.feedback.accept(sig, str(path))
        else:
            self.feedback.reject(sig, str(path))

    def load_target(self, result: DiscoveryResult) -> Any:
        """
        Import a resolved Python target and return the exported object.

        This executes the target module; discovery itself never does.
        Loaded modules are tracked in a bounded registry (oldest evicted).

        Raises:
            TargetLoadError: Not a Python file, import failed, or the
                export is missing.
        """
        path = result.path
        if os.path.splitext(path)[1].lower() != ".py":
            raise TargetLoadError(f"Only Python targets can be loaded in-process: {path}")

        module_name = self.modules.get(path) or (
            "sigfind_target_" + hashlib.sha1(path.encode("utf-8")).hexdigest()[:12]
        )
        module = sys.modules.get(module_name)
        if module is None:
            spec = importlib.util.spec_from_file_location(module_name, path)
            if spec is None or spec.loader is None:
                raise TargetLoadError(f"Cannot build an import spec for {path}")
            module = importlib.util.module_from_spec(spec)
            sys.modules[module_name] = module
            try:
                spec.loader.exec_module(module)
            except Exception as e:
                sys.modules.pop(module_name, None)
                raise TargetLoadError(f"Importing {path} failed: {e}") from e
        self.modules.add(path, module_name)

        access = result.access
        if access.type == "named":
            try:
                return getattr(module, access.name)
            except AttributeError as e:
                raise TargetLoadError(f"{path} has no export named {access.name!r}") from e
        if access.type == "default":
            return getattr(module, "default", module)
        return module

    # ── Diagnostics ───────────────────────────────────────────────

    @staticmethod
    def build_signature_suggestion(candidate: Optional[Candidate]) -> Optional[dict]:
        """Signature describing what *candidate* actually exports."""
        if candidate is None or candidate.metadata is None:
            return None
        entry = candidate.metadata.primary()
        if entry is None:
            return None
        info = entry.info
        suggestion: Dict[str, Any] = {}
        if info.name:
            suggestion["name"] = info.name
        if info.kind and info.kind != "unknown":
            suggestion["type"] = info.kind
        if entry.access.type == "named" and entry.access.name:
            suggestion["exports"] = entry.access.name
        if info.methods:
            suggestion["methods"] = info.methods[:5]
        if info.properties:
            suggestion["properties"] = info.properties[:3]
        if info.extends:
            suggestion["extends"] = info.extends
        return suggestion or None

    def create_discovery_error(self, signature: Signature, candidates: List[Candidate],
                               reasons: Optional[Dict[str, str]] = None) -> DiscoveryError:
        """Exhaustion error listing the top near misses of ranked *candidates*."""
        reasons = reasons or {}
        near_misses = [
            NearMiss(
                path=c.path,
                score=c.score,
                score_breakdown=dict(c.score_breakdown),
                reason=reasons.get(c.path, "not attempted"),
            )
            for c in candidates[: max(self.config.max_near_misses, 0)]
        ]
        suggestion = self.build_signature_suggestion(candidates[0]) if candidates else None

        lines = [f"No target matching {signature.to_dict()} found under {self.root}."]
        if near_misses:
            lines.append("Closest candidates:")
            for miss in near_misses:
                lines.append(f"  - {self._relative(miss.path)} (score {miss.score:g}): {miss.reason}")
        else:
            lines.append("No file passed the name, size, score and safety filters.")
        if suggestion:
            lines.append(f"Suggested signature: {suggestion}")
        return DiscoveryError(
            "\n".join(lines),
            signature=signature.to_dict(),
            near_misses=near_misses,
            suggested_signature=suggestion,
        )

    # ── Resolution ────────────────────────────────────────────────

    async def _resolve(self, ranked: List[Candidate],
                       sig: Signature) -> Tuple[DiscoveryResult, Candidate]:
        self.state = DiscoveryState.RESOLVING
        reasons: Dict[str, str] = {}
        index = 0
        while index < len(ranked):
            # Candidates with equal pre-load scores compete on final score
            group_end = index + 1
            while group_end < len(ranked) and ranked[group_end].score == ranked[index].score:
                group_end += 1

            best: Optional[Tuple[Candidate, ResolvedTarget]] = None
            for candidate in ranked[index:group_end]:
                resolved = self._attempt(candidate, sig, reasons)
                if resolved is None:
                    continue
                if best is None or resolved.score > best[1].score:
                    best = (candidate, resolved)

            if best is not None:
                self.state = DiscoveryState.RESOLVED
                return self._build_result(best[0], best[1], sig), best[0]
            index = group_end

        self.state = DiscoveryState.EXHAUSTED
        raise self.create_discovery_error(sig, ranked, reasons)

    def _attempt(self, candidate: Candidate, sig: Signature,
                 reasons: Dict[str, str]) -> Optional[ResolvedTarget]:
        try:
            handle = self.loader.load(candidate)
        except Exception as e:
            reasons[candidate.path] = f"could not be loaded ({e})"
            logger.debug(f"Load failed for {candidate.path}: {e}")
            return None
        try:
            resolved = self.validator.resolve_target(handle, sig)
        except Exception as e:
            reasons[candidate.path] = f"validation failed ({e})"
            logger.debug(f"Validation failed for {candidate.path}: {e}")
            return None
        if resolved is None:
            explanations = [explain_mismatch(entry, sig) for entry in handle.metadata.exports]
            reasons[candidate.path] = next(
                (text for text in explanations if text), "no export matches the signature"
            )
        return resolved

    def _build_result(self, candidate: Candidate, resolved: ResolvedTarget,
                      sig: Signature) -> DiscoveryResult:
        breakdown = dict(candidate.score_breakdown)
        for factor, points in resolved.breakdown.items():
            breakdown[f"target.{factor}"] = points
        entry = resolved.entry
        return DiscoveryResult(
            path=candidate.path,
            relative_path=candidate.relative_path,
            access=resolved.access,
            score=sum(breakdown.values()),
            score_breakdown=breakdown,
            export_name=entry.exported_name or entry.info.name,
            kind=entry.info.kind,
            signature=sig.to_dict(),
        )

    def _cached_result(self, entry: CacheEntry, sig: Signature) -> DiscoveryResult:
        breakdown = dict(entry.breakdown)
        if abs(sum(breakdown.values()) - entry.score) > 1e-9:
            breakdown = {"cached": entry.score}
        return DiscoveryResult(
            path=entry.path,
            relative_path=self._relative(entry.path),
            access=entry.access,
            score=entry.score,
            score_breakdown=breakdown,
            export_name=entry.export_name or entry.access.name,
            kind=entry.kind,
            from_cache=True,
            signature=sig.to_dict(),
        )

    # ── Helpers ───────────────────────────────────────────────────

    @staticmethod
    def _scan(directory: str) -> List[Tuple[str, str, bool]]:
        entries = []
        with os.scandir(directory) as it:
            for entry in it:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        entries.append((entry.name, entry.path, True))
                    elif entry.is_file():
                        entries.append((entry.name, entry.path, False))
                except OSError:
                    continue
        return entries

    def _relative(self, path: str) -> str:
        try:
            return Path(path).resolve().relative_to(self.root).as_posix()
        except ValueError:
            return Path(path).as_posix()

"""
sigfind Structural Validation

Metadata-only loading and validation of ranked candidates.  Discovery
never imports or executes candidate code; a candidate's "handle" is its
statically extracted export metadata.  Importing the winner is a
separate, caller-side step (:meth:`DiscoveryEngine.load_target`).
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sigfind.core.evaluator import entry_names, kind_matches, matches_signature_metadata, name_matches
from sigfind.core.models import Candidate, ExportEntry, ExportMetadata, ResolvedTarget, ValidationResult
from sigfind.core.scoring import ScoringEngine
from sigfind.core.signature import Signature
from sigfind.exceptions import TargetLoadError

logger = logging.getLogger(__name__)


@dataclass
class ModuleHandle:
    """Structural stand-in for a loaded module."""
    path: str
    metadata: ExportMetadata


class MetadataLoader:
    """Loads a candidate as its extracted metadata (raises when there is none)."""

    def load(self, candidate: Candidate) -> ModuleHandle:
        if candidate.metadata is None or not candidate.metadata.exports:
            raise TargetLoadError(f"No export metadata for {candidate.path}")
        return ModuleHandle(path=candidate.path, metadata=candidate.metadata)


class StructuralValidator:
    """
    Checks one export entry against a signature and scores the agreement.

    Returns ``None`` on any mismatch.  Bonus weights come from the
    ``scoring.target`` table plus the scoring engine's post-load factors.
    """

    def __init__(self, scoring_engine: ScoringEngine | None = None):
        self.scoring = scoring_engine or ScoringEngine()

    def validate(self, entry: ExportEntry, signature: Signature) -> Optional[ValidationResult]:
        weights = self.scoring.config.weights("target")
        info = entry.info
        breakdown: Dict[str, float] = {}

        if signature.type:
            if not kind_matches(info.kind, signature.type):
                return None
            breakdown["typeMatch"] = weights.get("typeMatch", 0)

        if signature.name is not None or signature.exports:
            if signature.name is not None and not name_matches(entry, signature):
                return None
            breakdown["targetName"] = max(
                (self.scoring.score_target_name(n, signature) for n in entry_names(entry)),
                default=0.0,
            )

        if signature.methods:
            if not set(signature.methods).issubset(info.methods):
                return None
            breakdown["methodPresence"] = self.scoring.score_method_validation(signature.methods)

        if signature.properties:
            if not set(signature.properties).issubset(info.properties):
                return None
            breakdown["propertyPresence"] = weights.get("propertyPresence", 0) * len(signature.properties)

        if signature.extends:
            if info.extends != signature.extends:
                return None
            breakdown["extendsMatch"] = weights.get("extendsMatch", 0)

        if signature.instanceof:
            if signature.instanceof not in (info.name, info.extends):
                return None
            breakdown["instanceofMatch"] = weights.get("instanceofMatch", 0)

        return ValidationResult(score=sum(breakdown.values()), breakdown=breakdown)

    def resolve_target(self, handle: ModuleHandle, signature: Signature) -> Optional[ResolvedTarget]:
        """Best structurally valid export of *handle* (ties keep entry order)."""
        weights = self.scoring.config.weights("target")
        best: Optional[ResolvedTarget] = None
        for entry in handle.metadata.exports:
            if not matches_signature_metadata(entry, signature):
                continue
            validated = self.validate(entry, signature)
            if validated is None:
                continue
            breakdown = dict(validated.breakdown)
            if (entry.access.type == "named" and signature.exports
                    and entry.access.name == signature.exports):
                breakdown["namedExport"] = weights.get("namedExport", 0)
            elif entry.access.type == "direct":
                breakdown["directExport"] = weights.get("directExport", 0)
            score = sum(breakdown.values())
            if best is None or score > best.score:
                best = ResolvedTarget(entry=entry, access=entry.access, score=score, breakdown=breakdown)
        return best

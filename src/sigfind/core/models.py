"""
sigfind Data Models

Export metadata produced by extractors, the per-file candidate record,
and the result types returned by scoring, validation and discovery.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

ACCESS_TYPES = frozenset({"default", "named", "direct"})


# =============================================================================
# Export metadata (extractor output, untrusted)
# =============================================================================

@dataclass
class ExportInfo:
    """What an exported entity looks like: name, kind and members."""
    name: Optional[str] = None
    kind: str = "unknown"
    methods: List[str] = field(default_factory=list)
    properties: List[str] = field(default_factory=list)
    extends: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ExportAccess:
    """How to reach an export from its module: default, named, or direct."""
    type: str = "direct"
    name: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"type": self.type}
        if self.name is not None:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ExportAccess":
        if not isinstance(data, Mapping):
            return cls()
        access_type = data.get("type")
        if access_type not in ACCESS_TYPES:
            access_type = "direct"
        name = data.get("name")
        return cls(type=access_type, name=name if isinstance(name, str) else None)


@dataclass
class ExportEntry:
    """One export of a module, as reported by an extractor."""
    exported_name: Optional[str]
    access: ExportAccess
    info: ExportInfo

    def to_dict(self) -> dict:
        return {
            "exportedName": self.exported_name,
            "access": self.access.to_dict(),
            "info": self.info.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ExportEntry"]:
        """Lenient parse; returns ``None`` for shapes that cannot be an entry."""
        if not isinstance(data, Mapping):
            return None
        raw_info = data.get("info")
        if not isinstance(raw_info, Mapping):
            return None
        info = ExportInfo(
            name=raw_info.get("name") if isinstance(raw_info.get("name"), str) else None,
            kind=str(raw_info.get("kind") or "unknown"),
            methods=[m for m in raw_info.get("methods") or [] if isinstance(m, str)],
            properties=[p for p in raw_info.get("properties") or [] if isinstance(p, str)],
            extends=raw_info.get("extends") if isinstance(raw_info.get("extends"), str) else None,
        )
        exported = data.get("exportedName", data.get("exported_name"))
        return cls(
            exported_name=exported if isinstance(exported, str) else info.name,
            access=ExportAccess.from_dict(data.get("access")),
            info=info,
        )


@dataclass
class ExportMetadata:
    """All exports found in one file."""
    exports: List[ExportEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"exports": [e.to_dict() for e in self.exports]}

    @classmethod
    def from_dict(cls, data: Any) -> "ExportMetadata":
        if not isinstance(data, Mapping):
            return cls()
        entries = (ExportEntry.from_dict(raw) for raw in data.get("exports") or [])
        return cls(exports=[e for e in entries if e is not None])

    def primary(self) -> Optional[ExportEntry]:
        """The most descriptive entry (classes first, then functions, then the rest)."""
        rank = {"class": 0, "function": 1, "object": 2, "module": 3}
        if not self.exports:
            return None
        return min(self.exports, key=lambda e: rank.get(e.info.kind, 4))


# =============================================================================
# Candidate (lives for one discovery call)
# =============================================================================

@dataclass
class Candidate:
    """A source file under consideration for a signature."""
    path: str
    file_name: str
    relative_path: str
    content: str = ""
    mtime_ms: Optional[float] = None
    quick_name_matched: bool = True
    metadata: Optional[ExportMetadata] = None
    score: float = 0.0
    score_breakdown: Dict[str, float] = field(default_factory=dict)
    aliases: List[str] = field(default_factory=list)
    base_import: Optional[str] = None
    safe: bool = True


# =============================================================================
# Results
# =============================================================================

@dataclass
class ScoreResult:
    """Additive score: ``total == sum(breakdown.values())``."""
    total: float
    breakdown: Dict[str, float]


@dataclass
class ValidationResult:
    """Resolution-time score of a structurally valid export."""
    score: float
    breakdown: Dict[str, float] = field(default_factory=dict)


@dataclass
class ResolvedTarget:
    """The export selected inside a validated candidate."""
    entry: ExportEntry
    access: ExportAccess
    score: float
    breakdown: Dict[str, float] = field(default_factory=dict)


@dataclass
class NearMiss:
    """A ranked candidate that did not resolve, with the reason why."""
    path: str
    score: float
    score_breakdown: Dict[str, float]
    reason: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DiscoveryResult:
    """Outcome of a successful ``discover_target`` call.

    :attr:`score` is the resolution-time score (pre-load score plus the
    structural validation bonuses); :attr:`score_breakdown` sums to it.
    """
    path: str
    relative_path: str
    access: ExportAccess
    score: float
    score_breakdown: Dict[str, float] = field(default_factory=dict)
    export_name: Optional[str] = None
    kind: Optional[str] = None
    from_cache: bool = False
    signature: Optional[dict] = None

    def to_dict(self) -> dict:
        """Return a JSON-serializable dict for CLI/MCP output."""
        data = asdict(self)
        data["access"] = self.access.to_dict()
        return data

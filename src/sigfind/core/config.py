"""
sigfind Configuration Module

Instance-based configuration for the discovery pipeline.  Every weight,
limit and denylist consumed by scoring, evaluation, traversal and
caching lives here; the algorithms never hardcode them.

The nested camelCase shape accepted by :meth:`DiscoveryConfig.from_dict`
mirrors the ``discovery.*`` section of a project config file.  Loading
that file is left to the caller.
"""

import copy
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

# =============================================================================
# Design constants (defaults)
# =============================================================================

DEFAULT_MAX_FILE_SIZE = 1024 * 1024  # 1 MiB safeguard
MAX_CACHED_MODULES = 100
MAX_CONCURRENCY = 64

DEFAULT_SCORING: Dict[str, Any] = {
    "paths": {
        "positive": {
            "/src/": 12,
            "/app/": 6,
            "/lib/": 4,
            "/core/": 4,
        },
        "negative": {
            "/__tests__/": -50,
            "/__mocks__/": -45,
            "/tests/": -40,
            "/test/": -35,
            "/spec/": -35,
            "/mock": -30,
            "/mocks/": -30,
            "/fake": -25,
            "/stub": -25,
            "/fixture": -15,
            "/fixtures/": -15,
            "/temp/": -15,
            "/tmp/": -15,
            "/sandbox/": -15,
            "/deprecated/": -20,
            "/broken": -60,
        },
    },
    "fileName": {
        "exactMatch": 45,
        "caseInsensitive": 30,
        "partialMatch": 8,
        "regexMatch": 12,
    },
    "extensions": {
        ".ts": 18,
        ".tsx": 18,
        ".py": 10,
        ".mjs": 6,
        ".cjs": 4,
        ".js": 0,
    },
    "typeHints": {
        "class": 15,
        "function": 12,
        "module": 10,
        "object": 8,
    },
    "methods": {"perMention": 3, "maxMentions": 5},
    "exports": {
        "moduleExports": 30,
        "namedExport": 30,
        "defaultExport": 30,
    },
    "names": {"perMention": 2, "maxMentions": 5},
    # Resolution-time bonuses, applied after structural validation.
    "target": {
        "exactName": 35,
        "methodPresence": 5,
        "propertyPresence": 3,
        "typeMatch": 10,
        "extendsMatch": 20,
        "instanceofMatch": 15,
        "namedExport": 10,
        "directExport": 5,
    },
    "recency": {"maxBonus": 0, "halfLifeHours": 6},
    "feedback": {"enabled": False, "acceptedBonus": 15, "rejectedPenalty": -15},
}

DEFAULT_BLOCKED_TOKENS: tuple = (
    # Node.js
    "process.exit(",
    "process.kill(",
    "child_process.exec",
    "child_process.spawn",
    "child_process.fork",
    "require('child_process')",
    'require("child_process")',
    "fs.rmSync",
    "fs.rmdirSync",
    "fs.unlinkSync",
    "fs.promises.rm",
    "rimraf",
    # Python
    "sys.exit(",
    "os._exit(",
    "os.kill(",
    "os.system(",
    "subprocess.",
    "shutil.rmtree(",
    "os.remove(",
    "os.unlink(",
)

DEFAULT_SKIP_DIRECTORIES: frozenset = frozenset((
    "node_modules", ".git", "coverage", "dist", "build", "target",
    "__tests__", "__pycache__", ".next", ".nuxt", "deps",
    ".venv", "venv", ".pytest_cache", ".mypy_cache", ".tox",
))

DEFAULT_LANGUAGES: Dict[str, Dict[str, Any]] = {
    "javascript": {
        "enabled": True,
        "extensions": [".js", ".mjs", ".cjs", ".jsx"],
        "skipPatterns": ["*.min.js", "*.bundle.js"],
        "parser": {"timeout": 3000, "maxFileSize": DEFAULT_MAX_FILE_SIZE},
    },
    "typescript": {
        "enabled": True,
        "extensions": [".ts", ".tsx"],
        "skipPatterns": ["*.d.ts"],
        "parser": {"timeout": 5000, "maxFileSize": DEFAULT_MAX_FILE_SIZE},
    },
    "python": {
        "enabled": True,
        "extensions": [".py"],
        "skipPatterns": ["conftest.py", "setup.py"],
        "parser": {"timeout": 5000, "maxFileSize": DEFAULT_MAX_FILE_SIZE},
    },
}


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of *base* with *override* merged in recursively."""
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


# =============================================================================
# Instance-Based Configuration
# =============================================================================

@dataclass
class DiscoveryConfig:
    """
    Instance-based configuration for sigfind.

    Each ``DiscoveryConfig`` is self-contained and is passed through the
    call stack; there is no global config object.

    Create from defaults::

        config = DiscoveryConfig()

    From the nested project-config shape::

        config = DiscoveryConfig.from_dict({"discovery": {"concurrency": 4}})

    Or from environment variables::

        config = DiscoveryConfig.from_env()
    """

    # ── Traversal ─────────────────────────────────────────────────
    extensions: tuple = (".js", ".mjs", ".cjs", ".jsx", ".ts", ".tsx", ".py")
    skip_directories: frozenset = DEFAULT_SKIP_DIRECTORIES
    max_depth: int = 10
    concurrency: int = 8

    # ── Scoring ───────────────────────────────────────────────────
    scoring: dict = field(default_factory=lambda: copy.deepcopy(DEFAULT_SCORING))
    min_candidate_score: float = -100.0
    allow_loose_name_match: bool = True
    loose_name_penalty: float = -25.0

    # ── Safety ────────────────────────────────────────────────────
    blocked_tokens: tuple = DEFAULT_BLOCKED_TOKENS
    allow_unsafe: bool = False

    # ── Languages / parsers ───────────────────────────────────────
    languages: dict = field(default_factory=lambda: copy.deepcopy(DEFAULT_LANGUAGES))
    parser_max_file_size: Optional[int] = None
    """Global fallback for ``languages.<lang>.parser.maxFileSize``."""

    # ── Cache ─────────────────────────────────────────────────────
    cache_enabled: bool = True
    cache_file: str = ".sigfind-cache.json"
    cache_ttl: int = 24 * 60 * 60
    """Persisted entry lifetime in seconds (<= 0 disables expiry)."""
    cache_memory_size: int = 100
    max_cached_modules: int = MAX_CACHED_MODULES

    # ── Diagnostics ───────────────────────────────────────────────
    max_near_misses: int = 3

    # ── Logging ───────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # ── Factories ─────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "DiscoveryConfig":
        """Build a config from the nested ``{"discovery": {...}}`` shape.

        Accepts either the full document or the ``discovery`` section
        itself.  Weight tables are deep-merged over the defaults so a
        partial override keeps the remaining design constants.
        """
        from sigfind.exceptions import ConfigError

        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigError(f"Config must be a mapping, got {type(data).__name__}")

        section = data.get("discovery", data)
        if not isinstance(section, Mapping):
            raise ConfigError("'discovery' section must be a mapping")

        kwargs: Dict[str, Any] = {}
        scoring = section.get("scoring") or {}
        security = section.get("security") or {}
        cache = section.get("cache") or {}
        parser = section.get("parser") or {}

        if scoring:
            weights = {k: v for k, v in scoring.items() if k not in _SCORING_SCALARS}
            kwargs["scoring"] = deep_merge(DEFAULT_SCORING, weights)
            if "minCandidateScore" in scoring:
                kwargs["min_candidate_score"] = scoring["minCandidateScore"]
            if "allowLooseNameMatch" in scoring:
                kwargs["allow_loose_name_match"] = bool(scoring["allowLooseNameMatch"])
            if "looseNamePenalty" in scoring:
                kwargs["loose_name_penalty"] = scoring["looseNamePenalty"]

        if "blockedTokens" in security:
            kwargs["blocked_tokens"] = tuple(security["blockedTokens"] or ())
        if "allowUnsafeRequires" in security or "allowUnsafe" in security:
            kwargs["allow_unsafe"] = bool(
                security.get("allowUnsafe", security.get("allowUnsafeRequires"))
            )

        if "languages" in section:
            kwargs["languages"] = deep_merge(DEFAULT_LANGUAGES, section["languages"] or {})
        if "maxFileSize" in parser:
            kwargs["parser_max_file_size"] = parser["maxFileSize"]

        if "enabled" in cache:
            kwargs["cache_enabled"] = bool(cache["enabled"])
        if "file" in cache:
            kwargs["cache_file"] = cache["file"]
        if "ttl" in cache:
            kwargs["cache_ttl"] = cache["ttl"]

        if "extensions" in section:
            kwargs["extensions"] = tuple(section["extensions"])
        if "skipDirectories" in section:
            kwargs["skip_directories"] = frozenset(section["skipDirectories"])
        if "maxDepth" in section:
            kwargs["max_depth"] = section["maxDepth"]
        if "concurrency" in section:
            kwargs["concurrency"] = section["concurrency"]

        config = cls(**kwargs)
        config.validate()
        return config

    @classmethod
    def from_env(cls) -> "DiscoveryConfig":
        """Build a config snapshot from current environment variables.

        Reads ``SIGFIND_CACHE`` (1/true/yes/on), ``SIGFIND_CACHE_FILE``,
        ``SIGFIND_CONCURRENCY``, ``SIGFIND_MIN_SCORE`` and
        ``SIGFIND_LOG_LEVEL``.

        Raises:
            ConfigError: A numeric variable does not parse.
        """
        from sigfind.exceptions import ConfigError

        cache_raw = os.getenv("SIGFIND_CACHE", "1").lower()
        concurrency_raw = os.getenv("SIGFIND_CONCURRENCY", "8")
        min_score_raw = os.getenv("SIGFIND_MIN_SCORE", "-100")
        try:
            concurrency = int(concurrency_raw)
        except ValueError:
            raise ConfigError(f"SIGFIND_CONCURRENCY must be an integer, got {concurrency_raw!r}") from None
        try:
            min_score = float(min_score_raw)
        except ValueError:
            raise ConfigError(f"SIGFIND_MIN_SCORE must be a number, got {min_score_raw!r}") from None
        return cls(
            cache_enabled=cache_raw in ("1", "true", "yes", "on"),
            cache_file=os.getenv("SIGFIND_CACHE_FILE", ".sigfind-cache.json"),
            concurrency=concurrency,
            min_candidate_score=min_score,
            log_level=os.getenv("SIGFIND_LOG_LEVEL", "INFO").upper(),
        )

    def replace(self, **changes) -> "DiscoveryConfig":
        """Return a copy with *changes* applied (unknown keys raise ``TypeError``)."""
        current = {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)}
        current.update(changes)
        return DiscoveryConfig(**current)

    # ── Validation & Accessors ────────────────────────────────────

    def validate(self) -> bool:
        """Check types and ranges. Raises :class:`~sigfind.exceptions.ConfigError`."""
        from sigfind.exceptions import ConfigError

        for name in ("min_candidate_score", "loose_name_penalty"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ConfigError(f"{name} must be a number, got {value!r}")
        if not isinstance(self.scoring, dict):
            raise ConfigError("scoring must be a mapping of weight tables")
        for table in ("fileName", "extensions", "typeHints", "exports", "target"):
            for key, weight in (self.scoring.get(table) or {}).items():
                if not isinstance(weight, (int, float)) or isinstance(weight, bool):
                    raise ConfigError(f"scoring.{table}.{key} must be a number, got {weight!r}")
        for polarity in ("positive", "negative"):
            for key, weight in (self.scoring.get("paths", {}).get(polarity) or {}).items():
                if not isinstance(weight, (int, float)) or isinstance(weight, bool):
                    raise ConfigError(f"scoring.paths.{polarity}.{key} must be a number")
        if not isinstance(self.cache_ttl, (int, float)):
            raise ConfigError(f"cache ttl must be a number of seconds, got {self.cache_ttl!r}")
        if not isinstance(self.max_depth, int) or self.max_depth < 0:
            raise ConfigError(f"maxDepth must be a non-negative integer, got {self.max_depth!r}")
        if not self.cache_file or not isinstance(self.cache_file, str):
            raise ConfigError("cache file name must be a non-empty string")
        return True

    def weights(self, table: str) -> Dict[str, Any]:
        """Return one scoring weight table (empty dict when missing)."""
        value = self.scoring.get(table)
        return value if isinstance(value, dict) else {}

    def language_for_extension(self, extension: str) -> Optional[str]:
        """Return the enabled language that claims *extension*, if any."""
        extension = extension.lower()
        for name, lang in self.languages.items():
            if not lang or lang.get("enabled") is False:
                continue
            if extension in (lang.get("extensions") or ()):
                return name
        return None

    def extensions_for_language(self, language: str | None) -> tuple:
        """Extensions to traverse, narrowed to *language* when given."""
        if language:
            lang = self.languages.get(language.lower())
            if lang and lang.get("enabled") is not False:
                return tuple(lang.get("extensions") or ())
            return ()
        return tuple(ext.lower() for ext in self.extensions)

    def skip_patterns_for(self, extension: str) -> List[str]:
        """Filename glob patterns excluded for the language owning *extension*."""
        language = self.language_for_extension(extension)
        if language is None:
            return []
        return list(self.languages[language].get("skipPatterns") or ())

    def cache_path(self, root: Path) -> Path:
        """Location of the persisted discovery cache for *root*."""
        path = Path(self.cache_file)
        return path if path.is_absolute() else Path(root) / path


_SCORING_SCALARS = frozenset({"minCandidateScore", "allowLooseNameMatch", "looseNamePenalty"})

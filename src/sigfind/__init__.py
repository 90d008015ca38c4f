"""
sigfind: find source entities by shape, not by path.

The ``sigfind`` package locates a class, function, object or module that
matches a structural *signature* (name, kind, methods, properties,
inheritance) so dependents keep working after the entity moves or is
renamed.

Quick start (programmatic API)::

    from sigfind import Sigfind

    client = Sigfind()
    result = client.discover(
        {"name": "Calculator", "type": "class", "methods": ["add", "subtract"]},
        root="./myproject",
    )
    print(result.relative_path, result.score_breakdown)

Quick start (CLI)::

    sigfind discover Calculator --type class --method add --root ./myproject
    sigfind why Calculator --root ./myproject

Configuration override::

    from sigfind import DiscoveryConfig, Sigfind

    config = DiscoveryConfig.from_dict({"discovery": {"concurrency": 4}})
    client = Sigfind(config=config)
"""

__version__ = "1.0.0"

# Primary public API: the Sigfind facade
from sigfind.client import Sigfind

# Configuration
from sigfind.core.config import DiscoveryConfig

# Engine and data types that callers interact with
from sigfind.core.engine import DiscoveryEngine, DiscoveryState
from sigfind.core.models import Candidate, DiscoveryResult, NearMiss
from sigfind.core.signature import Signature, normalize_signature

# Exception hierarchy
from sigfind.exceptions import (
    ConfigError,
    DiscoveryError,
    ExtractionError,
    SigfindError,
    SignatureError,
    TargetLoadError,
)


def health(config: DiscoveryConfig | None = None) -> dict:
    """
    Return a small status dict for agents or health checks (no file access).

    When *config* is None, uses :meth:`DiscoveryConfig.from_env()` for the snapshot.
    """
    cfg = config or DiscoveryConfig.from_env()
    return {
        "version": __version__,
        "cache_enabled": cfg.cache_enabled,
        "cache_file": cfg.cache_file,
        "concurrency": cfg.concurrency,
    }


__all__ = [
    "__version__",
    # Facade
    "Sigfind",
    # Config
    "DiscoveryConfig",
    # Engine & data types
    "DiscoveryEngine",
    "DiscoveryState",
    "DiscoveryResult",
    "Candidate",
    "NearMiss",
    "Signature",
    "normalize_signature",
    # Exceptions
    "SigfindError",
    "ConfigError",
    "SignatureError",
    "DiscoveryError",
    "ExtractionError",
    "TargetLoadError",
    # Status
    "health",
]

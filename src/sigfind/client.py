"""
sigfind Client Facade

Single entry point for programmatic use of sigfind.  Wraps discovery,
candidate inspection and cache management behind an instance-based API
with async variants.

Usage::

    from sigfind import Sigfind

    # From environment variables
    client = Sigfind()

    # With explicit configuration
    from sigfind.core.config import DiscoveryConfig
    client = Sigfind(config=DiscoveryConfig(concurrency=4))

    # Discover a target by shape
    result = client.discover(
        {"name": "Calculator", "type": "class", "methods": ["add"]},
        root="./myproject",
    )
    print(f"{result.relative_path} ({result.access.type})")

    # Async variant (inside an event loop)
    result = await client.adiscover("Calculator", root="./myproject")
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List

from sigfind.core.config import DiscoveryConfig
from sigfind.core.engine import DiscoveryEngine, SignatureInput
from sigfind.core.models import Candidate, DiscoveryResult

logger = logging.getLogger(__name__)


class Sigfind:
    """
    High-level sigfind client.

    Each instance carries its own :class:`DiscoveryConfig` and keeps one
    :class:`DiscoveryEngine` per resolved root, so repeated calls share
    the in-memory cache.  Nothing is registered globally.

    Args:
        config: Explicit configuration object.  When *None*, a config
            is built from environment variables plus keyword overrides.
        **kwargs: Forwarded to :class:`DiscoveryConfig` when *config* is
            ``None`` (e.g. ``concurrency=4``).
    """

    def __init__(self, config: DiscoveryConfig | None = None, **kwargs):
        if config is not None:
            self._config = config
        elif kwargs:
            self._config = DiscoveryConfig.from_env().replace(**kwargs)
        else:
            self._config = DiscoveryConfig.from_env()
        self._config.validate()

        self._engines: Dict[Path, DiscoveryEngine] = {}

    # ── Configuration ─────────────────────────────────────────────

    @property
    def config(self) -> DiscoveryConfig:
        """The active configuration for this client."""
        return self._config

    def engine(self, root: str | Path = ".") -> DiscoveryEngine:
        """Return the (cached) engine for *root*."""
        key = Path(root).resolve()
        if key not in self._engines:
            self._engines[key] = DiscoveryEngine(key, config=self._config)
        return self._engines[key]

    # ── Discovery ─────────────────────────────────────────────────

    def discover(self, signature: SignatureInput, *, root: str | Path = ".",
                 use_cache: bool = True) -> DiscoveryResult:
        """
        Locate the entity described by *signature* under *root*.

        Args:
            signature: Signature mapping, :class:`Signature`, or a bare name.
            root: Project root to search.
            use_cache: Consult the discovery cache before traversing.

        Raises:
            SignatureError: If the signature is malformed.
            DiscoveryError: If no candidate validates; carries near misses.
        """
        return self.engine(root).discover(signature, use_cache=use_cache)

    def candidates(self, signature: SignatureInput, *, root: str | Path = ".",
                   limit: int | None = 10) -> List[Candidate]:
        """
        Ranked candidates with score breakdowns, unsafe ones included.

        Check :attr:`Candidate.safe` to see which would be excluded from
        resolution.
        """
        return asyncio.run(self.acandidates(signature, root=root, limit=limit))

    def load(self, result: DiscoveryResult, *, root: str | Path = ".") -> Any:
        """Import a discovered Python target and return the exported object."""
        return self.engine(root).load_target(result)

    def feedback(self, signature: SignatureInput, path: str, *, accepted: bool = True,
                 root: str | Path = ".") -> None:
        """Record whether *path* was the right answer for *signature*."""
        self.engine(root).record_feedback(signature, path, accepted=accepted)

    def clear_cache(self, root: str | Path = ".") -> None:
        """Reset the memory cache, persisted cache file and loaded modules."""
        self.engine(root).clear_cache()

    # ── Async variants ────────────────────────────────────────────

    async def adiscover(self, signature: SignatureInput, *, root: str | Path = ".",
                        use_cache: bool = True) -> DiscoveryResult:
        """Async variant of :meth:`discover`. Raises same exceptions as sync."""
        return await self.engine(root).discover_target(signature, use_cache=use_cache)

    async def acandidates(self, signature: SignatureInput, *, root: str | Path = ".",
                          limit: int | None = 10) -> List[Candidate]:
        """Async variant of :meth:`candidates`."""
        engine = self.engine(root)
        found = await engine.collect_candidates(signature, include_unsafe=True)
        ranked = engine.rank_candidates(found)
        return ranked if limit is None else ranked[:limit]

    # ── Health (for agents / status endpoints) ─────────────────────

    def health(self) -> Dict[str, object]:
        """
        Return a small status dict for agents or health checks.

        Touches no files.  Reports the version, cache settings and the
        engines this client currently holds.
        """
        return {
            "version": __import__("sigfind", fromlist=["__version__"]).__version__,
            "cache_enabled": self._config.cache_enabled,
            "cache_file": self._config.cache_file,
            "concurrency": self._config.concurrency,
            "roots": [str(root) for root in self._engines],
        }

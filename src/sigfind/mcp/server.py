"""
sigfind MCP Server

Exposes signature-based discovery as tools that AI agents can invoke
natively via the Model Context Protocol.

Start with::

    sigfind mcp                     # stdio transport (default)
    sigfind mcp --transport sse     # SSE transport

Or programmatically::

    from sigfind.mcp.server import create_server
    server = create_server()
    server.run()
"""

from __future__ import annotations

import json
import logging
import os
from typing import Annotated, Any

# FastMCP validates tool arguments with pydantic
from pydantic import Field  # type: ignore[import-untyped]

from sigfind.client import Sigfind
from sigfind.core.config import DiscoveryConfig
from sigfind.core.report import ResultFormatter
from sigfind.exceptions import DiscoveryError, SigfindError

logger = logging.getLogger(__name__)


def _build_signature(
    name: str | None,
    type: str | None,
    exports: str | None,
    methods: Any,
    properties: Any,
    extends: str | None,
    language: str | None,
) -> dict:
    """Assemble a signature dict, tolerating a string where a list is expected."""
    def _as_list(value: Any) -> list[str] | None:
        if value is None:
            return None
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()] or None
        if isinstance(value, (list, tuple)):
            return [str(v).strip() for v in value if str(v).strip()] or None
        return None

    signature = {
        "name": name,
        "type": type,
        "exports": exports,
        "methods": _as_list(methods),
        "properties": _as_list(properties),
        "extends": extends,
        "language": language,
    }
    return {k: v for k, v in signature.items() if v not in (None, "")}


def create_server(config: DiscoveryConfig | None = None):
    """
    Build and return a configured FastMCP server instance.

    One :class:`~sigfind.client.Sigfind` client backs every tool call, so
    engines (and their in-memory caches) are shared across calls for the
    same root.

    Args:
        config: Instance-based configuration.  Defaults to
            ``DiscoveryConfig.from_env()`` so the server respects the
            same environment variables as the CLI.

    Raises ``ImportError`` if ``fastmcp`` is not installed (install via
    ``pip install 'sigfind[mcp]'``).
    """
    from fastmcp import FastMCP  # type: ignore[import-untyped]

    cfg = config or DiscoveryConfig.from_env()
    client = Sigfind(config=cfg)

    mcp = FastMCP("sigfind")

    def _resolve_root(root: str) -> str:
        """When root is '.', use SIGFIND_DEFAULT_ROOT if set (e.g. a mounted volume)."""
        if root == ".":
            default = os.environ.get("SIGFIND_DEFAULT_ROOT", "").strip()
            if default:
                return default
        return root

    # ==================================================================
    # Tool: discover_target
    # ==================================================================

    @mcp.tool()
    async def discover_target(
        name: Annotated[
            str | None,
            Field(default=None, description="Target name, e.g. 'Calculator'. Use '/regex/flags' for a pattern such as '/calc/i'.")
        ] = None,
        type: Annotated[
            str | None,
            Field(default=None, description="Kind of entity: 'class', 'function', 'object' or 'module'.")
        ] = None,
        exports: Annotated[
            str | None,
            Field(default=None, description="Required export name when it differs from the entity name.")
        ] = None,
        methods: Annotated[
            list[str] | None,
            Field(default=None, description="Methods the entity must define, e.g. ['add', 'subtract'].")
        ] = None,
        properties: Annotated[
            list[str] | None,
            Field(default=None, description="Properties the entity must define.")
        ] = None,
        extends: Annotated[
            str | None,
            Field(default=None, description="Required base class name.")
        ] = None,
        language: Annotated[
            str | None,
            Field(default=None, description="Restrict to one language: 'python', 'javascript' or 'typescript'.")
        ] = None,
        root: Annotated[
            str,
            Field(default=".", description="Project root to search. Defaults to the current working directory.")
        ] = ".",
        use_cache: Annotated[
            bool,
            Field(default=True, description="Consult the discovery cache first. Set False after moving files.")
        ] = True,
    ) -> str:
        """Find the file that defines a class, function or object by its shape.

        Use this instead of grepping when you know what an entity looks
        like (name, kind, methods) but not where it lives, or when it may
        have been moved or renamed.

        Returns:
            JSON with path, access descriptor, score and score breakdown;
            on failure, JSON with near misses and a suggested signature.
        """
        signature = _build_signature(name, type, exports, methods, properties, extends, language)
        try:
            result = await client.adiscover(signature, root=_resolve_root(root), use_cache=use_cache)
            return ResultFormatter.format_json(result)
        except DiscoveryError as e:
            return ResultFormatter.format_json(e)
        except SigfindError as e:
            return json.dumps({"error": str(e)})

    # ==================================================================
    # Tool: list_candidates
    # ==================================================================

    @mcp.tool()
    async def list_candidates(
        name: Annotated[
            str | None,
            Field(default=None, description="Target name or '/regex/flags' pattern.")
        ] = None,
        type: Annotated[
            str | None,
            Field(default=None, description="Kind of entity: 'class', 'function', 'object' or 'module'.")
        ] = None,
        methods: Annotated[
            list[str] | None,
            Field(default=None, description="Methods the entity should define.")
        ] = None,
        root: Annotated[
            str,
            Field(default=".", description="Project root to search.")
        ] = ".",
        limit: Annotated[
            int,
            Field(default=10, description="Maximum number of ranked candidates to return.")
        ] = 10,
    ) -> str:
        """List ranked candidate files for a signature with score breakdowns.

        Useful to understand why discovery picked (or missed) a file.
        Unsafe candidates are included and flagged with ``"safe": false``.
        """
        signature = _build_signature(name, type, None, methods, None, None, None)
        try:
            candidates = await client.acandidates(signature, root=_resolve_root(root), limit=max(1, limit))
            return ResultFormatter.format_json(candidates)
        except SigfindError as e:
            return json.dumps({"error": str(e), "candidates": []})

    # ==================================================================
    # Tool: clear_cache
    # ==================================================================

    @mcp.tool()
    def clear_cache(
        root: Annotated[
            str,
            Field(default=".", description="Project root whose discovery cache to clear.")
        ] = ".",
    ) -> str:
        """Drop the in-memory and persisted discovery cache for a root."""
        resolved = _resolve_root(root)
        client.clear_cache(resolved)
        return json.dumps({"status": "cleared", "root": resolved})

    # ==================================================================
    # Tool: health (readiness check)
    # ==================================================================

    @mcp.tool()
    def health() -> str:
        """Check that the sigfind MCP server is running and responsive."""
        return json.dumps({"status": "ok", **client.health()})

    # ==================================================================
    # Prompt templates
    # ==================================================================

    @mcp.prompt()
    def locate_entity(name: str, root: str = ".") -> str:
        """Pre-built prompt: locate an entity and explain the choice."""
        return (
            f"Call discover_target with name='{name}' and root='{root}'. "
            "If it fails, call list_candidates with the same arguments and "
            "retry with the suggested signature from the error."
        )

    return mcp

"""
sigfind CLI

Command-line interface for signature-based discovery.

Usage::

    sigfind discover Calculator --type class -m add -m subtract
    sigfind discover --signature '{"name": "/calc/i", "type": "class"}'
    sigfind why Calculator               # ranked candidates with breakdowns
    sigfind doctor Calculator            # diagnose a failing signature
    sigfind clear-cache                  # drop the discovery cache
    sigfind mcp                          # start the MCP server
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

import click

from sigfind.client import Sigfind
from sigfind.core.config import DiscoveryConfig
from sigfind.core.report import ResultFormatter
from sigfind.exceptions import ConfigError, DiscoveryError, SignatureError


# ---------------------------------------------------------------------------
# Logging helpers
# ---------------------------------------------------------------------------

def _configure_logging(verbose: bool, config: DiscoveryConfig | None = None) -> None:
    """Set up logging for the CLI session."""
    cfg = config or DiscoveryConfig.from_env()
    level = logging.DEBUG if verbose else getattr(logging, cfg.log_level, logging.INFO)
    logging.basicConfig(level=level, format=cfg.log_format)


# ---------------------------------------------------------------------------
# Shared options
# ---------------------------------------------------------------------------

def _signature_options(func):
    """Options describing a signature, shared by discover/why/doctor."""
    options = [
        click.argument("name", required=False),
        click.option("--signature", "signature_json", default=None,
                     help="Full signature as JSON (fields override NAME and flags)."),
        click.option("-t", "--type", "target_type",
                     type=click.Choice(["class", "function", "object", "module"]),
                     default=None, help="Kind of entity."),
        click.option("-e", "--exports", default=None, help="Required export name."),
        click.option("-m", "--method", "methods", multiple=True, help="Required method (repeatable)."),
        click.option("-p", "--property", "properties", multiple=True,
                     help="Required property (repeatable)."),
        click.option("--extends", default=None, help="Required base class."),
        click.option("--language", default=None, help="Restrict to one language."),
        click.option("-r", "--root", default=".", type=click.Path(exists=True, file_okay=False),
                     help="Project root to search (default: current directory)."),
        click.option("-c", "--config", "config_path", default=None,
                     type=click.Path(exists=True, dir_okay=False),
                     help="JSON file with a 'discovery' section."),
        click.option("-f", "--format", "fmt", type=click.Choice(["console", "json"]),
                     default="console", help="Output format."),
        click.option("-v", "--verbose", is_flag=True, help="Enable debug logging."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_signature(name, signature_json, target_type, exports, methods,
                     properties, extends, language) -> Dict[str, Any]:
    signature: Dict[str, Any] = {}
    if name:
        signature["name"] = name
    if target_type:
        signature["type"] = target_type
    if exports:
        signature["exports"] = exports
    if methods:
        signature["methods"] = list(methods)
    if properties:
        signature["properties"] = list(properties)
    if extends:
        signature["extends"] = extends
    if language:
        signature["language"] = language
    if signature_json:
        try:
            extra = json.loads(signature_json)
        except json.JSONDecodeError as exc:
            raise click.BadParameter(f"invalid JSON: {exc}", param_hint="--signature")
        if not isinstance(extra, dict):
            raise click.BadParameter("must be a JSON object", param_hint="--signature")
        signature.update(extra)
    if not signature:
        raise click.UsageError("Provide a NAME or --signature.")
    return signature


def _load_config(config_path: Optional[str], no_cache: bool = False) -> DiscoveryConfig:
    try:
        if config_path:
            data = json.loads(Path(config_path).read_text(encoding="utf-8"))
            config = DiscoveryConfig.from_dict(data)
        else:
            config = DiscoveryConfig.from_env()
        if no_cache:
            config = config.replace(cache_enabled=False)
        config.validate()
    except (OSError, json.JSONDecodeError, ConfigError) as exc:
        click.echo(f"Error: invalid configuration: {exc}", err=True)
        raise SystemExit(2)
    return config


# ---------------------------------------------------------------------------
# Top-level group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(package_name="sigfind")
@click.pass_context
def cli(ctx: click.Context):
    """sigfind — find source entities by shape, not by path."""
    ctx.ensure_object(dict)


# ---------------------------------------------------------------------------
# sigfind discover
# ---------------------------------------------------------------------------

@cli.command()
@_signature_options
@click.option("--no-cache", is_flag=True, help="Ignore the persisted discovery cache.")
def discover(name, signature_json, target_type, exports, methods, properties, extends,
             language, root, config_path, fmt, verbose, no_cache):
    """Discover the entity matching NAME (plus flags) under --root."""
    config = _load_config(config_path, no_cache)
    _configure_logging(verbose, config)
    signature = _build_signature(name, signature_json, target_type, exports, methods,
                                 properties, extends, language)
    client = Sigfind(config=config)
    formatter = ResultFormatter()

    t0 = time.perf_counter()
    try:
        result = client.discover(signature, root=root, use_cache=not no_cache)
    except SignatureError as exc:
        click.echo(f"Error: invalid signature: {exc}", err=True)
        raise SystemExit(2)
    except DiscoveryError as exc:
        if fmt == "json":
            click.echo(formatter.format_json(exc))
        else:
            click.echo(formatter.format_error(exc), err=True)
        raise SystemExit(1)
    elapsed = time.perf_counter() - t0

    if fmt == "json":
        click.echo(formatter.format_json(result))
    else:
        click.echo(formatter.format_result(result, elapsed_time=elapsed))


# ---------------------------------------------------------------------------
# sigfind why
# ---------------------------------------------------------------------------

@cli.command()
@_signature_options
@click.option("-n", "--limit", type=int, default=10, help="Number of candidates to show.")
def why(name, signature_json, target_type, exports, methods, properties, extends,
        language, root, config_path, fmt, verbose, limit):
    """Show ranked candidates for a signature with their score breakdowns."""
    config = _load_config(config_path)
    _configure_logging(verbose, config)
    signature = _build_signature(name, signature_json, target_type, exports, methods,
                                 properties, extends, language)
    formatter = ResultFormatter()
    try:
        candidates = Sigfind(config=config).candidates(signature, root=root, limit=limit)
    except SignatureError as exc:
        click.echo(f"Error: invalid signature: {exc}", err=True)
        raise SystemExit(2)

    if fmt == "json":
        click.echo(formatter.format_json(candidates))
    else:
        click.echo(formatter.format_candidates(candidates))


# ---------------------------------------------------------------------------
# sigfind doctor
# ---------------------------------------------------------------------------

@cli.command()
@_signature_options
def doctor(name, signature_json, target_type, exports, methods, properties, extends,
           language, root, config_path, fmt, verbose):
    """Run a fresh discovery and explain why a signature does or does not resolve."""
    config = _load_config(config_path, no_cache=True)
    _configure_logging(verbose, config)
    signature = _build_signature(name, signature_json, target_type, exports, methods,
                                 properties, extends, language)
    client = Sigfind(config=config)
    formatter = ResultFormatter()

    try:
        result = client.discover(signature, root=root, use_cache=False)
    except SignatureError as exc:
        click.echo(f"Error: invalid signature: {exc}", err=True)
        raise SystemExit(2)
    except DiscoveryError as exc:
        click.echo(formatter.format_json(exc) if fmt == "json" else formatter.format_error(exc))
        raise SystemExit(1)

    stats = client.engine(root).stats.to_dict()
    if fmt == "json":
        click.echo(formatter.format_json({"result": result.to_dict(), "stats": stats}))
        return
    click.echo(formatter.format_result(result))
    click.echo(
        f"  Visited {stats['files_visited']} files, evaluated {stats['files_evaluated']}, "
        f"{stats['candidates']} candidates ({stats['unsafe']} unsafe)"
    )


# ---------------------------------------------------------------------------
# sigfind clear-cache
# ---------------------------------------------------------------------------

@cli.command(name="clear-cache")
@click.option("-r", "--root", default=".", type=click.Path(exists=True, file_okay=False),
              help="Project root whose cache to clear.")
@click.option("-c", "--config", "config_path", default=None,
              type=click.Path(exists=True, dir_okay=False),
              help="JSON file with a 'discovery' section.")
def clear_cache(root: str, config_path: Optional[str]):
    """Delete the discovery cache for --root."""
    config = _load_config(config_path)
    Sigfind(config=config).clear_cache(root)
    click.echo(f"Cleared {config.cache_path(Path(root).resolve())}")


# ---------------------------------------------------------------------------
# sigfind mcp
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--transport", type=click.Choice(["stdio", "sse"]),
              default="stdio", help="MCP transport (default: stdio).")
@click.option("-v", "--verbose", is_flag=True)
def mcp(transport: str, verbose: bool):
    """Start the sigfind MCP server for editor / agent integration."""
    _configure_logging(verbose)
    try:
        from sigfind.mcp.server import create_server  # noqa: E402
    except ImportError:
        click.echo(
            "Error: MCP dependencies not installed.\n"
            "Install with:  pip install 'sigfind[mcp]'",
            err=True,
        )
        raise SystemExit(1)

    server = create_server()
    server.run(transport=transport)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()

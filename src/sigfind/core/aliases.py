"""
TypeScript / JavaScript path-alias annotations.

Reads ``compilerOptions.baseUrl`` and ``compilerOptions.paths`` from a
project's ``tsconfig.json`` (or ``jsconfig.json``) and maps candidate
files back to the import specifiers that would reach them.
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

CONFIG_NAMES = ("tsconfig.json", "jsconfig.json")
_JSONC_COMMENTS = re.compile(r'("(?:\\.|[^"\\])*")|/\*.*?\*/|//[^\n]*', re.DOTALL)
_TRAILING_COMMAS = re.compile(r",\s*([}\]])")


def _load_jsonc(text: str) -> dict:
    """Parse tsconfig-style JSON (comments and trailing commas allowed)."""
    stripped = _JSONC_COMMENTS.sub(lambda m: m.group(1) or "", text)
    return json.loads(_TRAILING_COMMAS.sub(r"\1", stripped))


def _strip_extension(path: str) -> str:
    base, ext = os.path.splitext(path)
    if base.endswith(".d"):
        base = base[:-2]
    return base


@dataclass
class AliasEntry:
    alias_prefix: str
    alias_wildcard: bool
    target_prefix: str
    """Absolute, posix, extension-less target (prefix when wildcarded)."""
    target_wildcard: bool


class TSConfigAliasResolver:
    """Alias and baseUrl annotations for files under one project root."""

    def __init__(self, config_path: Path, base_url: Path, paths: Dict[str, List[str]]):
        self.config_path = config_path
        self.base_url = base_url
        self.paths = paths
        self.entries: List[AliasEntry] = []
        for alias, targets in paths.items():
            for target in targets or []:
                if not isinstance(target, str):
                    continue
                target_abs = (base_url / target.replace("*", "")).as_posix()
                if target.endswith("/*") or target == "*":
                    target_abs = target_abs.rstrip("/") + "/"
                self.entries.append(AliasEntry(
                    alias_prefix=alias.replace("*", ""),
                    alias_wildcard="*" in alias,
                    target_prefix=_strip_extension(target_abs) if "*" not in target else target_abs,
                    target_wildcard="*" in target,
                ))

    @classmethod
    def from_root(cls, root: str | os.PathLike) -> Optional["TSConfigAliasResolver"]:
        """Resolver for *root*, or ``None`` when no usable config exists."""
        root = Path(root).resolve()
        for name in CONFIG_NAMES:
            config_path = root / name
            if not config_path.is_file():
                continue
            try:
                data = _load_jsonc(config_path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, ValueError) as e:
                logger.debug(f"Ignoring unreadable {config_path}: {e}")
                return None
            options = data.get("compilerOptions") if isinstance(data, dict) else None
            if not isinstance(options, dict):
                return None
            base_url = (root / options.get("baseUrl", ".")).resolve()
            paths = options.get("paths") if isinstance(options.get("paths"), dict) else {}
            return cls(config_path, base_url, paths)
        return None

    # ── Public API ────────────────────────────────────────────────

    def aliases_for(self, path: str | os.PathLike) -> List[str]:
        """Alias specifiers that resolve to *path*."""
        target = _strip_extension(Path(path).resolve().as_posix())
        aliases: List[str] = []
        for entry in self.entries:
            if entry.target_wildcard:
                if not target.startswith(entry.target_prefix):
                    continue
                remainder = target[len(entry.target_prefix):]
                alias = entry.alias_prefix + remainder if entry.alias_wildcard else entry.alias_prefix
            elif target == entry.target_prefix:
                alias = entry.alias_prefix
            else:
                continue
            if alias and alias not in aliases:
                aliases.append(alias)
        return aliases

    def base_url_import(self, path: str | os.PathLike) -> Optional[str]:
        """Non-relative specifier for *path* under ``baseUrl`` (``None`` outside it)."""
        try:
            relative = Path(path).resolve().relative_to(self.base_url)
        except ValueError:
            return None
        return _strip_extension(relative.as_posix())

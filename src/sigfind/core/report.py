"""
sigfind Result Formatting

Console and JSON renderings of discovery results, ranked candidates
and exhaustion diagnostics, shared by the CLI and the MCP server.
"""

import json
import shutil
from typing import Any, Dict, List, Optional

from sigfind.core.models import Candidate, DiscoveryResult
from sigfind.exceptions import DiscoveryError


def _format_breakdown(breakdown: Dict[str, float]) -> str:
    parts = []
    for factor, points in breakdown.items():
        if points:
            parts.append(f"{factor}({points:+g})")
    return " ".join(parts) if parts else "(none)"


def candidate_to_dict(candidate: Candidate) -> dict:
    """JSON-friendly view of a candidate (content omitted)."""
    data: Dict[str, Any] = {
        "path": candidate.path,
        "relative_path": candidate.relative_path,
        "score": candidate.score,
        "score_breakdown": dict(candidate.score_breakdown),
        "quick_name_matched": candidate.quick_name_matched,
        "safe": candidate.safe,
        "exports": candidate.metadata.to_dict()["exports"] if candidate.metadata else None,
    }
    if candidate.aliases:
        data["aliases"] = list(candidate.aliases)
    if candidate.base_import:
        data["base_import"] = candidate.base_import
    return data


def error_to_dict(error: DiscoveryError) -> dict:
    return {
        "error": str(error).splitlines()[0] if str(error) else "discovery failed",
        "signature": error.signature,
        "near_misses": [miss.to_dict() for miss in error.near_misses],
        "suggested_signature": error.suggested_signature,
    }


class ResultFormatter:
    """Format discovery output for different modes."""

    @staticmethod
    def _rule() -> str:
        return "─" * min(shutil.get_terminal_size().columns, 78)

    # ── Console (human-friendly) ──────────────────────────────────

    @staticmethod
    def format_result(result: DiscoveryResult, elapsed_time: float | None = None) -> str:
        thin = ResultFormatter._rule()
        header = "  SIGFIND — resolved"
        if elapsed_time is not None:
            header += f" in {elapsed_time:.4f} seconds"
        access = result.access.type + (f" '{result.access.name}'" if result.access.name else "")
        out = [f"\n{thin}", header, thin, ""]
        out.append(f"    File   : {result.path}")
        if result.kind:
            out.append(f"    Kind   : {result.kind}")
        out.append(f"    Access : {access}")
        out.append(f"    Score  : {result.score:.1f}" + ("  (cached)" if result.from_cache else ""))
        if result.score_breakdown:
            out.append(f"    Explain: {_format_breakdown(result.score_breakdown)}")
        out.append(f"\n{thin}")
        return "\n".join(out)

    @staticmethod
    def format_candidates(candidates: List[Candidate]) -> str:
        if not candidates:
            return "\n  No candidates found.\n"
        thin = ResultFormatter._rule()
        total = len(candidates)
        out = [f"\n{thin}", f"  SIGFIND — {total} candidate{'s' if total != 1 else ''}", thin]
        for idx, candidate in enumerate(candidates, start=1):
            flags = []
            if not candidate.safe:
                flags.append("UNSAFE")
            if not candidate.quick_name_matched:
                flags.append("loose name")
            if candidate.metadata is None:
                flags.append("no metadata")
            suffix = f"  [{', '.join(flags)}]" if flags else ""
            out.append("")
            out.append(f"  #{idx}  {candidate.relative_path}{suffix}")
            out.append(f"    Score  : {candidate.score:.1f}")
            out.append(f"    Explain: {_format_breakdown(candidate.score_breakdown)}")
            if candidate.aliases:
                out.append(f"    Aliases: {', '.join(candidate.aliases)}")
        out.append(f"\n{thin}")
        return "\n".join(out)

    @staticmethod
    def format_error(error: DiscoveryError) -> str:
        thin = ResultFormatter._rule()
        out = [f"\n{thin}", "  SIGFIND — no target resolved", thin, ""]
        out.append(f"    Signature: {json.dumps(error.signature)}")
        if error.near_misses:
            out.append("")
            out.append("    Near misses:")
            for idx, miss in enumerate(error.near_misses, start=1):
                out.append(f"      #{idx} {miss.path}  (score {miss.score:.1f})")
                out.append(f"         {miss.reason}")
        else:
            out.append("    No candidate survived the name, size, score and safety filters.")
        if error.suggested_signature:
            out.append("")
            out.append(f"    Try: {json.dumps(error.suggested_signature)}")
        out.append(f"\n{thin}")
        return "\n".join(out)

    # ── JSON ──────────────────────────────────────────────────────

    @staticmethod
    def format_json(payload: Any, indent: Optional[int] = 2) -> str:
        """Serialize results, candidates or errors as JSON."""
        if isinstance(payload, DiscoveryResult):
            payload = payload.to_dict()
        elif isinstance(payload, DiscoveryError):
            payload = error_to_dict(payload)
        elif isinstance(payload, list):
            payload = [candidate_to_dict(c) if isinstance(c, Candidate) else c for c in payload]
        return json.dumps(payload, indent=indent, default=str)

"""
sigfind Exception Hierarchy

Structured exceptions for clear error handling across the CLI, the
client facade, and MCP consumers.  Only :class:`SignatureError` and
:class:`DiscoveryError` ever escape ``discover_target``; the others are
raised by collaborators and absorbed inside the discovery pipeline.

Usage::

    from sigfind.exceptions import DiscoveryError, SigfindError

    try:
        result = client.discover({"name": "Calculator", "type": "class"})
    except DiscoveryError as exc:
        print(exc.suggested_signature)
    except SigfindError as exc:
        print(f"sigfind error: {exc}")
"""


class SigfindError(Exception):
    """Base exception for all sigfind errors."""


class ConfigError(SigfindError, ValueError):
    """Configuration is invalid (e.g. a non-numeric weight)."""


class SignatureError(SigfindError, ValueError):
    """The signature handed to discovery is malformed or empty."""


class ExtractionError(SigfindError):
    """A metadata extractor failed or timed out for one file."""


class TargetLoadError(SigfindError, ImportError):
    """A candidate could not be loaded into a structural handle."""


class DiscoveryError(SigfindError, LookupError):
    """No candidate passed safety and structural validation.

    Carries the ranked near misses and a signature synthesised from the
    best candidate's metadata so callers can correct their query.
    """

    def __init__(self, message: str, signature=None, near_misses=None,
                 suggested_signature: dict | None = None):
        super().__init__(message)
        self.signature = signature
        self.near_misses = list(near_misses or [])
        self.suggested_signature = suggested_signature

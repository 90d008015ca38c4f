"""
Signature normalization and cache keys.

A signature is the structural query handed to discovery.  It is
normalized exactly once per ``discover_target`` call; everything
downstream works with the frozen :class:`Signature` value.
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from sigfind.exceptions import SignatureError

TARGET_TYPES = frozenset({"class", "function", "object", "module"})

_KNOWN_FIELDS = frozenset({
    "name", "type", "exports", "methods", "properties",
    "extends", "instanceof", "language",
})

# "/source/flags" form used by JSON callers (CLI, MCP) to pass a pattern name
_PATTERN_LITERAL = re.compile(r"^/(.+)/([ims]*)$", re.DOTALL)
_FLAG_BITS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}

NamePattern = Union[str, "re.Pattern[str]"]


@dataclass(frozen=True)
class Signature:
    """Normalized structural description of the entity to discover."""
    name: Optional[NamePattern] = None
    type: Optional[str] = None
    exports: Optional[str] = None
    methods: Tuple[str, ...] = ()
    properties: Tuple[str, ...] = ()
    extends: Optional[str] = None
    instanceof: Optional[str] = None
    language: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    """Unknown fields, passed through untouched to custom scorers."""

    @property
    def name_is_pattern(self) -> bool:
        return isinstance(self.name, re.Pattern)

    @property
    def target_name(self) -> Optional[str]:
        """The literal name to look for (``name`` if a string, else ``exports``)."""
        if isinstance(self.name, str):
            return self.name
        return self.exports

    def to_dict(self) -> dict:
        """Return a JSON-serializable dict (patterns as ``/source/flags``)."""
        data: Dict[str, Any] = {}
        if self.name is not None:
            data["name"] = pattern_to_literal(self.name) if self.name_is_pattern else self.name
        for key in ("type", "exports", "extends", "instanceof", "language"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.methods:
            data["methods"] = list(self.methods)
        if self.properties:
            data["properties"] = list(self.properties)
        return data

    def cache_key(self, root: Optional[str] = None) -> str:
        """
        Stable hash of the normalized signature (extra fields excluded).

        With *root*, the search root is part of the key so roots sharing
        one cache file never see each other's winners.
        """
        payload: Dict[str, Any] = self.to_dict()
        if root is not None:
            payload = {"root": str(root), "signature": payload}
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def pattern_to_literal(pattern: "re.Pattern[str]") -> str:
    """Serialize a compiled pattern as ``/source/flags``."""
    flags = "".join(ch for ch, bit in _FLAG_BITS.items() if pattern.flags & bit)
    return f"/{pattern.pattern}/{flags}"


def _clean_str(value: Any, field_name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise SignatureError(f"Signature field '{field_name}' must be a string, got {type(value).__name__}")
    value = value.strip()
    return value or None


def _clean_list(value: Any, field_name: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise SignatureError(f"Signature field '{field_name}' must be a list of strings")
    cleaned = []
    for item in value:
        if not isinstance(item, str):
            raise SignatureError(
                f"Signature field '{field_name}' must contain only strings, got {item!r}"
            )
        item = item.strip()
        if item and item not in cleaned:
            cleaned.append(item)
    return tuple(cleaned)


def _clean_name(value: Any) -> Optional[NamePattern]:
    if isinstance(value, re.Pattern):
        return value
    name = _clean_str(value, "name")
    if name is None:
        return None
    match = _PATTERN_LITERAL.match(name)
    if match:
        flags = 0
        for ch in match.group(2):
            flags |= _FLAG_BITS[ch]
        try:
            return re.compile(match.group(1), flags)
        except re.error as exc:
            raise SignatureError(f"Invalid name pattern {name!r}: {exc}") from exc
    return name


def normalize_signature(value: Union[Signature, Mapping[str, Any], str]) -> Signature:
    """
    Normalize user input into a :class:`Signature`.

    Accepts an existing ``Signature`` (re-validated), a mapping in the JSON
    signature shape, or a bare string treated as the target name.

    Raises:
        SignatureError: For malformed fields, an unknown ``type``, or a
            signature that constrains nothing.
    """
    if isinstance(value, Signature):
        value = {**value.to_dict(), "name": value.name, **value.extra}
    elif isinstance(value, str):
        value = {"name": value}
    elif not isinstance(value, Mapping):
        raise SignatureError(
            f"Signature must be a mapping or a name string, got {type(value).__name__}"
        )

    target_type = _clean_str(value.get("type"), "type")
    if target_type is not None:
        target_type = target_type.lower()
        if target_type not in TARGET_TYPES:
            raise SignatureError(
                f"Unknown signature type '{target_type}'. "
                f"Supported: {', '.join(sorted(TARGET_TYPES))}"
            )

    language = _clean_str(value.get("language"), "language")
    signature = Signature(
        name=_clean_name(value.get("name")),
        type=target_type,
        exports=_clean_str(value.get("exports"), "exports"),
        methods=_clean_list(value.get("methods"), "methods"),
        properties=_clean_list(value.get("properties"), "properties"),
        extends=_clean_str(value.get("extends"), "extends"),
        instanceof=_clean_str(value.get("instanceof"), "instanceof"),
        language=language.lower() if language else None,
        extra={k: v for k, v in value.items() if k not in _KNOWN_FIELDS},
    )

    if not any((signature.name, signature.type, signature.exports, signature.methods,
                signature.properties, signature.extends, signature.instanceof)):
        raise SignatureError(
            "Signature must constrain at least one of: name, type, exports, "
            "methods, properties, extends, instanceof"
        )
    return signature

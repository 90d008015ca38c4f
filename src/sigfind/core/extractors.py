"""
sigfind Metadata Extractors

Static, best-effort export metadata for candidate files.  Extractors
never execute candidate code: Python goes through the ``ast`` module,
JavaScript/TypeScript through regex and brace matching, and any other
language through an out-of-process parser command with a timeout.

Contract: ``extract(text, file_name) -> ExportMetadata``; any exception
means "no metadata" to the caller.
"""

import ast
import json
import logging
import os
import re
import shlex
import subprocess
from typing import Dict, List, Optional, Sequence, Tuple

from sigfind.core.config import DiscoveryConfig
from sigfind.core.models import ExportAccess, ExportEntry, ExportInfo, ExportMetadata
from sigfind.exceptions import ExtractionError

logger = logging.getLogger(__name__)


class MetadataExtractor:
    """Base class for per-language extractors."""

    language: str = ""

    def extract(self, text: str, file_name: str) -> ExportMetadata:
        raise NotImplementedError


# =============================================================================
# Python (ast)
# =============================================================================

class PythonExtractor(MetadataExtractor):
    """
    Python export extractor using AST-based analysis.

    Reports top-level classes (methods, properties and first base),
    functions, module-level objects, and one ``module`` entry for the
    file itself.  ``__all__`` restricts the named exports when present;
    otherwise names starting with an underscore are private.
    """

    language = "python"

    # ── Public API ───────────────────────────────────────────────

    def extract(self, text: str, file_name: str) -> ExportMetadata:
        try:
            tree = ast.parse(text, filename=file_name)
        except (SyntaxError, ValueError) as e:
            raise ExtractionError(f"Cannot parse {file_name}: {e}") from e

        public = self._dunder_all(tree)
        entries: List[ExportEntry] = []
        for node in tree.body:
            info = self._describe(node)
            if info is None or not self._is_public(info.name, public):
                continue
            entries.append(ExportEntry(
                exported_name=info.name,
                access=ExportAccess(type="named", name=info.name),
                info=info,
            ))

        module_name = os.path.splitext(os.path.basename(file_name))[0]
        entries.append(ExportEntry(
            exported_name=None,
            access=ExportAccess(type="direct"),
            info=ExportInfo(
                name=module_name,
                kind="module",
                methods=[e.info.name for e in entries if e.info.kind == "function"],
                properties=[e.info.name for e in entries if e.info.kind != "function"],
            ),
        ))
        return ExportMetadata(exports=entries)

    # ── AST helpers ──────────────────────────────────────────────

    @staticmethod
    def _dunder_all(tree: ast.Module) -> Optional[List[str]]:
        for node in tree.body:
            if not isinstance(node, ast.Assign):
                continue
            if not any(isinstance(t, ast.Name) and t.id == "__all__" for t in node.targets):
                continue
            if isinstance(node.value, (ast.List, ast.Tuple)):
                return [
                    elt.value for elt in node.value.elts
                    if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                ]
        return None

    @staticmethod
    def _is_public(name: Optional[str], public: Optional[List[str]]) -> bool:
        if not name:
            return False
        if public is not None:
            return name in public
        return not name.startswith("_")

    def _describe(self, node: ast.stmt) -> Optional[ExportInfo]:
        if isinstance(node, ast.ClassDef):
            return self._describe_class(node)
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            return ExportInfo(name=node.name, kind="function")
        if isinstance(node, (ast.Assign, ast.AnnAssign)):
            targets = node.targets if isinstance(node, ast.Assign) else [node.target]
            names = [t.id for t in targets if isinstance(t, ast.Name)]
            if not names or node.value is None or names[0].startswith("__"):
                return None
            if isinstance(node.value, ast.Dict):
                keys = [
                    k.value for k in node.value.keys
                    if isinstance(k, ast.Constant) and isinstance(k.value, str)
                ]
                return ExportInfo(name=names[0], kind="object", properties=keys)
            if isinstance(node.value, ast.Call):
                return ExportInfo(name=names[0], kind="object")
            if isinstance(node.value, ast.Lambda):
                return ExportInfo(name=names[0], kind="function")
        return None

    @staticmethod
    def _describe_class(node: ast.ClassDef) -> ExportInfo:
        methods: List[str] = []
        properties: List[str] = []

        def add(bucket: List[str], name: str) -> None:
            if not name.startswith("_") and name not in bucket:
                bucket.append(name)

        for child in node.body:
            if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef)):
                decorators = {
                    d.id if isinstance(d, ast.Name) else getattr(d, "attr", "")
                    for d in child.decorator_list
                }
                if "property" in decorators or "cached_property" in decorators:
                    add(properties, child.name)
                else:
                    add(methods, child.name)
                # self.x = ... anywhere in the method body
                for sub in ast.walk(child):
                    targets = []
                    if isinstance(sub, ast.Assign):
                        targets = sub.targets
                    elif isinstance(sub, (ast.AnnAssign, ast.AugAssign)):
                        targets = [sub.target]
                    for target in targets:
                        if (isinstance(target, ast.Attribute)
                                and isinstance(target.value, ast.Name)
                                and target.value.id == "self"):
                            add(properties, target.attr)
            elif isinstance(child, ast.Assign):
                for target in child.targets:
                    if isinstance(target, ast.Name):
                        add(properties, target.id)
            elif isinstance(child, ast.AnnAssign) and isinstance(child.target, ast.Name):
                add(properties, child.target.id)

        extends = None
        if node.bases:
            base = node.bases[0]
            if isinstance(base, ast.Name):
                extends = base.id
            elif isinstance(base, ast.Attribute):
                extends = base.attr
        return ExportInfo(
            name=node.name, kind="class", methods=methods,
            properties=properties, extends=extends,
        )


# =============================================================================
# JavaScript / TypeScript (regex + brace matching)
# =============================================================================

_IDENT = r"[A-Za-z_$][\w$]*"
_COMMENTS = re.compile(r"/\*.*?\*/|(?<![:\\])//[^\n]*", re.DOTALL)
_CLASS_DECL = re.compile(
    rf"(?P<export>\bexport\s+(?P<default>default\s+)?)?(?:declare\s+)?(?:abstract\s+)?"
    rf"\bclass\s+(?P<name>{_IDENT})(?:\s*<[^>{{]*>)?"
    rf"(?:\s+extends\s+(?P<extends>{_IDENT}(?:\.{_IDENT})*))?[^{{]*\{{"
)
_FUNCTION_DECL = re.compile(
    rf"(?P<export>\bexport\s+(?P<default>default\s+)?)?(?:async\s+)?"
    rf"\bfunction\b\s*\*?\s*(?P<name>{_IDENT})\s*[<(]"
)
_VARIABLE_DECL = re.compile(
    rf"(?P<export>\bexport\s+)?\b(?:const|let|var)\s+(?P<name>{_IDENT})"
    rf"(?:\s*:\s*[^=;\n]+)?\s*=\s*(?P<value>[^;\n]*)"
)
_ARROW_OR_FN = re.compile(rf"^(?:async\s*)?(?:function\b|\([^)]*\)\s*(?::[^=]+)?=>|{_IDENT}\s*=>)")
_EXPORT_DEFAULT_NAME = re.compile(rf"\bexport\s+default\s+(?P<name>{_IDENT})\s*;?\s*$", re.MULTILINE)
_EXPORT_LIST = re.compile(r"\bexport\s*\{(?P<body>[^}]*)\}")
_MODULE_EXPORTS = re.compile(rf"\bmodule\.exports\s*=\s*(?P<value>{_IDENT}|\{{)")
_EXPORTS_ASSIGN = re.compile(rf"\b(?:module\.)?exports\.(?P<name>{_IDENT})\s*=\s*(?P<value>{_IDENT})?")

_MEMBER_METHOD = re.compile(
    rf"(?:^|[;}}\n])\s*(?P<mods>(?:(?:static|async|get|set|public|private|protected|"
    rf"readonly|override|abstract)\s+)*)\*?\s*(?P<name>#?{_IDENT})\s*(?:<[^>(]*>)?\s*\("
)
_MEMBER_FIELD = re.compile(
    rf"(?:^|[;}}\n])\s*(?:(?:static|public|private|protected|readonly|declare|override)\s+)*"
    rf"(?P<name>#?{_IDENT})\s*[?!]?\s*(?::[^=;\n(]+)?(?:=|;|\n)"
)
_THIS_ASSIGN = re.compile(rf"\bthis\.(?P<name>#?{_IDENT})\s*=(?!=)")
_KEYWORDS = frozenset({
    "if", "for", "while", "switch", "catch", "return", "function", "constructor",
    "super", "new", "typeof", "await", "yield", "else", "do", "try",
})


def _matching_brace(text: str, open_index: int) -> int:
    """Index of the ``}`` closing the ``{`` at *open_index* (or ``len(text)``)."""
    depth = 0
    quote = None
    i = open_index
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in "'\"`":
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return len(text)


def _top_level(body: str) -> str:
    """Keep only depth-0 text of a block body (nested blocks collapse to ``{}``)."""
    out = []
    depth = 0
    for ch in body:
        if ch == "{":
            if depth == 0:
                out.append("{")
            depth += 1
        elif ch == "}":
            depth = max(depth - 1, 0)
            if depth == 0:
                out.append("}")
        elif depth == 0:
            out.append(ch)
    return "".join(out)


class ScriptExtractor(MetadataExtractor):
    """Heuristic ES module / CommonJS export extractor."""

    language = "javascript"

    def extract(self, text: str, file_name: str) -> ExportMetadata:
        source = _COMMENTS.sub("", text)
        declarations: Dict[str, ExportInfo] = {}
        exported: List[Tuple[str, ExportAccess]] = []

        for match in _CLASS_DECL.finditer(source):
            open_index = match.end() - 1
            body = source[open_index + 1:_matching_brace(source, open_index)]
            info = self._describe_class(match.group("name"), match.group("extends"), body)
            declarations[info.name] = info
            self._note_export(match, info.name, exported)

        for match in _FUNCTION_DECL.finditer(source):
            name = match.group("name")
            declarations.setdefault(name, ExportInfo(name=name, kind="function"))
            self._note_export(match, name, exported)

        for match in _VARIABLE_DECL.finditer(source):
            name = match.group("name")
            if name in declarations:
                continue
            declarations[name] = self._describe_value(name, match, source)
            if match.group("export"):
                exported.append((name, ExportAccess(type="named", name=name)))

        for match in _EXPORT_DEFAULT_NAME.finditer(source):
            exported.append((match.group("name"), ExportAccess(type="default")))

        for match in _EXPORT_LIST.finditer(source):
            for part in match.group("body").split(","):
                local, _, alias = part.strip().partition(" as ")
                local, alias = local.strip(), (alias.strip() or local.strip())
                if not local:
                    continue
                if alias == "default":
                    exported.append((local, ExportAccess(type="default")))
                else:
                    exported.append((local, ExportAccess(type="named", name=alias)))

        for match in _MODULE_EXPORTS.finditer(source):
            value = match.group("value")
            if value == "{":
                open_index = match.end() - 1
                body = _top_level(source[open_index + 1:_matching_brace(source, open_index)])
                for key in self._object_keys(body):
                    local = key[1] or key[0]
                    exported.append((local, ExportAccess(type="named", name=key[0])))
            else:
                exported.append((value, ExportAccess(type="direct")))

        for match in _EXPORTS_ASSIGN.finditer(source):
            name = match.group("name")
            exported.append((match.group("value") or name, ExportAccess(type="named", name=name)))

        entries: List[ExportEntry] = []
        seen = set()
        for local, access in exported:
            key = (local, access.type, access.name)
            if key in seen:
                continue
            seen.add(key)
            info = declarations.get(local) or ExportInfo(name=local, kind="unknown")
            entries.append(ExportEntry(
                exported_name=access.name if access.type == "named" else local,
                access=access,
                info=info,
            ))
        return ExportMetadata(exports=entries)

    # ── Helpers ───────────────────────────────────────────────────

    @staticmethod
    def _note_export(match: "re.Match[str]", name: str, exported: list) -> None:
        if not match.group("export"):
            return
        if match.group("default"):
            exported.append((name, ExportAccess(type="default")))
        else:
            exported.append((name, ExportAccess(type="named", name=name)))

    @staticmethod
    def _describe_class(name: str, extends: Optional[str], body: str) -> ExportInfo:
        methods: List[str] = []
        properties: List[str] = []
        top = _top_level(body)
        for match in _MEMBER_METHOD.finditer(top):
            member = match.group("name")
            if member in _KEYWORDS or member.startswith("#"):
                continue
            mods = match.group("mods").split()
            bucket = properties if ("get" in mods or "set" in mods) else methods
            if member not in bucket:
                bucket.append(member)
        for match in _MEMBER_FIELD.finditer(top):
            member = match.group("name")
            if member in _KEYWORDS or member.startswith("#") or member in methods:
                continue
            if member not in properties:
                properties.append(member)
        for match in _THIS_ASSIGN.finditer(body):
            member = match.group("name")
            if not member.startswith("#") and member not in properties and member not in methods:
                properties.append(member)
        if extends and "." in extends:
            extends = extends.rsplit(".", 1)[1]
        return ExportInfo(name=name, kind="class", methods=methods,
                          properties=properties, extends=extends)

    def _describe_value(self, name: str, match: "re.Match[str]", source: str) -> ExportInfo:
        value = match.group("value").strip()
        if _ARROW_OR_FN.match(value):
            return ExportInfo(name=name, kind="function")
        if value.startswith("{"):
            open_index = source.index("{", match.start("value"))
            body = _top_level(source[open_index + 1:_matching_brace(source, open_index)])
            methods, properties = [], []
            for key, local, is_method in self._object_members(body):
                (methods if is_method else properties).append(key)
            return ExportInfo(name=name, kind="object", methods=methods, properties=properties)
        if value.startswith("class"):
            return ExportInfo(name=name, kind="class")
        return ExportInfo(name=name, kind="object")

    @staticmethod
    def _object_keys(body: str) -> List[Tuple[str, Optional[str]]]:
        """``(key, local)`` pairs of an object literal's top-level members."""
        keys = []
        for part in body.split(","):
            part = part.strip()
            match = re.match(rf"^(?:async\s+)?({_IDENT})\s*(?::\s*({_IDENT})\s*$)?", part)
            if match:
                keys.append((match.group(1), match.group(2)))
        return keys

    @staticmethod
    def _object_members(body: str) -> List[Tuple[str, Optional[str], bool]]:
        members = []
        for part in body.split(","):
            part = part.strip()
            match = re.match(rf"^(?:async\s+)?({_IDENT})\s*(\(|:\s*(.*))?", part, re.DOTALL)
            if not match:
                continue
            key = match.group(1)
            if match.group(2) == "(":
                members.append((key, None, True))
            elif match.group(3) is not None:
                members.append((key, None, bool(_ARROW_OR_FN.match(match.group(3).strip()))))
            else:
                members.append((key, key, False))
        return members


class TypeScriptExtractor(ScriptExtractor):
    language = "typescript"


# =============================================================================
# Out-of-process parser
# =============================================================================

class CommandExtractor(MetadataExtractor):
    """
    Runs an external parser command and reads ExportMetadata JSON from stdout.

    The file text is written to the command's stdin and the file name is
    appended as the last argument.  A timeout or a non-zero exit status
    raises :class:`ExtractionError`; the calling candidate simply ends up
    without metadata.
    """

    def __init__(self, command: Sequence[str] | str, timeout_ms: int = 5000, language: str = ""):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout_ms = timeout_ms
        self.language = language

    def extract(self, text: str, file_name: str) -> ExportMetadata:
        argv = self.command + [file_name]
        try:
            completed = subprocess.run(
                argv, input=text, capture_output=True, text=True,
                timeout=max(self.timeout_ms, 1) / 1000.0, check=False,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"Parser timed out after {self.timeout_ms}ms for {file_name}")
            raise ExtractionError(f"Parser timed out for {file_name}") from e
        except OSError as e:
            raise ExtractionError(f"Parser command {argv[0]!r} failed to start: {e}") from e

        if completed.returncode != 0:
            raise ExtractionError(
                f"Parser exited with status {completed.returncode} for {file_name}: "
                f"{completed.stderr.strip()[:200]}"
            )
        try:
            payload = json.loads(completed.stdout or "{}")
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Parser produced invalid JSON for {file_name}: {e}") from e
        return ExportMetadata.from_dict(payload)


# =============================================================================
# Registry
# =============================================================================

class ExtractorRegistry:
    """Picks the extractor for a file from its extension and language config."""

    def __init__(self, config: DiscoveryConfig | None = None):
        self._config = config or DiscoveryConfig()
        self._overrides: Dict[str, MetadataExtractor] = {}
        self._builtin: Dict[str, MetadataExtractor] = {
            "python": PythonExtractor(),
            "javascript": ScriptExtractor(),
            "typescript": TypeScriptExtractor(),
        }

    def register(self, extension: str, extractor: MetadataExtractor) -> None:
        """Use *extractor* for files ending in *extension*."""
        self._overrides[extension.lower()] = extractor

    def for_path(self, path: str) -> Optional[MetadataExtractor]:
        extension = os.path.splitext(path)[1].lower()
        if extension in self._overrides:
            return self._overrides[extension]
        language = self._config.language_for_extension(extension)
        if language is None:
            return None
        parser = self._config.languages.get(language, {}).get("parser") or {}
        if parser.get("command"):
            return CommandExtractor(parser["command"], parser.get("timeout", 5000), language)
        return self._builtin.get(language)

    def extract(self, path: str, text: str) -> Optional[ExportMetadata]:
        """Extract metadata for *path*; ``None`` when no extractor applies.

        Extractor exceptions propagate; the evaluator absorbs them.
        """
        extractor = self.for_path(path)
        if extractor is None:
            return None
        return extractor.extract(text, os.path.basename(path))

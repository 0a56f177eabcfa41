#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = ["fastmcp", "pydantic>=2.0.0"]
# ///
"""Java class tools — locate a class by name, then patch it with a reviewable diff.

RULE: Locate by class name, never by path. The layout convention does the rest.

Workflow:
    1. locate — find the class file (src/main/java, src/test/java, src)
    2. dry    — preview an edit batch as a unified diff
    3. patch  — apply the edit batch (all-or-nothing)
    4. logs   — tail the test execution logs to confirm

Usage:
    sft_java_class.py locate <name> [-t main|test] [-k package]
    sft_java_class.py create <name> -t main|test -k <package>
    sft_java_class.py dry <name> <edits_json|-> [-t] [-k] [--scope all|header|body]
    sft_java_class.py patch <name> <edits_json|-> [-t] [-k] [--scope all|header|body]
    sft_java_class.py delete <name> <target> [--body] [-n]
    sft_java_class.py add-body <name> <body|->
    sft_java_class.py add-content <name> <import|annotation|class_content> <content|->
    sft_java_class.py rewrite <name> <content|->
    sft_java_class.py tree [--scope all|main|test] [-k package] [--complete]
    sft_java_class.py logs [log_dir]
    sft_java_class.py mcp-stdio [project] [log_dir]

Edits are a JSON array: [{"old_text": "...", "new_text": "..."}]
(the "oldText"/"newText" spelling is accepted too).
"""

import difflib
import errno
import json
import os
import re
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# LOGGING
# =============================================================================
_LEVELS = {"TRACE": 5, "DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "FATAL": 50}
_THRESHOLD = _LEVELS.get(os.environ.get("SFB_LOG_LEVEL", "INFO"), 20)
_LOG_DIR = os.environ.get("SFB_LOG_DIR", "")
_SCRIPT = Path(__file__).stem
_LOG = (
    Path(_LOG_DIR) / f"{_SCRIPT}_log.tsv"
    if _LOG_DIR
    else Path(__file__).parent / f"{_SCRIPT}_log.tsv"
)
_HEADER = "#timestamp\tscript\tlevel\tevent\tmessage\tdetail\tmetrics\ttrace\n"


def _log(
    level: str,
    event: str,
    msg: str,
    *,
    detail: str = "",
    metrics: str = "",
    trace: str = "",
):
    """Append TSV log line. Logging never crashes the main flow."""
    if _LEVELS.get(level, 20) < _THRESHOLD:
        return
    try:
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
        write_header = not _LOG.exists()
        with open(_LOG, "a") as f:
            if write_header:
                f.write(_HEADER)
            f.write(f"{ts}\t{_SCRIPT}\t{level}\t{event}\t{msg}\t{detail}\t{metrics}\t{trace}\n")
    except Exception:
        pass


def _elapsed(start_ms: float) -> float:
    return round(time.time() * 1000 - start_ms, 2)


# =============================================================================
# CONFIGURATION
# =============================================================================
EXPOSED = [
    "locate",
    "create",
    "dry",
    "patch",
    "delete",
    "add-body",
    "add-content",
    "rewrite",
    "tree",
    "logs",
]

CONFIG = {
    "project_env": "SFT_JAVA_PROJECT",
    "logs_env": "SFT_JAVA_LOGS",
    "log_suffix": ".log",
    "log_tail_lines": 100,
    "tab_size": 4,
    "max_rewrite_bytes": 15 * 1024,
}


@dataclass(frozen=True)
class Convention:
    """Directory layout and file naming of a package-structured codebase.

    ``package_requires_classification`` decides what a package path means when
    no source type is given: True rejects the combination, False nests the
    package under ``shared_root``.
    """

    main_root: tuple[str, ...] = ("src", "main", "java")
    test_root: tuple[str, ...] = ("src", "test", "java")
    shared_root: tuple[str, ...] = ("src",)
    extension: str = "java"
    package_requires_classification: bool = True

    def filename(self, name: str) -> str:
        return f"{name}.{self.extension}"


JAVA = Convention()


# =============================================================================
# ERRORS
# =============================================================================
class JavaToolError(Exception):
    """Base for every error this tool surfaces to its caller."""


class ValidationError(JavaToolError):
    """Malformed identifier, edit, or file content."""


class NotFoundError(JavaToolError):
    """Class file or target file does not exist."""


class ConfigurationError(JavaToolError):
    """Invalid source type / package combination or bad directory setup."""


class EditNotFoundError(JavaToolError):
    """Neither the exact nor the whitespace-tolerant match found the edit."""

    def __init__(self, old_text: str):
        self.old_text = old_text
        super().__init__(f"Could not find match for edit:\n{old_text}")


# =============================================================================
# DATA MODEL
# =============================================================================
PACKAGE_PATTERN = r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$"


class Classification(str, Enum):
    MAIN = "main"
    TEST = "test"
    UNSPECIFIED = "unspecified"

    @classmethod
    def parse(cls, value: "str | Classification | None") -> "Classification":
        """Map wire values to a classification. 'source' is an alias for main."""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.UNSPECIFIED
        key = value.strip().lower()
        if key == "source":
            return cls.MAIN
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(
                f"Invalid source type: {value!r} (expected 'main', 'source' or 'test')"
            ) from None


class SourceIdentifier(BaseModel):
    """Logical address of a class: name, source/test axis, dotted package."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Class name (case sensitive)")
    classification: Classification = Field(
        Classification.UNSPECIFIED, description="main, test or unspecified"
    )
    package_path: str | None = Field(
        None, pattern=PACKAGE_PATTERN, description="Dotted package, e.g. com.acme.billing"
    )

    @field_validator("name")
    @classmethod
    def _plain_name(cls, v: str) -> str:
        if "/" in v or "\\" in v:
            raise ValueError("class name must not contain path separators")
        return v

    @field_validator("classification", mode="before")
    @classmethod
    def _parse_classification(cls, v: Any) -> Any:
        if v is not None and not isinstance(v, str):
            return v
        try:
            return Classification.parse(v)
        except ValidationError as e:
            raise ValueError(str(e)) from None


class EditOperation(BaseModel):
    """One old-text/new-text replacement. Empty new text deletes."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    old_text: str = Field(
        ..., min_length=1, alias="oldText",
        description="Text to search for (exact first, then whitespace-tolerant)",
    )
    new_text: str = Field("", alias="newText", description="Text to replace with")


@dataclass
class LocateResult:
    found: bool = False
    relative_path: str | None = None
    content: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.found:
            return {"found": False}
        return {"found": True, "relative_path": self.relative_path, "content": self.content}


@dataclass
class PatchResult:
    diff: str
    applied: bool

    def report(self, target: str = "") -> str:
        status = f"[OK] written to {target}" if self.applied else "[DRY] preview only, nothing written"
        return f"{self.diff}\n{status}"


def identify(
    name: str,
    source_type: "str | Classification | None" = None,
    package_path: str | None = None,
) -> SourceIdentifier:
    """Build a SourceIdentifier, turning schema failures into ValidationError."""
    try:
        return SourceIdentifier(
            name=name, classification=source_type, package_path=package_path or None
        )
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid class identifier: {e}") from None


def coerce_edits(edits: Any) -> list[EditOperation]:
    """Validate an edit batch given as models or plain dicts."""
    if not isinstance(edits, (list, tuple)):
        raise ValidationError("Edits must be a list of {old_text, new_text} objects")
    batch: list[EditOperation] = []
    for i, edit in enumerate(edits):
        if isinstance(edit, EditOperation):
            batch.append(edit)
            continue
        try:
            batch.append(EditOperation.model_validate(edit))
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid edit #{i + 1}: {e}") from None
    return batch


# =============================================================================
# LOCATOR
# =============================================================================
def resolve_root(
    project_root: Path,
    classification: "str | Classification | None",
    package_path: str | None = None,
    convention: Convention = JAVA,
) -> Path:
    """Directory to search for a classification and optional package path."""
    classification = Classification.parse(classification)
    if classification is Classification.MAIN:
        parts = convention.main_root
    elif classification is Classification.TEST:
        parts = convention.test_root
    else:
        parts = convention.shared_root
    root = Path(project_root).joinpath(*parts)

    if package_path:
        if classification is Classification.UNSPECIFIED and convention.package_requires_classification:
            raise ConfigurationError("Cannot specify package path without source type")
        root = root.joinpath(*package_path.split("."))
    return root


def read_source(path: Path, label: str | None = None) -> str:
    """Read a source file as UTF-8. Undecodable bytes raise ValidationError."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError(
            f"{label or path} is not valid UTF-8 text (byte 0x{e.object[e.start]:02x} at offset {e.start})"
        ) from None


def _list_dir(directory: Path) -> Iterator[os.DirEntry]:
    """Sorted entries of a directory. Unreadable directories yield nothing."""
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        _log("WARN", "traverse", f"unreadable directory {directory}", detail=str(e))
        entries = []
    return iter(entries)


def find(
    directory: Path,
    name: str,
    project_root: Path,
    convention: Convention = JAVA,
) -> LocateResult:
    """Depth-first, pre-order search for ``<name>.<ext>`` under directory.

    First exact (case-sensitive) filename match wins. Entries are visited in
    name order, so duplicate names in sibling branches resolve to the
    alphabetically first branch. Symlinked directories are not followed.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return LocateResult()

    expected = convention.filename(name)
    stack = [_list_dir(directory)]
    while stack:
        entry = next(stack[-1], None)
        if entry is None:
            stack.pop()
            continue
        if entry.is_dir(follow_symlinks=False):
            stack.append(_list_dir(Path(entry.path)))
        elif entry.is_file() and entry.name == expected:
            path = Path(entry.path)
            relative = os.path.relpath(path, project_root).replace(os.sep, "/")
            content = read_source(path, relative)
            return LocateResult(found=True, relative_path=relative, content=content)
    return LocateResult()


def locate(
    project_root: Path,
    identifier: SourceIdentifier,
    convention: Convention = JAVA,
) -> LocateResult:
    start_ms = time.time() * 1000
    root = resolve_root(project_root, identifier.classification, identifier.package_path, convention)
    result = find(root, identifier.name, project_root, convention)
    _log("INFO", "locate", identifier.name,
         detail=result.relative_path or f"not found under {root}",
         metrics=f"latency_ms={_elapsed(start_ms)} found={result.found}")
    return result


def _require_class(
    project_root: Path,
    identifier: SourceIdentifier,
    convention: Convention = JAVA,
) -> tuple[Path, LocateResult]:
    result = locate(project_root, identifier, convention)
    if not result.found:
        raise NotFoundError(f"Class file not found: {identifier.name}")
    return Path(project_root) / result.relative_path, result


# =============================================================================
# DECLARATION HEURISTICS
# =============================================================================
# Text heuristics, not parsing. Known misses: records, enums and interfaces;
# declarations preceded by an annotation with nested parentheses on the same
# line. Known false hits: a line inside a block comment or text block that
# itself reads like "public class Foo".
CLASS_DECLARATION = re.compile(
    r"^[ \t]*(?:@\w+(?:\([^)]*\))?\s+)*"
    r"(?:(?:public|protected|private|abstract|final|static|sealed|non-sealed|strictfp)\s+)*"
    r"class\s+([A-Za-z_][A-Za-z0-9_]*)",
    re.MULTILINE,
)
PACKAGE_DECLARATION = re.compile(
    r"^\s*package\s+([a-z][a-z0-9_]*(?:\.[a-z][a-z0-9_]*)*)\s*;", re.MULTILINE
)
IMPORT_STATEMENT = re.compile(r"^import\s+[^;]+;", re.MULTILINE)
CLOSING_BRACE = re.compile(r"^}", re.MULTILINE)

INJECTION_POINTS = ("import", "annotation", "class_content")


def _class_declaration(content: str) -> re.Match:
    match = CLASS_DECLARATION.search(content)
    if match is None:
        raise ValidationError("Could not find class declaration")
    return match


def header_end(content: str) -> int:
    """Offset of the class body's opening brace (end of the header)."""
    match = _class_declaration(content)
    brace = content.find("{", match.end())
    return len(content) if brace == -1 else brace


def find_injection_point(content: str, point: str) -> int:
    """Offset where content for an injection point is inserted."""
    if point == "import":
        imports = list(IMPORT_STATEMENT.finditer(content))
        if imports:
            return imports[-1].end()
        package_end = content.find(";")
        return package_end + 1 if package_end != -1 else 0

    if point == "annotation":
        match = _class_declaration(content)
        return content.rfind("\n", 0, match.start()) + 1

    if point == "class_content":
        last_brace = content.rfind("}")
        if last_brace == -1:
            raise ValidationError("Could not find class closing brace")
        return last_brace

    raise ValidationError(f"Invalid injection point: {point!r} (expected one of {', '.join(INJECTION_POINTS)})")


def validate_declarations(content: str, class_name: str, package_path: str | None = None) -> None:
    """Check that full-file content declares the expected package and class."""
    if package_path:
        package_match = PACKAGE_DECLARATION.search(content)
        if package_match is None:
            raise ValidationError(f"Content must include package declaration matching: {package_path}")
        if package_match.group(1) != package_path:
            raise ValidationError(
                f"Package declaration ({package_match.group(1)}) must match "
                f"specified package path ({package_path})"
            )
    class_match = CLASS_DECLARATION.search(content)
    if class_match is None:
        raise ValidationError("Content must include a class declaration")
    if class_match.group(1) != class_name:
        raise ValidationError(
            f"Class name in content ({class_match.group(1)}) must match "
            f"specified class name ({class_name})"
        )


# =============================================================================
# PATCH ENGINE
# =============================================================================
_LEADING_WS = re.compile(r"^[ \t]*")
_BACKTICK_RUN = re.compile(r"`+")


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n")


def _indent(line: str) -> str:
    return _LEADING_WS.match(line).group(0)


def _split_block(text: str) -> list[str]:
    lines = text.split("\n")
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()
    return lines


def _columns(indent: str) -> int:
    return len(indent.expandtabs(CONFIG["tab_size"]))


def _make_indent(columns: int, unit: str) -> str:
    if unit == "\t":
        tabs, spaces = divmod(columns, CONFIG["tab_size"])
        return "\t" * tabs + " " * spaces
    return " " * columns


def _reindent(window: list[str], old_lines: list[str], new_lines: list[str]) -> list[str]:
    """Fit replacement lines to the indentation of the matched block.

    The first line takes the block's base indent. When no later replacement
    line is indented, each one copies the file's indent at the same offset of
    the block (the last line past the end). Otherwise the replacement keeps
    its own nesting, shifted by the distance between the file and the old
    text at the first non-blank old line. Widths are counted in columns with
    tabs expanded to ``tab_size`` and written back with the block's indent
    character. Blank lines are emitted verbatim.
    """
    base = _indent(window[0])
    first = new_lines[0]
    out = [base + first.lstrip() if first.strip() else first]
    rest = new_lines[1:]
    flat = not any(_indent(line) for line in rest if line.strip())
    k0 = next((i for i, line in enumerate(old_lines) if line.strip()), 0)
    shift = _columns(_indent(window[k0])) - _columns(_indent(old_lines[k0]))
    unit = next((_indent(line)[0] for line in window if _indent(line)), " ")
    for j, line in enumerate(rest, start=1):
        if not line.strip():
            out.append(line)
            continue
        if flat:
            k = min(j, len(window) - 1)
            if not window[k].strip():
                k = 0
            out.append(_indent(window[k]) + line)
            continue
        width = max(0, _columns(_indent(line)) + shift)
        out.append(_make_indent(width, unit) + line.lstrip())
    return out


def _replace_exact(content: str, old: str, new: str) -> str | None:
    if old not in content:
        return None
    return content.replace(old, new, 1)


def _replace_block(content: str, old: str, new: str) -> str | None:
    """Whitespace-tolerant match of old's lines; first window from the top."""
    if not old.strip():
        return None
    lines = content.split("\n")
    old_lines = _split_block(old)
    wanted = [line.strip() for line in old_lines]
    span = len(old_lines)

    for i in range(len(lines) - span + 1):
        window = lines[i:i + span]
        if all(line.strip() == w for line, w in zip(window, wanted)):
            replacement = _reindent(window, old_lines, _split_block(new)) if new else []
            lines[i:i + span] = replacement
            return "\n".join(lines)
    return None


def apply_edits(content: str, edits: Any) -> str:
    """Apply an edit batch in order; each edit sees the previous one's output.

    Raises EditNotFoundError on the first edit neither tier can place. The
    caller's content is never mutated, so a failed batch leaves nothing behind.
    """
    batch = coerce_edits(edits)
    modified = normalize_line_endings(content)
    for edit in batch:
        old = normalize_line_endings(edit.old_text)
        new = normalize_line_endings(edit.new_text)
        result = _replace_exact(modified, old, new)
        if result is None:
            result = _replace_block(modified, old, new)
        if result is None:
            raise EditNotFoundError(edit.old_text)
        modified = result
    return modified


def create_unified_diff(original: str, modified: str, label: str = "file") -> str:
    a = normalize_line_endings(original).splitlines(keepends=True)
    b = normalize_line_endings(modified).splitlines(keepends=True)
    out = []
    for line in difflib.unified_diff(a, b, label, label, "original", "modified"):
        if not line.endswith("\n"):
            line += "\n\\ No newline at end of file\n"
        out.append(line)
    return "".join(out)


def fence(text: str, lang: str = "") -> str:
    """Wrap text in a fence longer than any backtick run inside it."""
    longest = max((len(run) for run in _BACKTICK_RUN.findall(text)), default=0)
    marker = "`" * max(3, longest + 1)
    if text and not text.endswith("\n"):
        text += "\n"
    return f"{marker}{lang}\n{text}{marker}\n"


def fence_diff(diff: str) -> str:
    return fence(diff, "diff")


def persist(path: Path, content: str) -> None:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(errno.ENOENT, "Cannot write to missing file", str(path))
    path.write_text(content, encoding="utf-8", newline="")


def _finish_patch(path: Path, original: str, modified: str, dry_run: bool, label: str) -> PatchResult:
    diff = fence_diff(create_unified_diff(original, modified, label))
    if not dry_run:
        persist(path, modified)
    return PatchResult(diff=diff, applied=not dry_run)


def apply_file_edits(
    path: Path,
    edits: Any,
    dry_run: bool = False,
    label: str | None = None,
) -> PatchResult:
    """Patch a file with an edit batch. Written once, only if every edit matched."""
    batch = coerce_edits(edits)
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(f"File not found: {path}")
    original = normalize_line_endings(read_source(path, label))
    modified = apply_edits(original, batch)
    return _finish_patch(path, original, modified, dry_run, label or str(path))


# =============================================================================
# CORE FUNCTIONS
# =============================================================================
PATCH_SCOPES = ("all", "header", "body")


def _locate_impl(project: Path, name: str, source_type: str = "", package_path: str = "") -> str:
    """Locate a class file by name. Returns LocateResult JSON."""
    identifier = identify(name, source_type, package_path)
    return json.dumps(locate(project, identifier).to_dict())


def _create_impl(project: Path, name: str, source_type: str, package_path: str) -> str:
    """Create an empty public class in its package directory."""
    start_ms = time.time() * 1000
    identifier = identify(name, source_type, package_path)
    if identifier.classification is Classification.UNSPECIFIED:
        raise ValidationError("Source type ('main' or 'test') is required to create a class")
    if not identifier.package_path:
        raise ValidationError("Package path is required to create a class")

    directory = resolve_root(project, identifier.classification, identifier.package_path)
    directory.mkdir(parents=True, exist_ok=True)
    file_path = directory / JAVA.filename(identifier.name)
    relative = os.path.relpath(file_path, project).replace(os.sep, "/")
    if file_path.exists():
        _log("WARN", "create", f"{relative} exists")
        return json.dumps({"success": False, "error": "Class file already exists"})

    content = f"package {identifier.package_path};\n\npublic class {identifier.name} {{\n\n}}"
    file_path.write_text(content, encoding="utf-8", newline="")
    _log("INFO", "create", relative, metrics=f"latency_ms={_elapsed(start_ms)}")
    return json.dumps({"success": True, "filepath": relative})


def _add_body_impl(
    project: Path, name: str, body: str, source_type: str = "", package_path: str = ""
) -> str:
    """Insert members before the class's column-0 closing brace."""
    start_ms = time.time() * 1000
    if not body:
        raise ValidationError("Class body to add must not be empty")
    path, found = _require_class(project, identify(name, source_type, package_path))
    content = found.content
    closing = CLOSING_BRACE.search(content)
    if closing is None:
        raise ValidationError("Invalid class file format - missing closing brace")

    at = closing.start()
    persist(path, content[:at] + "\n\n" + body + "\n" + content[at:])
    _log("INFO", "add-body", found.relative_path, metrics=f"latency_ms={_elapsed(start_ms)}")
    return json.dumps({"success": True, "filepath": found.relative_path})


def _add_content_impl(
    project: Path,
    name: str,
    content: str,
    injection_point: str,
    source_type: str = "",
    package_path: str = "",
) -> str:
    """Insert content after imports, before the class declaration, or before the last brace."""
    start_ms = time.time() * 1000
    if not content:
        raise ValidationError("Content to add must not be empty")
    if injection_point not in INJECTION_POINTS:
        raise ValidationError(
            f"Invalid injection point: {injection_point!r} (expected one of {', '.join(INJECTION_POINTS)})"
        )
    path, found = _require_class(project, identify(name, source_type, package_path))
    text = found.content
    at = find_injection_point(text, injection_point)

    if injection_point == "import":
        snippet = "\n" + content
    elif injection_point == "annotation":
        snippet = content + "\n"
    else:
        snippet = "\n" + content + "\n"

    persist(path, text[:at] + snippet + text[at:])
    _log("INFO", "add-content", f"{found.relative_path} at={injection_point}",
         metrics=f"latency_ms={_elapsed(start_ms)}")
    return json.dumps({"success": True, "filepath": found.relative_path})


def _patch_impl(
    project: Path,
    name: str,
    edits: Any,
    dry_run: bool = False,
    source_type: str = "",
    package_path: str = "",
    scope: str = "all",
) -> PatchResult:
    """Apply an edit batch to a class, optionally confined to its header or body.

    Header: everything before the class body's opening brace (package,
    imports, annotations, declaration, extends/implements).
    Body: from the opening brace to the end of the file.
    """
    start_ms = time.time() * 1000
    if scope not in PATCH_SCOPES:
        raise ValidationError(f"Invalid scope: {scope!r} (expected one of {', '.join(PATCH_SCOPES)})")
    batch = coerce_edits(edits)
    path, found = _require_class(project, identify(name, source_type, package_path))
    original = normalize_line_endings(found.content)

    if scope == "all":
        modified = apply_edits(original, batch)
    else:
        split = header_end(original)
        head, tail = original[:split], original[split:]
        if scope == "header":
            modified = apply_edits(head, batch) + tail
        else:
            modified = head + apply_edits(tail, batch)

    result = _finish_patch(path, original, modified, dry_run, found.relative_path)
    action = "dry" if dry_run else "patch"
    _log("INFO", action, f"{found.relative_path} scope={scope}",
         metrics=f"latency_ms={_elapsed(start_ms)} edits={len(batch)}")
    return result


def _delete_impl(
    project: Path,
    name: str,
    target: str,
    dry_run: bool = False,
    source_type: str = "",
    package_path: str = "",
    scope: str = "all",
) -> PatchResult:
    """Delete one piece of text from a class (first match, same tiers as patch)."""
    if not target:
        raise ValidationError("Content to delete must not be empty")
    edits = [EditOperation(old_text=target, new_text="")]
    return _patch_impl(project, name, edits, dry_run, source_type, package_path, scope)


def _rewrite_impl(
    project: Path, name: str, content: str, source_type: str = "", package_path: str = ""
) -> str:
    """Replace a whole class file after checking its declarations."""
    start_ms = time.time() * 1000
    size = len(content.encode("utf-8"))
    limit = CONFIG["max_rewrite_bytes"]
    if not content:
        raise ValidationError("Class content must not be empty")
    if size > limit:
        raise ValidationError(f"File content too large: {size} bytes. Maximum allowed: {limit} bytes")

    identifier = identify(name, source_type, package_path)
    validate_declarations(content, identifier.name, identifier.package_path)
    path, found = _require_class(project, identifier)
    persist(path, content)
    _log("INFO", "rewrite", found.relative_path, metrics=f"latency_ms={_elapsed(start_ms)} bytes={size}")
    return f"Successfully rewrote {found.relative_path}"


def _tree_impl(project: Path, scope: str = "all", package_path: str = "", complete: bool = False) -> str:
    """List class files under main and/or test roots as an indented tree.

    With complete=True each file is followed by its fenced content.
    """
    start_ms = time.time() * 1000
    scopes = {
        "all": [Classification.MAIN, Classification.TEST],
        "main": [Classification.MAIN],
        "test": [Classification.TEST],
    }
    if scope not in scopes:
        raise ValidationError(f"Invalid scope: {scope!r} (expected all, main or test)")
    if package_path and re.fullmatch(PACKAGE_PATTERN, package_path) is None:
        raise ValidationError(f"Invalid package path: {package_path!r}")

    out: list[str] = []
    count = 0
    for classification in scopes[scope]:
        root = resolve_root(project, classification, package_path or None)
        if not root.is_dir():
            continue
        out.append(os.path.relpath(root, project).replace(os.sep, "/") + "/")
        seen: set[tuple[str, ...]] = set()
        for file_path in sorted(root.rglob(f"*.{JAVA.extension}")):
            if not file_path.is_file():
                continue
            parts = file_path.relative_to(root).parts
            for depth in range(1, len(parts)):
                if parts[:depth] not in seen:
                    seen.add(parts[:depth])
                    out.append("  " * depth + parts[depth - 1] + "/")
            out.append("  " * len(parts) + parts[-1])
            count += 1
            if complete:
                body = normalize_line_endings(file_path.read_text(encoding="utf-8", errors="replace"))
                out.append(fence(body, JAVA.extension).rstrip("\n"))

    _log("INFO", "tree", f"scope={scope} package={package_path or '-'}",
         metrics=f"latency_ms={_elapsed(start_ms)} files={count}")
    if not count:
        return f"No .{JAVA.extension} files for scope={scope} package={package_path or '-'}"
    return "\n".join(out)


def _logs_impl(log_dir: Path, max_lines: int | None = None) -> str:
    """Last lines of every *.log file in the log directory."""
    start_ms = time.time() * 1000
    if max_lines is None:
        max_lines = CONFIG["log_tail_lines"]
    if max_lines < 1:
        raise ValidationError(f"Line count must be at least 1, got {max_lines}")
    log_path = Path(log_dir)
    if not log_path.is_dir():
        raise ConfigurationError(f"Log directory not found: {log_path}")

    files = sorted(p for p in log_path.iterdir() if p.is_file() and p.name.endswith(CONFIG["log_suffix"]))
    sections = []
    for file_path in files:
        lines = file_path.read_text(encoding="utf-8", errors="replace").split("\n")
        note = f" (showing last {max_lines} lines of {len(lines)})" if len(lines) > max_lines else ""
        sections.append(f"=== {file_path.name}{note} ===\n" + "\n".join(lines[-max_lines:]) + "\n")

    _log("INFO", "logs", str(log_path), metrics=f"latency_ms={_elapsed(start_ms)} files={len(files)}")
    if not sections:
        return f"No {CONFIG['log_suffix']} files in {log_path}"
    return "\n".join(sections)


# =============================================================================
# PATH HELPERS
# =============================================================================
def _normalize_path(path_str: str) -> Path:
    """Normalize a path string to a resolved Path object."""
    if not path_str:
        return Path.cwd()
    return Path(path_str).expanduser().resolve()


def _resolve_dir(path_str: str, what: str) -> Path:
    path = _normalize_path(path_str)
    if not path.is_dir():
        raise ConfigurationError(f"{what} is not a directory: {path}")
    return path


def _project_dir(path_str: str = "") -> Path:
    return _resolve_dir(path_str or os.environ.get(CONFIG["project_env"], ""), "Project")


def _log_dir(path_str: str = "") -> Path | None:
    path_str = path_str or os.environ.get(CONFIG["logs_env"], "")
    return _resolve_dir(path_str, "Log directory") if path_str else None


def _get_content(arg: str) -> str:
    """Return arg or stdin if arg is '-'. For pipe support."""
    if arg == "-":
        return sys.stdin.read()
    return arg


def _parse_edits(arg: str) -> list[EditOperation]:
    try:
        data = json.loads(_get_content(arg))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Edits must be a JSON array: {e}") from None
    return coerce_edits(data)


# =============================================================================
# CLI INTERFACE
# =============================================================================
def _add_target_args(p) -> None:
    p.add_argument("name", help="Class name (case sensitive)")
    p.add_argument("-p", "--project", default="", help=f"Project root (default: ${CONFIG['project_env']} or cwd)")
    p.add_argument("-t", "--type", dest="source_type", default="", help="main (or source) / test")
    p.add_argument("-k", "--package", dest="package_path", default="", help="Dotted package path")


def main():
    import argparse

    parser = argparse.ArgumentParser(
        description="Java class tools — locate by name, patch with reviewable diffs"
    )
    parser.add_argument("-V", "--version", action="version", version="1.0.0")
    sub = parser.add_subparsers(dest="command", help="Commands")

    # --- mcp-stdio ---
    p_mcp = sub.add_parser("mcp-stdio", help="Run as MCP server")
    p_mcp.add_argument("project", nargs="?", default="")
    p_mcp.add_argument("log_dir", nargs="?", default="")

    # --- Workflow: locate ---
    p_locate = sub.add_parser("locate", help="Locate a class file by name")
    _add_target_args(p_locate)

    # --- Workflow: create ---
    p_create = sub.add_parser("create", help="Create an empty class")
    _add_target_args(p_create)

    # --- Workflow: dry / patch ---
    for command, help_text in (("dry", "Preview an edit batch"), ("patch", "Apply an edit batch")):
        p_edit = sub.add_parser(command, help=help_text)
        _add_target_args(p_edit)
        p_edit.add_argument("edits", help="JSON array of edits, or - for stdin")
        p_edit.add_argument("--scope", choices=PATCH_SCOPES, default="all")

    # --- Ops: delete ---
    p_delete = sub.add_parser("delete", help="Delete text from a class")
    _add_target_args(p_delete)
    p_delete.add_argument("target", help="Text to delete, or - for stdin")
    p_delete.add_argument("--body", action="store_true", help="Only match inside the class body")
    p_delete.add_argument("-n", "--dry", action="store_true", help="Dry run (preview)")

    # --- Ops: add-body ---
    p_body = sub.add_parser("add-body", help="Add members before the closing brace")
    _add_target_args(p_body)
    p_body.add_argument("body", help="Members to add, or - for stdin")

    # --- Ops: add-content ---
    p_content = sub.add_parser("add-content", help="Add content at an injection point")
    _add_target_args(p_content)
    p_content.add_argument("injection_point", choices=INJECTION_POINTS)
    p_content.add_argument("content", help="Content to add, or - for stdin")

    # --- Ops: rewrite ---
    p_rewrite = sub.add_parser("rewrite", help="Replace a whole class file")
    _add_target_args(p_rewrite)
    p_rewrite.add_argument("content", help="New file content, or - for stdin")

    # --- Recon: tree ---
    p_tree = sub.add_parser("tree", help="List class files")
    p_tree.add_argument("-p", "--project", default="")
    p_tree.add_argument("-s", "--scope", choices=["all", "main", "test"], default="all")
    p_tree.add_argument("-k", "--package", dest="package_path", default="")
    p_tree.add_argument("-c", "--complete", action="store_true", help="Include file contents")

    # --- Recon: logs ---
    p_logs = sub.add_parser("logs", help="Tail test execution logs")
    p_logs.add_argument("log_dir", nargs="?", default="")
    p_logs.add_argument("-n", "--lines", type=int, default=CONFIG["log_tail_lines"])

    args = parser.parse_args()

    try:
        if args.command == "mcp-stdio":
            _run_mcp(_project_dir(args.project), _log_dir(args.log_dir))
        elif args.command == "locate":
            print(_locate_impl(_project_dir(args.project), args.name, args.source_type, args.package_path))
        elif args.command == "create":
            print(_create_impl(_project_dir(args.project), args.name, args.source_type, args.package_path))
        elif args.command in ("dry", "patch"):
            dry_run = args.command == "dry"
            result = _patch_impl(
                _project_dir(args.project), args.name, _parse_edits(args.edits),
                dry_run=dry_run, source_type=args.source_type,
                package_path=args.package_path, scope=args.scope,
            )
            print(result.report(args.name))
        elif args.command == "delete":
            result = _delete_impl(
                _project_dir(args.project), args.name, _get_content(args.target),
                dry_run=args.dry, source_type=args.source_type,
                package_path=args.package_path, scope="body" if args.body else "all",
            )
            print(result.report(args.name))
        elif args.command == "add-body":
            print(_add_body_impl(_project_dir(args.project), args.name, _get_content(args.body),
                                 args.source_type, args.package_path))
        elif args.command == "add-content":
            print(_add_content_impl(_project_dir(args.project), args.name, _get_content(args.content),
                                    args.injection_point, args.source_type, args.package_path))
        elif args.command == "rewrite":
            print(_rewrite_impl(_project_dir(args.project), args.name, _get_content(args.content),
                                args.source_type, args.package_path))
        elif args.command == "tree":
            print(_tree_impl(_project_dir(args.project), args.scope, args.package_path, args.complete))
        elif args.command == "logs":
            log_dir = _log_dir(args.log_dir)
            if log_dir is None:
                raise ConfigurationError(f"No log directory given (argument or ${CONFIG['logs_env']})")
            print(_logs_impl(log_dir, args.lines))
        else:
            parser.print_help()
    except (JavaToolError, OSError) as e:
        _log("ERROR", args.command or "unknown", str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        _log("ERROR", args.command or "unknown", str(e))
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


# =============================================================================
# FASTMCP SERVER
# =============================================================================
def _run_mcp(project: Path, log_dir: Path | None = None):
    from fastmcp import FastMCP

    mcp = FastMCP("java")

    # --- Locate / create ---

    @mcp.tool()
    def locate_java_class(class_name: str, source_type: str = "", package_path: str = "") -> str:
        """Locate and return a Java class file by name, with optional package path.

        Args:
            class_name: Class to find (case sensitive)
            source_type: 'source' (main) or 'test'; required when package_path is set
            package_path: Dotted package, e.g. 'com.myself.myproject.something'

        Returns:
            JSON {found, relative_path, content}
        """
        return _locate_impl(project, class_name, source_type, package_path)

    @mcp.tool()
    def create_java_class(class_name: str, source_type: str, package_path: str) -> str:
        """Create a new, empty Java class in the source or test tree.

        Args:
            class_name: Class to create (case sensitive)
            source_type: 'source' (main) or 'test'
            package_path: Dotted package, e.g. 'com.myself.myproject.something'
        """
        return _create_impl(project, class_name, source_type, package_path)

    # --- Insert ---

    @mcp.tool()
    def class_add_body(class_name: str, class_body: str, source_type: str = "", package_path: str = "") -> str:
        """Add fields, methods or constructors to an existing class body.

        Args:
            class_name: Target class
            class_body: Members to insert before the class's closing brace
            source_type: 'source' or 'test'
            package_path: Dotted package
        """
        return _add_body_impl(project, class_name, class_body, source_type, package_path)

    @mcp.tool()
    def class_add_content(
        class_name: str,
        content: str,
        injection_point: str,
        source_type: str = "",
        package_path: str = "",
    ) -> str:
        """Add content at an injection point.

        - import: after the last import, e.g. "import java.util.ArrayList;"
        - annotation: before the class declaration, e.g. "@Service"
        - class_content: before the last closing brace, e.g. a new method

        Args:
            class_name: Target class
            content: Text to insert
            injection_point: import | annotation | class_content
            source_type: 'source' or 'test'
            package_path: Dotted package
        """
        return _add_content_impl(project, class_name, content, injection_point, source_type, package_path)

    # --- Replace ---

    @mcp.tool()
    def class_replace_content(
        class_name: str,
        edits: list[EditOperation],
        dry_run: bool = False,
        source_type: str = "",
        package_path: str = "",
    ) -> str:
        """Search and replace anywhere in a class file. Edits apply in order, all or nothing.

        Exact match first, then a whitespace-tolerant line match that keeps the
        file's indentation. Returns a unified diff.

        Args:
            class_name: Target class
            edits: [{oldText, newText}]
            dry_run: Preview the diff without writing
            source_type: 'source' or 'test'
            package_path: Dotted package
        """
        return _patch_impl(project, class_name, edits, dry_run, source_type, package_path).report(class_name)

    @mcp.tool()
    def class_replace_body(
        class_name: str,
        edits: list[EditOperation],
        dry_run: bool = False,
        source_type: str = "",
        package_path: str = "",
    ) -> str:
        """Replace portions of the class body (from the opening brace on).

        Args:
            class_name: Target class
            edits: [{oldText, newText}]
            dry_run: Preview the diff without writing
            source_type: 'source' or 'test'
            package_path: Dotted package
        """
        return _patch_impl(project, class_name, edits, dry_run, source_type, package_path,
                           scope="body").report(class_name)

    @mcp.tool()
    def class_rewrite_header(
        class_name: str,
        edits: list[EditOperation],
        dry_run: bool = False,
        source_type: str = "",
        package_path: str = "",
    ) -> str:
        """Replace portions of the class header: imports, annotations, comments,
        extends or implements clauses (everything before the body's opening brace).

        Args:
            class_name: Target class
            edits: [{oldText, newText}]
            dry_run: Preview the diff without writing
            source_type: 'source' or 'test'
            package_path: Dotted package
        """
        return _patch_impl(project, class_name, edits, dry_run, source_type, package_path,
                           scope="header").report(class_name)

    @mcp.tool()
    def class_rewrite_full(class_name: str, content: str, source_type: str = "", package_path: str = "") -> str:
        """Completely rewrite a small class file (max 15KB).

        The package and class declarations must match the class location.
        """
        return _rewrite_impl(project, class_name, content, source_type, package_path)

    # --- Delete ---

    @mcp.tool()
    def class_delete_body(
        class_name: str,
        target_content: str,
        dry_run: bool = False,
        source_type: str = "",
        package_path: str = "",
    ) -> str:
        """Delete specific content from a class body (fields, methods, blocks)."""
        return _delete_impl(project, class_name, target_content, dry_run, source_type, package_path,
                            scope="body").report(class_name)

    @mcp.tool()
    def class_delete_content(
        class_name: str,
        target_content: str,
        dry_run: bool = False,
        source_type: str = "",
        package_path: str = "",
    ) -> str:
        """Delete any content from a class file: unused imports, annotations,
        an 'implements' clause, a method."""
        return _delete_impl(project, class_name, target_content, dry_run, source_type,
                            package_path).report(class_name)

    # --- Recon ---

    @mcp.tool()
    def java_codebase_retrieve(scope: str = "all", package_path: str = "", format: str = "tree") -> str:
        """Retrieve the codebase as a tree of class files.

        Args:
            scope: all | main | test
            package_path: Restrict to a dotted package
            format: tree (names only) | complete (names and contents)
        """
        if format not in ("tree", "complete"):
            raise ValidationError(f"Invalid format: {format!r} (expected tree or complete)")
        return _tree_impl(project, scope, package_path, complete=format == "complete")

    @mcp.tool()
    def get_test_execution_logs() -> str:
        """Retrieve the test execution logs. Tests run continuously and log their output to files."""
        if log_dir is None:
            raise ConfigurationError(f"No log directory configured (argument or ${CONFIG['logs_env']})")
        return _logs_impl(log_dir)

    print(f"java MCP server starting (project={project})...", file=sys.stderr)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()

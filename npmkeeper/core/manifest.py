"""
Reading and rewriting ``package.json`` dependency declarations.

The manifest is read with :mod:`json`. Rewrites are textual, touching only
the specifier string of each upgraded dependency, so indentation, key
order and the rest of the file survive byte for byte.
"""

from __future__ import annotations

import re
import json
from pathlib import Path
from dataclasses import dataclass
from functools import partial
from typing import Dict, List, Mapping, Optional, Tuple

from npmkeeper.exceptions import FileOperationError
from npmkeeper.utils.filesystem import safe_read_file
from npmkeeper.utils.version_utils import get_exact_version, replace_last_occurrence

__all__ = ["DEPENDENCY_SECTIONS", "DeclaredDependency", "read_dependencies", "rewrite_specifiers"]

#: ``package.json`` tables holding upgradable dependencies.
DEPENDENCY_SECTIONS = ("dependencies", "devDependencies")

_DECLARATION = re.compile(r'(?P<head>"(?P<name>[^"]+)"\s*:\s*")(?P<spec>[^"]*)"')


@dataclass(frozen=True)
class DeclaredDependency:
    """A dependency as written in the manifest.

    Attributes:
        name: Package name, possibly scoped (``@scope/name``).
        specifier: The declared range, e.g. ``^1.2.3``.
        section: The ``package.json`` table it was declared in.
    """

    name: str
    specifier: str
    section: str


def read_dependencies(path: Path) -> List[DeclaredDependency]:
    """Collect string-valued entries of every dependency section.

    Raises:
        FileOperationError: The file is unreadable or not a JSON object.
    """
    text = safe_read_file(path)
    try:
        document = json.loads(text)
    except ValueError as exc:
        raise FileOperationError(
            f"Invalid JSON: {exc}",
            file_path=str(path),
            operation="parse",
            original_error=exc,
        ) from exc

    if not isinstance(document, Mapping):
        raise FileOperationError(
            "Top-level JSON value is not an object",
            file_path=str(path),
            operation="parse",
        )

    declared = []
    for section in DEPENDENCY_SECTIONS:
        table = document.get(section)
        if not isinstance(table, Mapping):
            continue
        for name, specifier in table.items():
            if isinstance(specifier, str):
                declared.append(DeclaredDependency(name, specifier, section))
    return declared


def rewrite_specifiers(text: str, upgrades: Mapping[DeclaredDependency, str]) -> str:
    """Move each dependency's specifier to its new version.

    Only the section a declaration was read from is touched, so the same
    name and range under ``peerDependencies``, ``overrides`` or another
    dependency section keeps its value. The range operator is kept:
    ``"^1.0.0"`` upgraded to ``2.1.1`` becomes ``"^2.1.1"``.

    Example:
        >>> dep = DeclaredDependency("left-pad", "^1.0.0", "dependencies")
        >>> rewrite_specifiers('{"dependencies": {"left-pad": "^1.0.0"}}', {dep: "1.3.0"})
        '{"dependencies": {"left-pad": "^1.3.0"}}'
    """
    replacements: Dict[str, Dict[Tuple[str, str], str]] = {}
    for dependency, version in upgrades.items():
        key = (dependency.name, dependency.specifier)
        replacements.setdefault(dependency.section, {})[key] = version

    def substitute(wanted: Dict[Tuple[str, str], str], match: "re.Match[str]") -> str:
        name, specifier = match.group("name"), match.group("spec")
        version = wanted.get((name, specifier))
        if version is None:
            return match.group(0)
        updated = replace_last_occurrence(specifier, get_exact_version(specifier), version)
        return f"{match.group('head')}{updated}\""

    spans = _section_spans(text)
    pieces: List[str] = []
    position = 0
    for section, (start, end) in sorted(spans.items(), key=lambda item: item[1]):
        wanted = replacements.get(section)
        if not wanted:
            continue
        pieces.append(text[position:start])
        pieces.append(_DECLARATION.sub(partial(substitute, wanted), text[start:end]))
        position = end
    pieces.append(text[position:])
    return "".join(pieces)


def _section_spans(text: str) -> Dict[str, Tuple[int, int]]:
    """Locate the top-level dependency objects as ``section -> (start, end)``.

    A repeated key maps to its last occurrence, the one :func:`json.loads`
    keeps.
    """
    spans: Dict[str, Tuple[int, int]] = {}
    depth = 0
    key: Optional[str] = None
    current: Optional[str] = None
    start = 0
    index = 0
    length = len(text)

    while index < length:
        char = text[index]
        if char == '"':
            end = _string_end(text, index)
            if depth == 1:
                key = text[index + 1:end]
            index = end + 1
            continue
        if char in "{[":
            depth += 1
            if depth == 2 and char == "{" and current is None and key in DEPENDENCY_SECTIONS:
                current, start = key, index
        elif char in "}]":
            if depth == 2 and current is not None:
                spans[current] = (start, index + 1)
                current = None
            depth -= 1
        elif char == "," and depth == 1:
            key = None
        index += 1

    return spans


def _string_end(text: str, start: int) -> int:
    """Index of the quote closing the JSON string opened at ``start``."""
    index = start + 1
    while index < len(text) and text[index] != '"':
        if text[index] == "\\":
            index += 1
        index += 1
    return index

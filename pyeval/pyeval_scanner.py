"""
Line-oriented import discovery for evaluation chunks.

This is deliberately not a parser: each line is matched against the two
common import shapes. Anything else passes through untouched and is left for
the interpreter to accept or reject when the chunk runs.
"""
import re
from dataclasses import dataclass, field
from typing import FrozenSet, List

_LINE_SPLIT = re.compile(r"\r?\n")
_IMPORT_LIKE = re.compile(r"^\s*(?:import\s+(.+)|from\s+([\w.]+)\s+import\s+(.+))$")
_ALIAS_SUFFIX = re.compile(r"\s+as\s+\w+$", re.IGNORECASE)


@dataclass(frozen=True)
class ImportDeclaration:
    root_package: str
    is_relative: bool = False
    is_special_heavy_dependency: bool = False


@dataclass(frozen=True)
class ScanResult:
    """What the scanner learned about one chunk."""
    source: str
    package_roots: FrozenSet[str] = field(default_factory=frozenset)
    heavy_imported: bool = False


def _strip_comment(line: str) -> str:
    idx = line.find("#")
    return line[:idx] if idx >= 0 else line


def scan_line(raw_line: str, heavy_dependency: str = "torch") -> List[ImportDeclaration]:
    """Return the import declarations found on a single source line."""
    if raw_line.strip() == f"import {heavy_dependency}":
        return [ImportDeclaration(heavy_dependency, is_special_heavy_dependency=True)]

    m = _IMPORT_LIKE.match(_strip_comment(raw_line))
    if not m:
        return []

    decls: List[ImportDeclaration] = []
    if m.group(1):
        for part in m.group(1).split(","):
            token = part.strip()
            if not token:
                continue
            no_alias = _ALIAS_SUFFIX.sub("", token)
            if no_alias.startswith("."):
                decls.append(ImportDeclaration(no_alias, is_relative=True))
                continue
            root = no_alias.split(".")[0].strip()
            if root:
                decls.append(ImportDeclaration(root))
    else:
        module = m.group(2).strip()
        if module.startswith("."):
            decls.append(ImportDeclaration(module, is_relative=True))
        else:
            root = module.split(".")[0]
            if root:
                decls.append(ImportDeclaration(root))
    return decls


def scan_chunk(chunk: str, heavy_dependency: str = "torch") -> ScanResult:
    """Scan a chunk for imports.

    The plain `import <heavy_dependency>` line is removed from the returned
    source and flags the chunk instead; the heavy dependency never appears in
    `package_roots`, and neither do relative imports. Every other line is kept
    exactly as written.
    """
    roots = set()
    kept: List[str] = []
    heavy = False

    for raw_line in _LINE_SPLIT.split(chunk):
        decls = scan_line(raw_line, heavy_dependency)
        if any(d.is_special_heavy_dependency for d in decls):
            heavy = True
            continue
        for d in decls:
            if d.is_relative or d.root_package == heavy_dependency:
                continue
            roots.add(d.root_package)
        kept.append(raw_line)

    return ScanResult(source="\n".join(kept), package_roots=frozenset(roots), heavy_imported=heavy)

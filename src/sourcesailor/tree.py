"""Directory snapshot - walks a source tree into an in-memory FileNode tree.

Honors the root .gitignore, nested .gitignore files (rules cascade into
subdirectories, never across siblings) and caller-supplied excludes.
File contents are read eagerly so the tree can be serialized into prompts.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import pathspec

logger = logging.getLogger(__name__)

GITIGNORE = ".gitignore"

# Always excluded, whatever the .gitignore says
ALWAYS_IGNORE = (".git",)

# Files kept in the tree but never read
SKIP_CONTENT_EXTENSIONS = {
    # images
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".svg", ".webp",
    ".tif", ".tiff", ".heic", ".psd",
    # video / audio
    ".mp4", ".mov", ".avi", ".mkv", ".webm", ".wmv", ".flv",
    ".mp3", ".wav", ".ogg", ".flac", ".m4a",
    # documents
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".odt", ".ods", ".odp", ".rtf",
    # databases
    ".sqlite", ".sqlite3", ".db", ".db3",
}


@dataclass(frozen=True)
class FileNode:
    """One file or directory in the filtered snapshot.

    ``children`` is a tuple for directories (possibly empty) and ``None`` for
    files. ``content`` is ``None`` for directories and unread files.
    """

    name: str
    content: str | None = None
    children: tuple[FileNode, ...] | None = None

    @property
    def is_dir(self) -> bool:
        return self.children is not None

    def iter_nodes(self) -> Iterator[FileNode]:
        """Yield this node and all descendants, depth first."""
        yield self
        for child in self.children or ():
            yield from child.iter_nodes()

    def without_content(self) -> FileNode:
        """Copy of the tree with every file's content dropped."""
        if self.children is None:
            return FileNode(self.name)
        return FileNode(self.name, None, tuple(c.without_content() for c in self.children))

    def without_file(self, name: str) -> FileNode:
        """Copy of the tree with every file called ``name`` removed."""
        if self.children is None:
            return self
        kept = tuple(
            child.without_file(name)
            for child in self.children
            if child.is_dir or child.name != name
        )
        return replace(self, children=kept)

    def to_dict(self, with_content: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if with_content:
            data["content"] = self.content
        if self.children is not None:
            data["children"] = [c.to_dict(with_content) for c in self.children]
        return data

    def to_json(self, with_content: bool = True, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(with_content), indent=indent)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileNode:
        children = data.get("children")
        return cls(
            name=data["name"],
            content=data.get("content"),
            children=None if children is None else tuple(cls.from_dict(c) for c in children),
        )


@dataclass(frozen=True)
class IgnoreRule:
    """Patterns from one .gitignore level, compiled as gitwildmatch.

    ``base`` is the directory (relative to the scan root, posix form) of the
    .gitignore that declared the patterns; "" for the root and caller excludes.
    Negated patterns only re-include paths excluded by the same level.
    """

    patterns: tuple[str, ...]
    spec: pathspec.PathSpec = field(compare=False, repr=False)
    base: str = ""

    @classmethod
    def compile(cls, lines: Iterable[str], base: str = "") -> IgnoreRule | None:
        patterns = tuple(
            line.strip() for line in lines
            if line.strip() and not line.strip().startswith("#")
        )
        if not patterns:
            return None
        return cls(patterns, pathspec.PathSpec.from_lines("gitwildmatch", patterns), base)

    def matches(self, rel_path: str, is_dir: bool = False) -> bool:
        if self.base:
            prefix = self.base + "/"
            if not rel_path.startswith(prefix):
                return False
            rel_path = rel_path[len(prefix):]
        # trailing slash lets "logs/" style patterns see directories
        if is_dir:
            rel_path += "/"
        return self.spec.match_file(rel_path)


class IgnoreRuleSet:
    """Immutable stack of ignore levels. A match at any level excludes."""

    def __init__(self, rules: Iterable[IgnoreRule] = ()):
        self._rules = tuple(rules)

    @classmethod
    def from_patterns(cls, patterns: Iterable[str], base: str = "") -> IgnoreRuleSet:
        return cls(()).extend(patterns, base)

    def extend(self, patterns: Iterable[str], base: str = "") -> IgnoreRuleSet:
        """Return a new set holding these rules plus ``patterns`` as one level."""
        rule = IgnoreRule.compile(patterns, base)
        if rule is None:
            return self
        return IgnoreRuleSet(self._rules + (rule,))

    @property
    def patterns(self) -> list[str]:
        return [
            f"{rule.base}/{pattern}" if rule.base else pattern
            for rule in self._rules
            for pattern in rule.patterns
        ]

    def matches(self, rel_path: str, is_dir: bool = False) -> bool:
        rel_path = rel_path.strip("/")
        if not rel_path:
            return False
        return any(rule.matches(rel_path, is_dir) for rule in self._rules)

    def __len__(self) -> int:
        return sum(len(rule.patterns) for rule in self._rules)

    def __iter__(self) -> Iterator[IgnoreRule]:
        return iter(self._rules)


def parse_gitignore(path: str | Path) -> list[str]:
    """Read a .gitignore, dropping blank lines and comments."""
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    patterns = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        patterns.append(line)
    return patterns


class DirectoryTreeBuilder:
    """Builds a FileNode tree for one scan root."""

    def __init__(
        self,
        root: str | Path,
        extra_ignores: Iterable[str] = (),
        verbose: bool = False,
    ):
        self.root = Path(root).resolve()
        if not self.root.is_dir():
            raise ValueError(f"Not a directory: {root}")
        self.verbose = verbose

        patterns = list(ALWAYS_IGNORE)
        root_gitignore = self.root / GITIGNORE
        if root_gitignore.is_file():
            patterns.extend(parse_gitignore(root_gitignore))
        patterns.extend(extra_ignores)
        self.rules = IgnoreRuleSet.from_patterns(patterns)

        if verbose:
            logger.info("Ignore patterns: %s", ", ".join(self.rules.patterns))

    def build(self) -> FileNode:
        """Snapshot the scan root. Permission errors on the root propagate."""
        return FileNode(self.root.name, None, self._children(self.root, "", self.rules))

    def walk(self, dir_path: str | Path, rules: IgnoreRuleSet) -> FileNode | None:
        """Snapshot ``dir_path``; ``None`` when the directory itself is ignored."""
        dir_path = Path(dir_path)
        rel = self._relative(dir_path)
        if not rel:
            return FileNode(dir_path.name, None, self._children(dir_path, rel, rules))

        # the root .gitignore is already part of the baseline rules
        local_gitignore = dir_path / GITIGNORE
        if local_gitignore.is_file():
            rules = rules.extend(parse_gitignore(local_gitignore), base=rel)

        if rules.matches(rel, is_dir=True):
            logger.debug("Ignoring directory %s", rel)
            return None

        try:
            children = self._children(dir_path, rel, rules)
        except PermissionError as exc:
            logger.warning("Skipping unreadable directory %s: %s", rel, exc)
            return None
        return FileNode(name=dir_path.name, content=None, children=children)

    def _children(self, dir_path: Path, rel: str, rules: IgnoreRuleSet) -> tuple[FileNode, ...]:
        children: list[FileNode] = []
        for entry in list(os.scandir(dir_path)):
            child_rel = f"{rel}/{entry.name}" if rel else entry.name
            if entry.is_symlink():
                if entry.is_dir():
                    logger.warning("Not following symlinked directory %s", child_rel)
                    continue
                if not os.path.exists(entry.path):
                    logger.warning("Skipping broken symlink %s", child_rel)
                    continue

            is_dir = entry.is_dir(follow_symlinks=False)
            if rules.matches(child_rel, is_dir=is_dir):
                if self.verbose:
                    logger.debug("Ignoring %s", child_rel)
                continue

            if is_dir:
                child = self.walk(Path(entry.path), rules)
            elif not entry.is_file():
                # fifos, sockets and devices would block or fail on read
                logger.warning("Skipping special file %s", child_rel)
                continue
            else:
                child = self._read_file(Path(entry.path), child_rel)
            if child is not None:
                children.append(child)
        return tuple(children)

    def _read_file(self, path: Path, rel: str) -> FileNode | None:
        if path.suffix.lower() in SKIP_CONTENT_EXTENSIONS:
            return FileNode(path.name)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except PermissionError as exc:
            logger.warning("Skipping unreadable file %s: %s", rel, exc)
            return None
        return FileNode(path.name, content)

    def _relative(self, path: Path) -> str:
        rel = path.resolve().relative_to(self.root).as_posix()
        return "" if rel == "." else rel


def get_dir_structure(
    path: str | Path,
    ignore: Iterable[str] = (),
    verbose: bool = False,
) -> FileNode:
    """Snapshot ``path`` with the root .gitignore plus ``ignore`` applied."""
    return DirectoryTreeBuilder(path, extra_ignores=ignore, verbose=verbose).build()

"""AST outlines - shrinks large codebases before code inference.

When a codebase is too big to send verbatim, each source file's content is
replaced by a JSON outline of its imports and top-level declarations, parsed
with tree-sitter.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import PurePosixPath
from typing import Any

from tree_sitter_language_pack import get_parser

from .tree import FileNode

logger = logging.getLogger(__name__)

LANGUAGE_BY_SUFFIX: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".scala": "scala",
    ".swift": "swift",
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".dart": "dart",
    ".lua": "lua",
    ".sh": "bash",
}

IMPORT_NODE_TYPES = {
    "import_statement",
    "import_from_statement",
    "import_declaration",
    "use_declaration",
    "using_directive",
    "preproc_include",
    "package_clause",
}
DECLARATION_NODE_TYPES = {
    "function_definition",
    "function_declaration",
    "function_item",
    "method_definition",
    "method_declaration",
    "class_definition",
    "class_declaration",
    "interface_declaration",
    "struct_item",
    "enum_item",
    "impl_item",
    "trait_item",
    "type_declaration",
    "lexical_declaration",
    "export_statement",
    "decorated_definition",
}
# Bodies worth descending into for method signatures
CONTAINER_NODE_TYPES = {
    "class_definition",
    "class_declaration",
    "impl_item",
    "decorated_definition",
    "block",
    "class_body",
    "declaration_list",
}


class UnknownLanguageError(ValueError):
    """No tree-sitter grammar is known for a file."""


def language_for_file(name: str) -> str:
    suffix = PurePosixPath(name).suffix.lower()
    language = LANGUAGE_BY_SUFFIX.get(suffix)
    if language is None:
        raise UnknownLanguageError(f"No tree-sitter language for {name}")
    return language


@lru_cache(maxsize=32)
def _parser(language: str) -> Any:
    try:
        return get_parser(language)
    except (LookupError, ValueError) as exc:
        raise UnknownLanguageError(f"tree-sitter has no grammar named {language!r}") from exc


def _signature(node: Any) -> str:
    text = node.text.decode("utf-8", errors="replace") if node.text else ""
    return text.splitlines()[0].strip() if text else ""


def _outline(node: Any, depth: int = 0) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    for child in node.children:
        if child.type in IMPORT_NODE_TYPES:
            entries.append({
                "type": child.type,
                "line": child.start_point[0] + 1,
                "text": child.text.decode("utf-8", errors="replace").strip(),
            })
        elif child.type in DECLARATION_NODE_TYPES:
            entry: dict[str, Any] = {
                "type": child.type,
                "line": child.start_point[0] + 1,
                "text": _signature(child),
            }
            if depth < 2:
                members = [
                    item
                    for grandchild in child.children
                    if grandchild.type in CONTAINER_NODE_TYPES
                    for item in _outline(grandchild, depth + 1)
                ]
                if members:
                    entry["children"] = members
            entries.append(entry)
        elif child.type in CONTAINER_NODE_TYPES and depth < 2:
            entries.extend(_outline(child, depth + 1))
    return entries


def summarize(language: str, source: str) -> str:
    """JSON outline of the imports and declarations in ``source``."""
    tree = _parser(language).parse(source.encode("utf-8"))
    return json.dumps({"language": language, "outline": _outline(tree.root_node)})


def summarize_tree(node: FileNode, verbose: bool = False) -> FileNode:
    """Copy of ``node`` with every parseable file replaced by its outline."""
    if node.is_dir:
        return FileNode(
            node.name,
            None,
            tuple(summarize_tree(child, verbose) for child in node.children or ()),
        )
    if node.content is None:
        return node
    try:
        language = language_for_file(node.name)
        if verbose:
            logger.info("Language for %s: %s", node.name, language)
        return FileNode(node.name, summarize(language, node.content))
    except UnknownLanguageError as exc:
        logger.warning("Skipping AST summary for %s: %s", node.name, exc)
        return node

"""Tests for tree-sitter outlines."""

import json

import pytest

from sourcesailor import ast_summary
from sourcesailor.ast_summary import UnknownLanguageError, language_for_file, summarize, summarize_tree
from sourcesailor.tree import FileNode

PYTHON_SOURCE = '''import os
from pathlib import Path


class Greeter:
    def greet(self, name):
        return f"hi {name}"


def main():
    Greeter().greet(os.getcwd())
'''


@pytest.fixture
def python_parser():
    try:
        return ast_summary._parser("python")
    except Exception as e:
        pytest.skip(f"python grammar unavailable: {e}")


class TestLanguageForFile:
    def test_known_extensions(self):
        assert language_for_file("app.py") == "python"
        assert language_for_file("src/index.TS") == "typescript"
        assert language_for_file("main.go") == "go"

    def test_unknown_extension(self):
        with pytest.raises(UnknownLanguageError):
            language_for_file("README.md")

    def test_unknown_language_is_value_error(self):
        assert issubclass(UnknownLanguageError, ValueError)


class TestSummarize:
    def test_python_outline(self, python_parser):
        outline = json.loads(summarize("python", PYTHON_SOURCE))
        assert outline["language"] == "python"
        entries = outline["outline"]
        assert [e["type"] for e in entries] == [
            "import_statement",
            "import_from_statement",
            "class_definition",
            "function_definition",
        ]
        assert entries[0] == {"type": "import_statement", "line": 1, "text": "import os"}
        greeter = entries[2]
        assert greeter["text"] == "class Greeter:"
        assert greeter["children"][0]["text"] == "def greet(self, name):"
        assert entries[3]["line"] == 10
        assert "children" not in entries[3]


class TestSummarizeTree:
    def test_replaces_parseable_files_only(self, python_parser):
        tree = FileNode("proj", None, (
            FileNode("app.py", PYTHON_SOURCE),
            FileNode("README.md", "# Proj"),
            FileNode("logo.png"),
            FileNode("pkg", None, (FileNode("util.py", "import sys\n"),)),
        ))
        summarized = summarize_tree(tree)
        by_name = {n.name: n for n in summarized.iter_nodes()}
        assert json.loads(by_name["app.py"].content)["language"] == "python"
        assert by_name["README.md"].content == "# Proj"
        assert by_name["logo.png"].content is None
        assert json.loads(by_name["util.py"].content)["outline"][0]["text"] == "import sys"

    def test_original_tree_untouched(self, python_parser):
        tree = FileNode("proj", None, (FileNode("app.py", PYTHON_SOURCE),))
        summarize_tree(tree)
        assert tree.children[0].content == PYTHON_SOURCE

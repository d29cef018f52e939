"""Structured project-classification result.

The field table below is the single definition of the classification tool;
the JSON-schema payload (OpenAI, Anthropic) and the Gemini schema payload are
both derived from it, and replies are parsed back into ProjectInference.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

TOOL_NAME = "inferLanguageAndFramework"
TOOL_DESCRIPTION = (
    "Gets following parameters, isMonorepo, directories, programmingLanguage, "
    "framework, dependenciesFile, lockFile, entryPointFile, workflow, treeSitterLanguage"
)


@dataclass(frozen=True)
class SchemaField:
    name: str
    kind: str  # "string", "boolean" or "array" (of strings)
    description: str


PROJECT_INFERENCE_FIELDS: tuple[SchemaField, ...] = (
    SchemaField(
        "isMonorepo", "boolean",
        "If the repository is monorepo or not",
    ),
    SchemaField(
        "directories", "array",
        "If the repository is monorepo, the names of all directories which can be "
        "the codebases in the monorepo",
    ),
    SchemaField(
        "programmingLanguage", "string",
        "If it is a single codebase, the programming language used to build this application",
    ),
    SchemaField(
        "framework", "string",
        "If it is a single codebase, the framework used to build this application",
    ),
    SchemaField(
        "dependenciesFile", "string",
        "If it is a single codebase, the dependency file e.g. package.json, go.mod, "
        "Gemfile, build.gradle, pubspec or podfile",
    ),
    SchemaField(
        "lockFile", "string",
        "If it is a single codebase, the dependency lockfile, e.g. package-lock.json, "
        "go.sum, Gemfile.lock, pubspec.lock or podfile.lock",
    ),
    SchemaField(
        "entryPointFile", "string",
        "If it is a single codebase, the filename which can be the entry point of the application",
    ),
    SchemaField(
        "workflow", "string",
        "If it is a single codebase, the possible workflow of the app",
    ),
    SchemaField(
        "treeSitterLanguage", "string",
        "The tree-sitter language binding name that can parse the source code files. "
        "This must always be present",
    ),
)

_REQUIRED = ("isMonorepo", "directories", "programmingLanguage", "treeSitterLanguage")


def json_schema() -> dict[str, Any]:
    """JSON-schema object used by OpenAI function tools and Anthropic tools."""
    properties: dict[str, Any] = {}
    for f in PROJECT_INFERENCE_FIELDS:
        prop: dict[str, Any] = {"type": f.kind, "description": f.description}
        if f.kind == "array":
            prop["items"] = {"type": "string"}
        properties[f.name] = prop
    return {"type": "object", "properties": properties, "required": list(_REQUIRED)}


def gemini_schema() -> dict[str, Any]:
    """Same schema in the upper-case type dialect Gemini function declarations use."""
    properties: dict[str, Any] = {}
    for f in PROJECT_INFERENCE_FIELDS:
        prop: dict[str, Any] = {"type": f.kind.upper(), "description": f.description}
        if f.kind == "array":
            prop["items"] = {"type": "STRING"}
        properties[f.name] = prop
    return {"type": "OBJECT", "properties": properties, "required": list(_REQUIRED)}


class InferenceParseError(ValueError):
    """Classification reply is not a JSON object."""


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


@dataclass
class ProjectInference:
    """Typed view of the classification tool payload."""

    is_monorepo: bool = False
    directories: list[str] = field(default_factory=list)
    programming_language: str = ""
    framework: str = ""
    dependencies_file: str = ""
    lock_file: str = ""
    entry_point_file: str = ""
    workflow: str = ""
    tree_sitter_language: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, text: str | None) -> ProjectInference:
        try:
            data = json.loads(text or "")
        except json.JSONDecodeError as exc:
            raise InferenceParseError(
                f"Could not parse project inference as JSON: {(text or '')[:200]!r}"
            ) from exc
        if not isinstance(data, dict):
            raise InferenceParseError(
                f"Project inference must be a JSON object, got {type(data).__name__}"
            )
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectInference:
        directories = data.get("directories") or []
        if isinstance(directories, str):
            directories = [directories]
        return cls(
            is_monorepo=data.get("isMonorepo") is True,
            directories=[d.strip() for d in directories if isinstance(d, str) and d.strip()],
            programming_language=_text(data.get("programmingLanguage")),
            framework=_text(data.get("framework")),
            dependencies_file=_text(data.get("dependenciesFile")),
            lock_file=_text(data.get("lockFile")),
            entry_point_file=_text(data.get("entryPointFile")),
            workflow=_text(data.get("workflow")),
            tree_sitter_language=_text(data.get("treeSitterLanguage")),
            raw=dict(data),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "isMonorepo": self.is_monorepo,
            "directories": list(self.directories),
            "programmingLanguage": self.programming_language,
            "framework": self.framework,
            "dependenciesFile": self.dependencies_file,
            "lockFile": self.lock_file,
            "entryPointFile": self.entry_point_file,
            "workflow": self.workflow,
            "treeSitterLanguage": self.tree_sitter_language,
        }

"""Model provider contract - one interface over three vendor SDKs.

ModelProvider owns everything vendor-neutral: prompt composition, user
expertise injection, input validation, the token budget check and the choice
between a single string and a lazy stream of text chunks. Subclasses in
providers.py only map a request onto their SDK and decode its replies.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Union

import httpx
import tiktoken

from . import prompts
from .tree import FileNode

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60.0  # seconds, handed to the SDK transports
TOKEN_ENCODING = "cl100k_base"

InferenceResult = Union[str, Iterator[str]]
TreeInput = Union[FileNode, Mapping[str, Any], str]


class ModelError(Exception):
    """Provider is misconfigured or a model cannot be resolved."""


class TokenLimitError(ModelError):
    """Prompt does not fit in the model's context window. Nothing was sent."""

    def __init__(self, tokens: int, limit: int, model: str):
        self.tokens = tokens
        self.limit = limit
        self.model = model
        super().__init__(
            f"Prompt is too long for {model}. It has {tokens} tokens, "
            f"but the limit is {limit}. The request was not sent."
        )


@dataclass(frozen=True)
class ModelCatalogEntry:
    name: str
    provider_id: str
    token_limit: int


@lru_cache(maxsize=1)
def _encoding() -> tiktoken.Encoding:
    return tiktoken.get_encoding(TOKEN_ENCODING)


def count_tokens(*texts: str) -> int:
    """Estimate the token count of the given prompt parts."""
    joined = "\n".join(t for t in texts if t)
    if not joined:
        return 0
    return len(_encoding().encode(joined, disallowed_special=()))


def transport_timeout() -> httpx.Timeout:
    return httpx.Timeout(REQUEST_TIMEOUT, connect=10.0)


def _require(value: str | None, what: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{what} is required")
    return value


def _serialize(tree: TreeInput) -> str:
    if isinstance(tree, FileNode):
        return tree.to_json()
    if isinstance(tree, str):
        return tree
    return json.dumps(tree)


class ModelProvider(ABC):
    """Vendor-neutral inference contract."""

    provider_id: str = ""
    display_name: str = ""
    api_key_name: str = ""
    default_model_key: str = ""
    DEFAULT_MODEL: str = ""
    DEFAULT_TOKEN_LIMIT: int = 8000
    MODEL_ALIASES: dict[str, str] = {}

    def __init__(self, config: Mapping[str, Any] | None = None, client: Any = None):
        self.config = dict(config or {})
        self._client = client

    # --- configuration ---

    def get_name(self) -> str:
        return self.display_name

    def _setting(self, key: str) -> str | None:
        """Config file value first, then the environment."""
        return self.config.get(key) or os.environ.get(key) or None

    def _api_key(self) -> str:
        key = self._setting(self.api_key_name)
        if not key:
            raise ModelError(
                f"{self.display_name} API key is not configured.\n"
                f"Run: sourcesailor setup --provider {self.provider_id} --api-key <key>\n"
                f"or export {self.api_key_name}=<key>"
            )
        return key

    def resolve_model(self, model_name: str | None = None) -> str:
        """Map an alias or empty name onto the vendor's model identifier.

        Priority: explicit argument, config default, environment default,
        hardcoded default.
        """
        name = model_name or self._setting(self.default_model_key) or self.DEFAULT_MODEL
        return self.MODEL_ALIASES.get(name, name)

    def token_limit(self, model: str) -> int:
        return self.DEFAULT_TOKEN_LIMIT

    def catalog(self, verbose: bool = False) -> list[ModelCatalogEntry]:
        return [
            ModelCatalogEntry(name=name, provider_id=self.provider_id, token_limit=self.token_limit(name))
            for name in self.list_models(verbose)
        ]

    # --- operations ---

    def infer_project_directory(
        self,
        tree: TreeInput,
        allow_streaming: bool = False,
        verbose: bool = False,
        user_expertise: str | None = None,
        model_name: str | None = None,
    ) -> str:
        """Classify the project. Always a single JSON string, never a stream."""
        tree_json = _require(_serialize(tree), "Directory structure")
        system = prompts.with_expertise(prompts.ROOT_UNDERSTANDING_PROMPT, user_expertise)
        user = prompts.project_directory_message(tree_json)
        model = self._prepare(model_name, system, user, verbose)
        if allow_streaming and verbose:
            logger.info("Project classification is structured output; not streaming")
        return self._complete_with_tool(model, system, user) or ""

    def infer_dependency(
        self,
        dependency_file: str,
        workflow: str,
        allow_streaming: bool = False,
        verbose: bool = False,
        user_expertise: str | None = None,
        model_name: str | None = None,
    ) -> InferenceResult:
        _require(dependency_file, "Dependency file content")
        _require(workflow, "Workflow")
        return self._infer(
            prompts.DEPENDENCY_PROMPT,
            prompts.dependency_message(dependency_file, workflow),
            allow_streaming, verbose, user_expertise, model_name,
        )

    def infer_code(
        self,
        tree: TreeInput,
        allow_streaming: bool = False,
        verbose: bool = False,
        user_expertise: str | None = None,
        model_name: str | None = None,
    ) -> InferenceResult:
        tree_json = _require(_serialize(tree), "Codebase")
        return self._infer(
            prompts.CODE_PROMPT, prompts.code_message(tree_json),
            allow_streaming, verbose, user_expertise, model_name,
        )

    def infer_interesting_code(
        self,
        tree: TreeInput,
        allow_streaming: bool = False,
        verbose: bool = False,
        user_expertise: str | None = None,
        model_name: str | None = None,
    ) -> InferenceResult:
        tree_json = _require(_serialize(tree), "Codebase")
        return self._infer(
            prompts.INTERESTING_CODE_PROMPT, prompts.code_message(tree_json),
            allow_streaming, verbose, user_expertise, model_name,
        )

    def generate_readme(
        self,
        directory_structure: TreeInput,
        dependency_inference: str,
        code_inference: str,
        allow_streaming: bool = False,
        verbose: bool = False,
        user_expertise: str | None = None,
        model_name: str | None = None,
    ) -> InferenceResult:
        structure = _require(_serialize(directory_structure), "Directory structure")
        user = prompts.readme_message(structure, dependency_inference or "", code_inference or "")
        system = prompts.with_expertise(prompts.README_PROMPT, user_expertise)
        model = self._prepare(model_name, system, user, verbose)
        if allow_streaming:
            return self._stream(model, system, user)
        return self._complete(model, system, user)

    def _infer(
        self,
        instructions: str,
        user: str,
        allow_streaming: bool,
        verbose: bool,
        user_expertise: str | None,
        model_name: str | None,
    ) -> InferenceResult:
        system = prompts.with_expertise(
            f"{prompts.COMMON_SYSTEM_PROMPT}\n\n{instructions}", user_expertise
        )
        model = self._prepare(model_name, system, user, verbose)
        if allow_streaming:
            return self._stream(model, system, user)
        return self._complete(model, system, user)

    def _prepare(self, model_name: str | None, system: str, user: str, verbose: bool) -> str:
        """Resolve the model and enforce its token budget before any request."""
        model = self.resolve_model(model_name)
        tokens = count_tokens(system, user)
        limit = self.token_limit(model)
        if verbose:
            logger.info("%s model %s: %d prompt tokens (limit %d)", self.display_name, model, tokens, limit)
            logger.debug("System prompt: %s", system)
            logger.debug("User prompt: %s", user)
        if tokens > limit:
            raise TokenLimitError(tokens, limit, model)
        return model

    # --- vendor mapping ---

    @abstractmethod
    def list_models(self, verbose: bool = False) -> list[str]:
        """Model identifiers available to the configured account."""

    @abstractmethod
    def _complete(self, model: str, system: str, user: str) -> str:
        """Send one request and return the full text reply."""

    @abstractmethod
    def _stream(self, model: str, system: str, user: str) -> Iterator[str]:
        """Send one streaming request and yield text fragments."""

    @abstractmethod
    def _complete_with_tool(self, model: str, system: str, user: str) -> str:
        """Force the classification tool and return its payload as JSON text."""

"""Vendor implementations of ModelProvider: OpenAI, Anthropic and Gemini.

Each maps the neutral request onto its SDK and decodes the three reply
shapes: full text, stream events, and a tool/function call payload.
Vendor exceptions are not caught here; callers see them unmodified.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any

import anthropic
import google.generativeai as genai
import openai

from . import schema
from .model import ModelProvider, transport_timeout

logger = logging.getLogger(__name__)


class OpenAIProvider(ModelProvider):
    """OpenAI chat completions (or any OpenAI-compatible endpoint)."""

    provider_id = "openai"
    display_name = "OpenAI"
    api_key_name = "OPENAI_API_KEY"
    default_model_key = "DEFAULT_OPENAI_MODEL"
    base_url_key = "OPENAI_BASE_URL"
    DEFAULT_MODEL = "gpt-4o"
    # unlisted models are assumed to have a modern context window
    DEFAULT_TOKEN_LIMIT = 128000
    MODEL_ALIASES = {
        "gpt4o": "gpt-4o",
        "gpt4o-mini": "gpt-4o-mini",
        "gpt4-turbo": "gpt-4-turbo",
        "gpt4": "gpt-4",
        "gpt3.5": "gpt-3.5-turbo",
    }
    # Longest prefix wins, so specific entries come first
    TOKEN_LIMITS: tuple[tuple[str, int], ...] = (
        ("gpt-5", 272000),
        ("gpt-4.5", 128000),
        ("chatgpt-4o", 128000),
        ("gpt-4o-mini", 128000),
        ("gpt-4o", 128000),
        ("gpt-4.1", 1000000),
        ("gpt-4-turbo", 128000),
        ("gpt-4-0125-preview", 128000),
        ("gpt-4-1106-preview", 128000),
        ("gpt-4-32k", 32000),
        ("gpt-4", 8000),
        ("gpt-3.5-turbo-16k", 16000),
        ("gpt-3.5-turbo", 4000),
        ("o1", 128000),
        ("o3", 200000),
        ("o4", 200000),
    )

    def _get_client(self) -> openai.OpenAI:
        if self._client is None:
            self._client = openai.OpenAI(
                api_key=self._api_key(),
                base_url=self._setting(self.base_url_key),
                timeout=transport_timeout(),
            )
        return self._client

    def token_limit(self, model: str) -> int:
        for prefix, limit in self.TOKEN_LIMITS:
            if model.startswith(prefix):
                return limit
        return self.DEFAULT_TOKEN_LIMIT

    def list_models(self, verbose: bool = False) -> list[str]:
        models = list(self._get_client().models.list())
        if verbose:
            logger.info("OpenAI returned %d models", len(models))
        models.sort(key=lambda m: getattr(m, "created", 0) or 0, reverse=True)
        return [m.id for m in models]

    def _messages(self, system: str, user: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    def _complete(self, model: str, system: str, user: str) -> str:
        response = self._get_client().chat.completions.create(
            model=model,
            messages=self._messages(system, user),
            temperature=0,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    def _stream(self, model: str, system: str, user: str) -> Iterator[str]:
        stream = self._get_client().chat.completions.create(
            model=model,
            messages=self._messages(system, user),
            temperature=0,
            stream=True,
        )
        return _openai_deltas(stream)

    def _complete_with_tool(self, model: str, system: str, user: str) -> str:
        response = self._get_client().chat.completions.create(
            model=model,
            messages=self._messages(system, user),
            temperature=0,
            tools=[{
                "type": "function",
                "function": {
                    "name": schema.TOOL_NAME,
                    "description": schema.TOOL_DESCRIPTION,
                    "parameters": schema.json_schema(),
                },
            }],
            tool_choice={"type": "function", "function": {"name": schema.TOOL_NAME}},
        )
        if not response.choices:
            return ""
        message = response.choices[0].message
        if message.tool_calls:
            # the tool is forced, so only the first call carries the answer
            return message.tool_calls[0].function.arguments or ""
        return message.content or ""


def _openai_deltas(stream: Iterable[Any]) -> Iterator[str]:
    for chunk in stream:
        if not chunk.choices:
            continue
        text = chunk.choices[0].delta.content
        if text:
            yield text


class AnthropicProvider(ModelProvider):
    """Anthropic Messages API."""

    provider_id = "anthropic"
    display_name = "Anthropic"
    api_key_name = "ANTHROPIC_API_KEY"
    default_model_key = "DEFAULT_ANTHROPIC_MODEL"
    DEFAULT_MODEL = "claude-3-5-sonnet-latest"
    DEFAULT_TOKEN_LIMIT = 200000
    MAX_OUTPUT_TOKENS = 4096
    MODEL_ALIASES = {
        "sonnet-3.5": "claude-3-5-sonnet-latest",
        "haiku-3.5": "claude-3-5-haiku-latest",
        "sonnet-3.7": "claude-3-7-sonnet-latest",
        "opus-3": "claude-3-opus-latest",
        "haiku-3": "claude-3-haiku-20240307",
        "sonnet-4": "claude-sonnet-4-0",
        "opus-4": "claude-opus-4-0",
    }

    def _get_client(self) -> anthropic.Anthropic:
        if self._client is None:
            self._client = anthropic.Anthropic(
                api_key=self._api_key(),
                timeout=transport_timeout(),
            )
        return self._client

    def list_models(self, verbose: bool = False) -> list[str]:
        models = [m.id for m in self._get_client().models.list()]
        if verbose:
            logger.info("Anthropic returned %d models", len(models))
        return models

    def _request(self, model: str, system: str, user: str) -> dict[str, Any]:
        return {
            "model": model,
            "max_tokens": self.MAX_OUTPUT_TOKENS,
            "system": system,
            "messages": [{"role": "user", "content": user}],
            "temperature": 0,
        }

    def _complete(self, model: str, system: str, user: str) -> str:
        response = self._get_client().messages.create(**self._request(model, system, user))
        return "".join(block.text for block in response.content if block.type == "text")

    def _stream(self, model: str, system: str, user: str) -> Iterator[str]:
        stream = self._get_client().messages.create(
            **self._request(model, system, user), stream=True
        )
        return _anthropic_deltas(stream)

    def _complete_with_tool(self, model: str, system: str, user: str) -> str:
        response = self._get_client().messages.create(
            **self._request(model, system, user),
            tools=[{
                "name": schema.TOOL_NAME,
                "description": schema.TOOL_DESCRIPTION,
                "input_schema": schema.json_schema(),
            }],
            tool_choice={"type": "tool", "name": schema.TOOL_NAME},
        )
        for block in response.content:
            if block.type == "tool_use":
                return json.dumps(block.input)
        return "".join(block.text for block in response.content if block.type == "text")


def _anthropic_deltas(stream: Iterable[Any]) -> Iterator[str]:
    # message_start, content_block_start/stop, message_delta and message_stop
    # carry no text
    for event in stream:
        if event.type != "content_block_delta":
            continue
        if event.delta.type == "text_delta" and event.delta.text:
            yield event.delta.text


class GeminiProvider(ModelProvider):
    """Google Gemini via google-generativeai.

    The SDK is configured module-wide, so ``client`` here is the ``genai``
    module itself (or a stand-in exposing ``list_models`` and
    ``GenerativeModel``).
    """

    provider_id = "gemini"
    display_name = "Gemini"
    api_key_name = "GEMINI_API_KEY"
    default_model_key = "DEFAULT_GEMINI_MODEL"
    DEFAULT_MODEL = "gemini-1.5-flash"
    DEFAULT_TOKEN_LIMIT = 32000
    MODEL_ALIASES = {
        "flash-1.5": "gemini-1.5-flash",
        "pro-1.5": "gemini-1.5-pro",
        "flash-2.0": "gemini-2.0-flash",
        "flash-2.5": "gemini-2.5-flash",
        "pro-2.5": "gemini-2.5-pro",
    }
    TOKEN_LIMITS: tuple[tuple[str, int], ...] = (
        ("gemini-1.5-pro", 2097152),
        ("gemini-1.5-flash", 1048576),
        ("gemini-2.0-flash", 1048576),
        ("gemini-2.5", 1048576),
        ("gemini-1.0-pro", 30720),
    )

    def __init__(self, config: Mapping[str, Any] | None = None, client: Any = None):
        super().__init__(config, client)
        self._token_limits: dict[str, int] = {}

    def _get_client(self) -> Any:
        if self._client is None:
            genai.configure(api_key=self._api_key())
            self._client = genai
        return self._client

    def token_limit(self, model: str) -> int:
        if model in self._token_limits:
            return self._token_limits[model]
        for prefix, limit in self.TOKEN_LIMITS:
            if model.startswith(prefix):
                return limit
        return self.DEFAULT_TOKEN_LIMIT

    def list_models(self, verbose: bool = False) -> list[str]:
        names = []
        for model in self._get_client().list_models():
            if "generateContent" not in (model.supported_generation_methods or ()):
                continue
            name = model.name.removeprefix("models/")
            if model.input_token_limit:
                self._token_limits[name] = model.input_token_limit
            names.append(name)
        if verbose:
            logger.info("Gemini returned %d models", len(names))
        return names

    def _model(self, model: str, system: str) -> Any:
        return self._get_client().GenerativeModel(
            model_name=model,
            system_instruction=system,
            generation_config={"temperature": 0},
        )

    def _complete(self, model: str, system: str, user: str) -> str:
        response = self._model(model, system).generate_content(user)
        return _gemini_text(response)

    def _stream(self, model: str, system: str, user: str) -> Iterator[str]:
        response = self._model(model, system).generate_content(user, stream=True)
        return (text for text in map(_gemini_text, response) if text)

    def _complete_with_tool(self, model: str, system: str, user: str) -> str:
        response = self._model(model, system).generate_content(
            user,
            tools=[{
                "function_declarations": [{
                    "name": schema.TOOL_NAME,
                    "description": schema.TOOL_DESCRIPTION,
                    "parameters": schema.gemini_schema(),
                }],
            }],
            tool_config={
                "function_calling_config": {
                    "mode": "ANY",
                    "allowed_function_names": [schema.TOOL_NAME],
                },
            },
        )
        for part in _gemini_parts(response):
            call = getattr(part, "function_call", None)
            if call is not None and call.name:
                return json.dumps(_plain(call.args))
        return _gemini_text(response)


def _gemini_parts(response: Any) -> list[Any]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates or candidates[0].content is None:
        return []
    return list(candidates[0].content.parts)


def _gemini_text(response: Any) -> str:
    # response.text raises when a candidate holds no text part, so read parts
    return "".join(getattr(part, "text", "") or "" for part in _gemini_parts(response))


def _plain(value: Any) -> Any:
    """Convert proto map/repeated composites into JSON-ready dicts and lists."""
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return [_plain(item) for item in value]
    return value

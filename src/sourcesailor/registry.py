"""Model registry - which provider serves which model.

Built once per invocation by asking every provider for its models. There is
no refresh: a provider's model list is read at most once per registry.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from .config import DEFAULT_MODEL_KEY
from .model import ModelCatalogEntry, ModelError, ModelProvider
from .providers import AnthropicProvider, GeminiProvider, OpenAIProvider

logger = logging.getLogger(__name__)


def _is_dated(name: str, stem: str) -> bool:
    """``stem-20241022`` style snapshot of ``stem``."""
    return name.startswith(stem + "-") and name[len(stem) + 1:].split("-")[0].isdigit()


class ModelRegistry:
    """Maps model names onto the ModelProvider that owns them."""

    def __init__(
        self,
        providers: Sequence[ModelProvider],
        config: Mapping[str, Any] | None = None,
    ):
        self.providers = list(providers)
        self.config = dict(config or {})
        self._catalog: dict[str, ModelCatalogEntry] = {}
        self._owners: dict[str, ModelProvider] = {}
        self._configured: list[ModelProvider] = []
        self._initialized = False

    def initialize(self, verbose: bool = False) -> None:
        """Query each provider once and merge the results.

        Later providers win on a name collision. Providers without an API
        key are skipped; vendor errors propagate.
        """
        if self._initialized:
            return
        for provider in self.providers:
            try:
                entries = provider.catalog(verbose)
            except ModelError as exc:
                logger.warning("Skipping %s: %s", provider.get_name(), str(exc).splitlines()[0])
                continue
            self._configured.append(provider)
            for entry in entries:
                self._catalog[entry.name] = entry
                self._owners[entry.name] = provider
            if verbose:
                logger.info("%s: %d models", provider.get_name(), len(entries))
        self._initialized = True

    @property
    def catalog(self) -> dict[str, ModelCatalogEntry]:
        self.initialize()
        return dict(self._catalog)

    def model_names(self) -> list[str]:
        return list(self.catalog)

    def _match(self, provider: ModelProvider, target: str) -> tuple[str, ModelProvider] | None:
        """Catalog entry for a vendor model id.

        Vendors list dated ids (``claude-3-5-sonnet-20241022``) while their
        moving aliases end in ``-latest``; the newest dated id wins.
        """
        if target in self._owners:
            return target, self._owners[target]
        stem = target.removesuffix("-latest")
        dated = sorted(
            (name for name, owner in self._owners.items() if owner is provider and _is_dated(name, stem)),
            reverse=True,
        )
        if dated:
            return dated[0], provider
        return None

    def _lookup(self, model_name: str | None) -> tuple[str, ModelProvider]:
        self.initialize()
        name = model_name or self.config.get(DEFAULT_MODEL_KEY) or ""
        if not name:
            # each provider's own default: config, environment, then hardcoded
            for provider in self._configured:
                found = self._match(provider, provider.resolve_model())
                if found:
                    return found
        elif name in self._owners:
            return name, self._owners[name]
        else:
            for provider in self._configured:
                alias_target = provider.MODEL_ALIASES.get(name)
                if alias_target:
                    # vendors accept their own aliases even when unlisted
                    return self._match(provider, alias_target) or (alias_target, provider)

        known = ", ".join(sorted(self._catalog)) or "none (is any provider configured?)"
        label = f"'{name}'" if name else "(no model given and no configured provider has a default)"
        raise ModelError(f"Model {label} not found. Available models: {known}")

    def resolve(self, model_name: str | None = None) -> ModelProvider:
        """Provider serving ``model_name`` (or the configured default model)."""
        return self._lookup(model_name)[1]

    def resolve_name(self, model_name: str | None = None) -> str:
        """Catalog name ``model_name`` resolves to (aliases expanded)."""
        return self._lookup(model_name)[0]

    def entry(self, model_name: str | None = None) -> ModelCatalogEntry:
        name, provider = self._lookup(model_name)
        if name in self._catalog:
            return self._catalog[name]
        return ModelCatalogEntry(name=name, provider_id=provider.provider_id, token_limit=provider.token_limit(name))


def default_registry(config: Mapping[str, Any] | None = None) -> ModelRegistry:
    """Registry over the OpenAI, Anthropic and Gemini providers."""
    return ModelRegistry(
        [OpenAIProvider(config), AnthropicProvider(config), GeminiProvider(config)],
        config=config,
    )

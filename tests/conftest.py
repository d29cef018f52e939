"""Shared fixtures."""

import pytest


def _word_count(*texts):
    return sum(len(t.split()) for t in texts if t)


@pytest.fixture(autouse=True)
def offline_token_counter(monkeypatch):
    """Count whitespace-separated words instead of fetching the tiktoken vocabulary."""
    monkeypatch.setattr("sourcesailor.model.count_tokens", _word_count)
    monkeypatch.setattr("sourcesailor.analysis.count_tokens", _word_count)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in (
        "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "OPENAI_BASE_URL",
        "DEFAULT_OPENAI_MODEL", "DEFAULT_ANTHROPIC_MODEL", "DEFAULT_GEMINI_MODEL",
    ):
        monkeypatch.delenv(key, raising=False)

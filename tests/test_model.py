"""Tests for the provider contract and the three vendor providers."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from sourcesailor import schema
from sourcesailor.model import ModelError, ModelProvider, TokenLimitError
from sourcesailor.providers import AnthropicProvider, GeminiProvider, OpenAIProvider
from sourcesailor.tree import FileNode


class FakeProvider(ModelProvider):
    provider_id = "fake"
    display_name = "Fake"
    api_key_name = "FAKE_API_KEY"
    default_model_key = "DEFAULT_FAKE_MODEL"
    DEFAULT_MODEL = "fake-1"
    DEFAULT_TOKEN_LIMIT = 1000
    MODEL_ALIASES = {"f1": "fake-1"}

    def __init__(self, config=None):
        super().__init__(config)
        self.calls = []

    def list_models(self, verbose=False):
        return ["fake-1", "fake-2"]

    def _complete(self, model, system, user):
        self.calls.append(("complete", model, system, user))
        return "full answer"

    def _stream(self, model, system, user):
        self.calls.append(("stream", model, system, user))
        return iter(["part one, ", "part two"])

    def _complete_with_tool(self, model, system, user):
        self.calls.append(("tool", model, system, user))
        return '{"isMonorepo": false}'


@pytest.fixture
def tree():
    return FileNode("proj", None, (FileNode("main.py", "print('hi')"),))


class TestModelProvider:
    """Vendor-neutral behaviour."""

    def test_project_directory_never_streams(self, tree):
        provider = FakeProvider()
        result = provider.infer_project_directory(tree, allow_streaming=True)
        assert result == '{"isMonorepo": false}'
        assert [c[0] for c in provider.calls] == ["tool"]
        assert "<FileStructure>" in provider.calls[0][3]

    def test_streaming_returns_iterator(self, tree):
        provider = FakeProvider()
        result = provider.infer_code(tree, allow_streaming=True)
        assert not isinstance(result, str)
        assert "".join(result) == "part one, part two"
        assert provider.calls[0][0] == "stream"

    def test_non_streaming_returns_string(self, tree):
        provider = FakeProvider()
        assert provider.infer_interesting_code(tree) == "full answer"
        assert "<Code>" in provider.calls[0][3]

    def test_tree_accepts_mapping_and_text(self):
        provider = FakeProvider()
        provider.infer_code({"name": "proj", "children": []})
        provider.infer_code('{"name": "proj"}')
        assert '"children": []' in provider.calls[0][3]
        assert provider.calls[1][3] == '<Code>{"name": "proj"}</Code>'

    def test_user_expertise_in_every_system_prompt(self, tree):
        provider = FakeProvider()
        provider.infer_project_directory(tree, user_expertise="Senior Go developer")
        provider.infer_dependency("{}", "API", user_expertise="Senior Go developer")
        provider.infer_code(tree, user_expertise="Senior Go developer")
        provider.generate_readme(tree, "deps", "code", user_expertise="Senior Go developer")
        for _, _, system, _ in provider.calls:
            assert "<UserExpertise>Senior Go developer</UserExpertise>" in system

    def test_no_expertise_tag_when_blank(self, tree):
        provider = FakeProvider()
        provider.infer_code(tree, user_expertise="  ")
        assert "UserExpertise" not in provider.calls[0][2]

    def test_dependency_message(self):
        provider = FakeProvider()
        provider.infer_dependency('{"deps": {}}', "web server")
        user = provider.calls[0][3]
        assert '<DependencyFile>{"deps": {}}</DependencyFile>' in user
        assert "<Workflow>web server</Workflow>" in user

    @pytest.mark.parametrize("dependency_file,workflow", [("", "API"), ("{}", ""), ("{}", "   "), (None, "API")])
    def test_dependency_requires_both_inputs(self, dependency_file, workflow):
        provider = FakeProvider()
        with pytest.raises(ValueError):
            provider.infer_dependency(dependency_file, workflow)
        assert provider.calls == []

    def test_blank_tree_rejected(self):
        provider = FakeProvider()
        with pytest.raises(ValueError):
            provider.infer_code("")
        with pytest.raises(ValueError):
            provider.infer_project_directory("   ")

    def test_token_limit_checked_before_sending(self):
        provider = FakeProvider()
        huge = "word " * 2000
        with pytest.raises(TokenLimitError) as exc_info:
            provider.infer_code(huge)
        assert exc_info.value.limit == 1000
        assert exc_info.value.tokens > 1000
        assert "limit is 1000" in str(exc_info.value)
        assert provider.calls == []

    def test_token_limit_error_is_model_error(self):
        assert issubclass(TokenLimitError, ModelError)

    def test_model_resolution_priority(self, monkeypatch):
        provider = FakeProvider(config={"DEFAULT_FAKE_MODEL": "from-config"})
        assert provider.resolve_model("explicit") == "explicit"
        assert provider.resolve_model() == "from-config"

        monkeypatch.setenv("DEFAULT_FAKE_MODEL", "from-env")
        assert FakeProvider().resolve_model() == "from-env"
        monkeypatch.delenv("DEFAULT_FAKE_MODEL")
        assert FakeProvider().resolve_model() == "fake-1"

    def test_alias_resolution(self, tree):
        provider = FakeProvider()
        provider.infer_code(tree, model_name="f1")
        assert provider.calls[0][1] == "fake-1"

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("FAKE_API_KEY", raising=False)
        with pytest.raises(ModelError, match="sourcesailor setup --provider fake"):
            FakeProvider()._api_key()

    def test_api_key_from_config_then_env(self, monkeypatch):
        assert FakeProvider({"FAKE_API_KEY": "cfg"})._api_key() == "cfg"
        monkeypatch.setenv("FAKE_API_KEY", "env")
        assert FakeProvider()._api_key() == "env"

    def test_catalog(self):
        entries = FakeProvider().catalog()
        assert [e.name for e in entries] == ["fake-1", "fake-2"]
        assert all(e.provider_id == "fake" and e.token_limit == 1000 for e in entries)


def _openai_message(content=None, tool_calls=None):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content, tool_calls=tool_calls))])


def _openai_chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


class TestOpenAIProvider:
    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def provider(self, client):
        return OpenAIProvider(config={"OPENAI_API_KEY": "sk-test"}, client=client)

    def test_complete(self, provider, client, tree):
        client.chat.completions.create.return_value = _openai_message("It is a script.")
        assert provider.infer_code(tree) == "It is a script."
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["messages"][0]["role"] == "system"
        assert "stream" not in kwargs

    def test_stream_skips_empty_chunks(self, provider, client, tree):
        client.chat.completions.create.return_value = iter([
            _openai_chunk("Hello"),
            SimpleNamespace(choices=[]),
            _openai_chunk(None),
            _openai_chunk(" world"),
        ])
        result = provider.infer_code(tree, allow_streaming=True)
        assert list(result) == ["Hello", " world"]
        assert client.chat.completions.create.call_args.kwargs["stream"] is True

    def test_tool_call_payload(self, provider, client, tree):
        call = SimpleNamespace(function=SimpleNamespace(arguments='{"isMonorepo": true, "directories": ["api"]}'))
        client.chat.completions.create.return_value = _openai_message(tool_calls=[call])
        result = provider.infer_project_directory(tree)
        assert json.loads(result) == {"isMonorepo": True, "directories": ["api"]}
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["tool_choice"] == {"type": "function", "function": {"name": schema.TOOL_NAME}}
        assert kwargs["tools"][0]["function"]["parameters"] == schema.json_schema()

    def test_tool_call_falls_back_to_text(self, provider, client, tree):
        client.chat.completions.create.return_value = _openai_message(content='{"isMonorepo": false}')
        assert provider.infer_project_directory(tree) == '{"isMonorepo": false}'

    def test_tool_call_empty_response(self, provider, client, tree):
        client.chat.completions.create.return_value = _openai_message()
        assert provider.infer_project_directory(tree) == ""

    def test_list_models_newest_first(self, provider, client):
        client.models.list.return_value = [
            SimpleNamespace(id="gpt-3.5-turbo", created=1),
            SimpleNamespace(id="gpt-4o", created=3),
            SimpleNamespace(id="gpt-4", created=2),
        ]
        assert provider.list_models() == ["gpt-4o", "gpt-4", "gpt-3.5-turbo"]

    def test_token_limits_by_prefix(self, provider):
        assert provider.token_limit("gpt-4o-mini-2024-07-18") == 128000
        assert provider.token_limit("gpt-4-0613") == 8000
        assert provider.token_limit("gpt-4.5-preview") == 128000
        assert provider.token_limit("chatgpt-4o-latest") == 128000
        assert provider.token_limit("some-local-model") == OpenAIProvider.DEFAULT_TOKEN_LIMIT

    def test_newer_models_are_not_held_to_old_limits(self, provider, client):
        client.chat.completions.create.return_value = _openai_message(content="ok")
        prompt = "word " * 20000
        assert provider.infer_code(prompt, model_name="gpt-5") == "ok"
        assert provider.infer_code(prompt, model_name="o3-mini") == "ok"
        assert client.chat.completions.create.call_count == 2

    def test_multiple_tool_calls_use_the_first(self, provider, client, tree):
        calls = [
            SimpleNamespace(function=SimpleNamespace(arguments='{"isMonorepo": false}')),
            SimpleNamespace(function=SimpleNamespace(arguments='{"isMonorepo": true}')),
        ]
        client.chat.completions.create.return_value = _openai_message(tool_calls=calls)
        assert json.loads(provider.infer_project_directory(tree)) == {"isMonorepo": False}

    def test_vendor_errors_propagate(self, provider, client, tree):
        client.chat.completions.create.side_effect = RuntimeError("rate limited")
        with pytest.raises(RuntimeError, match="rate limited"):
            provider.infer_code(tree)


class TestAnthropicProvider:
    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def provider(self, client):
        return AnthropicProvider(config={"ANTHROPIC_API_KEY": "test"}, client=client)

    def test_complete_joins_text_blocks(self, provider, client, tree):
        client.messages.create.return_value = SimpleNamespace(content=[
            SimpleNamespace(type="text", text="Part A. "),
            SimpleNamespace(type="text", text="Part B."),
        ])
        assert provider.infer_code(tree) == "Part A. Part B."
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"].startswith("You are a senior software developer")
        assert [m["role"] for m in kwargs["messages"]] == ["user"]
        assert kwargs["messages"][0]["content"].startswith("<Code>")

    def test_alias_maps_to_vendor_model(self, provider, client, tree):
        client.messages.create.return_value = SimpleNamespace(content=[])
        provider.infer_code(tree, model_name="sonnet-3.5")
        assert client.messages.create.call_args.kwargs["model"] == "claude-3-5-sonnet-latest"

    def test_stream_keeps_only_text_deltas(self, provider, client, tree):
        client.messages.create.return_value = iter([
            SimpleNamespace(type="message_start"),
            SimpleNamespace(type="content_block_start"),
            SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text="Hel")),
            SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text="lo")),
            SimpleNamespace(type="content_block_stop"),
            SimpleNamespace(type="message_delta"),
            SimpleNamespace(type="message_stop"),
        ])
        assert "".join(provider.infer_code(tree, allow_streaming=True)) == "Hello"

    def test_tool_use_payload(self, provider, client, tree):
        client.messages.create.return_value = SimpleNamespace(content=[
            SimpleNamespace(type="tool_use", input={"isMonorepo": False, "programmingLanguage": "Go"}),
        ])
        result = json.loads(provider.infer_project_directory(tree))
        assert result == {"isMonorepo": False, "programmingLanguage": "Go"}
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["tool_choice"] == {"type": "tool", "name": schema.TOOL_NAME}
        assert kwargs["tools"][0]["input_schema"] == schema.json_schema()

    def test_list_models(self, provider, client):
        client.models.list.return_value = [SimpleNamespace(id="claude-3-5-haiku-20241022")]
        assert provider.list_models() == ["claude-3-5-haiku-20241022"]


def _gemini_response(*parts):
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))])


class TestGeminiProvider:
    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def provider(self, client):
        return GeminiProvider(config={"GEMINI_API_KEY": "test"}, client=client)

    def test_complete(self, provider, client, tree):
        model = client.GenerativeModel.return_value
        model.generate_content.return_value = _gemini_response(SimpleNamespace(text="A CLI tool."))
        assert provider.infer_code(tree, user_expertise="Beginner") == "A CLI tool."
        kwargs = client.GenerativeModel.call_args.kwargs
        assert kwargs["model_name"] == "gemini-1.5-flash"
        assert "<UserExpertise>Beginner</UserExpertise>" in kwargs["system_instruction"]

    def test_stream(self, provider, client, tree):
        model = client.GenerativeModel.return_value
        model.generate_content.return_value = iter([
            _gemini_response(SimpleNamespace(text="one ")),
            SimpleNamespace(candidates=[]),
            _gemini_response(SimpleNamespace(text="two")),
        ])
        assert list(provider.infer_code(tree, allow_streaming=True)) == ["one ", "two"]
        assert model.generate_content.call_args.kwargs["stream"] is True

    def test_function_call_payload(self, provider, client, tree):
        model = client.GenerativeModel.return_value
        call = SimpleNamespace(name=schema.TOOL_NAME, args={"isMonorepo": True, "directories": ["a", "b"]})
        model.generate_content.return_value = _gemini_response(SimpleNamespace(text="", function_call=call))
        result = json.loads(provider.infer_project_directory(tree))
        assert result == {"isMonorepo": True, "directories": ["a", "b"]}
        kwargs = model.generate_content.call_args.kwargs
        assert kwargs["tool_config"]["function_calling_config"]["mode"] == "ANY"
        declaration = kwargs["tools"][0]["function_declarations"][0]
        assert declaration["parameters"] == schema.gemini_schema()

    def test_list_models_filters_and_records_limits(self, provider, client):
        client.list_models.return_value = [
            SimpleNamespace(name="models/gemini-1.5-flash", supported_generation_methods=["generateContent"],
                            input_token_limit=1048576),
            SimpleNamespace(name="models/text-embedding-004", supported_generation_methods=["embedContent"],
                            input_token_limit=2048),
            SimpleNamespace(name="models/gemini-exp", supported_generation_methods=["generateContent"],
                            input_token_limit=64000),
        ]
        assert provider.list_models() == ["gemini-1.5-flash", "gemini-exp"]
        assert provider.token_limit("gemini-exp") == 64000

    def test_alias(self, provider):
        assert provider.resolve_model("flash-1.5") == "gemini-1.5-flash"

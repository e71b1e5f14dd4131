"""Tests for the LLM client (no real API calls)."""

from unittest.mock import MagicMock, patch

import pytest

from fe1prep.llm.client import (
    LLMClient,
    LLMConfig,
    LLMConnectionError,
    LLMError,
    LLMResponse,
    LLMResponseError,
    Message,
)


def _completion(content, total_tokens=30):
    """Build a mock chat completion."""
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.model = "test-model"
    response.usage.prompt_tokens = 10
    response.usage.completion_tokens = total_tokens - 10
    response.usage.total_tokens = total_tokens
    return response


@pytest.fixture
def mock_openai_client():
    """Patch the OpenAI SDK client."""
    with patch("fe1prep.llm.client.OpenAI") as mock:
        mock_instance = MagicMock()
        mock.return_value = mock_instance
        yield mock_instance


class TestLLMConfig:
    """Tests for LLMConfig defaults."""

    def test_default_config(self):
        """Grading-oriented defaults."""
        config = LLMConfig()

        assert config.provider == "lmstudio"
        assert config.base_url == "http://localhost:1234/v1"
        assert config.temperature == 0.3
        assert config.max_tokens == 2048
        assert config.timeout == 120


class TestMessagesAndResponses:
    """Tests for Message and LLMResponse."""

    def test_message_to_dict(self):
        """Messages serialize to the chat API shape."""
        assert Message(role="user", content="Hi").to_dict() == {"role": "user", "content": "Hi"}

    def test_response_total_tokens(self):
        """Token count reads from usage, zero when absent."""
        response = LLMResponse(content="x", model="m", provider="p", usage={"total_tokens": 12})

        assert response.total_tokens == 12
        assert LLMResponse(content="x", model="m", provider="p").total_tokens == 0


class TestLLMClientChat:
    """Tests for LLMClient.chat."""

    def test_chat_success(self, mock_openai_client):
        """Successful completion returns content and usage."""
        mock_openai_client.chat.completions.create.return_value = _completion("Hello")

        client = LLMClient(config=LLMConfig())
        response = client.chat([Message(role="user", content="Hi")])

        assert response.content == "Hello"
        assert response.total_tokens == 30

    def test_empty_response(self, mock_openai_client):
        """No choices is a response error."""
        empty = MagicMock()
        empty.choices = []
        mock_openai_client.chat.completions.create.return_value = empty

        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMResponseError, match="Empty response"):
            client.chat([Message(role="user", content="Hi")])

    def test_connection_error(self, mock_openai_client):
        """Connection failures raise LLMConnectionError."""
        mock_openai_client.chat.completions.create.side_effect = Exception("Connection refused")

        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMConnectionError, match="Could not connect"):
            client.chat([Message(role="user", content="Hi")])

    def test_other_error(self, mock_openai_client):
        """Other failures raise LLMError."""
        mock_openai_client.chat.completions.create.side_effect = Exception("rate limited")

        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMError, match="rate limited"):
            client.chat([Message(role="user", content="Hi")])

    def test_json_mode_only_when_supported(self, mock_openai_client):
        """response_format is sent only to providers that accept it."""
        mock_openai_client.chat.completions.create.return_value = _completion("{}")

        LLMClient(config=LLMConfig(provider="lmstudio")).chat(
            [Message(role="user", content="Hi")], json_mode=True
        )
        lmstudio_kwargs = mock_openai_client.chat.completions.create.call_args.kwargs

        LLMClient(config=LLMConfig(provider="openai")).chat(
            [Message(role="user", content="Hi")], json_mode=True
        )
        openai_kwargs = mock_openai_client.chat.completions.create.call_args.kwargs

        assert "response_format" not in lmstudio_kwargs
        assert openai_kwargs["response_format"] == {"type": "json_object"}


class TestLLMClientJson:
    """Tests for LLMClient.chat_json and simple_json."""

    def test_direct_json(self, mock_openai_client):
        """Plain JSON parses directly."""
        mock_openai_client.chat.completions.create.return_value = _completion('{"score": 70}')

        result = LLMClient(config=LLMConfig()).simple_json("sys", "user")

        assert result.data == {"score": 70}
        assert result.total_tokens == 30

    def test_json_in_markdown_block(self, mock_openai_client):
        """JSON inside a fenced block is extracted."""
        mock_openai_client.chat.completions.create.return_value = _completion(
            'Here:\n```json\n{"score": 55}\n```'
        )

        result = LLMClient(config=LLMConfig()).simple_json("sys", "user")

        assert result.data == {"score": 55}

    def test_think_tags_are_stripped(self, mock_openai_client):
        """Reasoning tags are removed before parsing."""
        mock_openai_client.chat.completions.create.return_value = _completion(
            '<think>{"score": 1}</think>{"score": 90}'
        )

        result = LLMClient(config=LLMConfig()).simple_json("sys", "user")

        assert result.data == {"score": 90}

    def test_repair_retry_sums_tokens(self, mock_openai_client):
        """An unparseable reply is repaired once; tokens from both calls count."""
        mock_openai_client.chat.completions.create.side_effect = [
            _completion("not json at all", total_tokens=40),
            _completion('{"score": 61}', total_tokens=25),
        ]

        result = LLMClient(config=LLMConfig()).simple_json("sys", "user")

        assert result.data == {"score": 61}
        assert result.total_tokens == 65
        assert mock_openai_client.chat.completions.create.call_count == 2

    def test_invalid_after_retry(self, mock_openai_client):
        """Still unparseable after repair raises LLMResponseError."""
        mock_openai_client.chat.completions.create.return_value = _completion("nope")

        with pytest.raises(LLMResponseError, match="Could not obtain valid JSON"):
            LLMClient(config=LLMConfig()).simple_json("sys", "user")

    def test_json_array_is_rejected(self, mock_openai_client):
        """Only JSON objects are accepted."""
        mock_openai_client.chat.completions.create.return_value = _completion("[1, 2, 3]")

        with pytest.raises(LLMResponseError):
            LLMClient(config=LLMConfig()).simple_json("sys", "user")

"""
Tests for the language model adapters.
"""

from unittest.mock import MagicMock, patch

import ollama
import pytest

from recall.agents.llm import OllamaLanguageModel
from recall.agents.mock_llm import MockLanguageModel
from recall.core.errors import LanguageModelError
from recall.core.memory import COMPRESSION_PROMPT
from recall.core.validation import CompressionResult, parse_llm_json


class TestOllamaLanguageModel:
    """Test the Ollama chat adapter."""

    @patch("recall.agents.llm.ollama.Client")
    def test_chat(self, mock_client_cls):
        """Test a successful completion."""
        mock_client = MagicMock()
        mock_client.chat.return_value = {"message": {"content": "Hello!"}}
        mock_client_cls.return_value = mock_client

        model = OllamaLanguageModel("llama3.1:8b", host="http://ollama:11434", timeout=12, temperature=0.1)
        result = model.chat([{"role": "user", "content": "hi"}], {"num_ctx": 4096})

        assert result.text == "Hello!"
        assert result.model_used == "llama3.1:8b"
        mock_client_cls.assert_called_once_with(host="http://ollama:11434", timeout=12)
        mock_client.chat.assert_called_once_with(
            model="llama3.1:8b",
            messages=[{"role": "user", "content": "hi"}],
            options={"temperature": 0.1, "num_ctx": 4096},
        )

    @patch("recall.agents.llm.ollama.Client")
    def test_chat_errors_wrapped(self, mock_client_cls):
        """Test that API and transport errors become LanguageModelError."""
        mock_client_cls.return_value.chat.side_effect = ollama.ResponseError("model not found")
        with pytest.raises(LanguageModelError):
            OllamaLanguageModel().chat([{"role": "user", "content": "hi"}])

        mock_client_cls.return_value.chat.side_effect = TimeoutError("read timed out")
        with pytest.raises(LanguageModelError):
            OllamaLanguageModel().chat([{"role": "user", "content": "hi"}])

    @patch("recall.agents.llm.ollama.Client")
    def test_stream_chat(self, mock_client_cls):
        """Test that streamed tokens are delivered and joined."""
        mock_client_cls.return_value.chat.return_value = iter([
            {"message": {"content": "Hel"}},
            {"message": {"content": "lo"}},
        ])
        tokens = []

        result = OllamaLanguageModel().stream_chat([{"role": "user", "content": "hi"}], on_token=tokens.append)

        assert tokens == ["Hel", "lo"]
        assert result.text == "Hello"
        assert result.metadata["streamed"] is True

    @patch("recall.agents.llm.ollama.Client")
    def test_is_available(self, mock_client_cls):
        """Test model availability from the server's model list."""
        mock_client_cls.return_value.list.return_value = {"models": [{"model": "llama3.1:8b"}]}
        assert OllamaLanguageModel("llama3.1:8b").is_available()

        mock_client_cls.return_value.list.side_effect = ConnectionError("refused")
        assert not OllamaLanguageModel("llama3.1:8b").is_available()


class TestMockLanguageModel:
    """Test the deterministic mock."""

    def test_scripted_replies_in_order(self):
        """Test that scripted replies and errors are returned in order."""
        model = MockLanguageModel(["first", LanguageModelError("down")])

        assert model.chat([{"role": "user", "content": "a"}]).text == "first"
        with pytest.raises(LanguageModelError):
            model.chat([{"role": "user", "content": "b"}])
        assert len(model.calls) == 2

    def test_generated_compression_is_valid(self):
        """Test that unscripted compression prompts get contract-valid JSON."""
        model = MockLanguageModel()
        reply = model.chat([{"role": "system", "content": COMPRESSION_PROMPT},
                            {"role": "user", "content": "user: hello"}])

        result = parse_llm_json(reply.text, CompressionResult)
        assert result.importance_score == 5

    def test_stream_default_delivers_whole_reply(self):
        """Test the default streaming behaviour."""
        tokens = []
        result = MockLanguageModel(["all at once"]).stream_chat([], on_token=tokens.append)

        assert tokens == ["all at once"]
        assert result.text == "all at once"

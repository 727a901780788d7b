"""Tests for the LiteLLM embedding and tokenizer wrappers."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from opencontext.rag.llm_client import LiteLLMEmbedder, LiteLLMTokenizer, validate_api_key

# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("openai/text-embedding-3-small")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/text-embedding-3-small")  # should not raise


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/nomic-embed-text")


def test_validate_api_key_bare_model_treated_as_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError):
        validate_api_key("text-embedding-3-small")


# ------------------------------------------------------------------
# LiteLLMEmbedder
# ------------------------------------------------------------------


def _embedding_response(vectors):
    response = MagicMock()
    response.data = [{"embedding": v} for v in vectors]
    return response


def test_embed_batch_returns_vectors_in_order():
    response = _embedding_response([[0.1, 0.2], [0.3, 0.4]])
    with patch("opencontext.rag.llm_client.litellm.embedding", return_value=response) as mock:
        vectors = LiteLLMEmbedder("ollama/nomic-embed-text").embed_batch(["a", "b"])

    assert vectors == [[0.1, 0.2], [0.3, 0.4]]
    kwargs = mock.call_args.kwargs
    assert kwargs["model"] == "ollama/nomic-embed-text"
    assert kwargs["input"] == ["a", "b"]
    assert "api_base" not in kwargs


def test_embed_batch_passes_api_base():
    response = _embedding_response([[1.0]])
    with patch("opencontext.rag.llm_client.litellm.embedding", return_value=response) as mock:
        LiteLLMEmbedder("ollama/nomic-embed-text", api_base="http://gpu:11434").embed_batch(["a"])
    assert mock.call_args.kwargs["api_base"] == "http://gpu:11434"


def test_embed_batch_rejects_short_response():
    response = _embedding_response([[1.0]])
    with patch("opencontext.rag.llm_client.litellm.embedding", return_value=response):
        with pytest.raises(ValueError, match="expected 2 embeddings"):
            LiteLLMEmbedder("m").embed_batch(["a", "b"])


def test_embed_batch_propagates_provider_errors():
    with patch(
        "opencontext.rag.llm_client.litellm.embedding", side_effect=ConnectionError("refused")
    ):
        with pytest.raises(ConnectionError):
            LiteLLMEmbedder("m").embed_batch(["a"])


# ------------------------------------------------------------------
# LiteLLMTokenizer
# ------------------------------------------------------------------


def test_tokenizer_uses_token_counter():
    with patch("opencontext.rag.llm_client.litellm.token_counter", return_value=7) as mock:
        tokenizer = LiteLLMTokenizer("gpt-4", "tiktoken-cl100k_base")
        assert tokenizer.count("some text") == 7
    mock.assert_called_once_with(model="gpt-4", text="some text")
    assert tokenizer.name == "tiktoken-cl100k_base"


def test_tokenizer_empty_text_is_zero():
    with patch("opencontext.rag.llm_client.litellm.token_counter") as mock:
        assert LiteLLMTokenizer().count("") == 0
    mock.assert_not_called()


def test_tokenizer_falls_back_to_char_estimate():
    with patch(
        "opencontext.rag.llm_client.litellm.token_counter", side_effect=Exception("unknown model")
    ) as mock:
        tokenizer = LiteLLMTokenizer("unknown/model")
        assert tokenizer.count("a" * 400) == 100
        assert tokenizer.count("abc") == 1
    # fallback is sticky
    assert mock.call_count == 1

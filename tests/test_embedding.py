"""Tests for the local and Gemini embedding providers."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import httpx
import numpy as np
import pytest

from deepnotes.config import AppConfig
from deepnotes.embedding.base import ProviderError, load_provider
from deepnotes.embedding.encoder import EmbeddingConfig, EmbeddingModel
from deepnotes.embedding.gemini import GEMINI_BASE_URL, GeminiEmbedder


class TestEmbeddingModel:
    """Test the SentenceTransformer wrapper."""

    @patch("deepnotes.embedding.encoder.SentenceTransformer")
    def test_init_uses_config(self, mock_st: MagicMock) -> None:
        mock_st.return_value.get_sentence_embedding_dimension.return_value = 384
        config = EmbeddingConfig(model_name="test-model", backend="onnx", device="cpu")

        model = EmbeddingModel(config)

        mock_st.assert_called_once_with("test-model", backend="onnx", device="cpu")
        assert model.dimension == 384

    @patch("deepnotes.embedding.encoder.SentenceTransformer")
    def test_embed_returns_float32(self, mock_st: MagicMock) -> None:
        mock_st.return_value.get_sentence_embedding_dimension.return_value = 3
        mock_st.return_value.encode.return_value = np.array([[1.0, 2.0, 3.0]], dtype="float64")

        model = EmbeddingModel()
        vector = model.embed_query("hello")

        assert vector.dtype == np.float32
        assert vector.tolist() == [1.0, 2.0, 3.0]
        kwargs = mock_st.return_value.encode.call_args.kwargs
        assert kwargs["normalize_embeddings"] is True
        assert kwargs["batch_size"] == 16

    @patch("deepnotes.embedding.encoder.SentenceTransformer")
    def test_callable(self, mock_st: MagicMock) -> None:
        mock_st.return_value.get_sentence_embedding_dimension.return_value = 2
        mock_st.return_value.encode.return_value = np.ones((1, 2))

        assert EmbeddingModel()("text").shape == (2,)

    @patch("deepnotes.embedding.encoder.SentenceTransformer")
    def test_runtime_errors_become_provider_errors(self, mock_st: MagicMock) -> None:
        mock_st.return_value.get_sentence_embedding_dimension.return_value = 2
        mock_st.return_value.encode.side_effect = RuntimeError("out of memory")

        with pytest.raises(ProviderError, match="out of memory"):
            EmbeddingModel().embed_query("text")


def gemini(handler) -> GeminiEmbedder:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return GeminiEmbedder("test-key", client=client)


class TestGeminiEmbedder:
    def test_requires_api_key(self) -> None:
        with pytest.raises(ProviderError, match="API key"):
            GeminiEmbedder("")

    def test_successful_request(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-goog-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"embedding": {"values": [0.1, 0.2, 0.3]}})

        vector = gemini(handler).embed_query("hello world")

        assert seen["url"] == f"{GEMINI_BASE_URL}/models/gemini-embedding-001:embedContent"
        assert seen["key"] == "test-key"
        assert seen["body"] == {"content": {"parts": [{"text": "hello world"}]}}
        assert vector.dtype == np.float32
        assert vector.tolist() == pytest.approx([0.1, 0.2, 0.3])

    def test_api_error_message_surfaced(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"message": "Quota exceeded"}})

        with pytest.raises(ProviderError) as excinfo:
            gemini(handler).embed_query("text")

        assert str(excinfo.value) == "Gemini Embedding API error (429): Quota exceeded"

    def test_api_error_with_plain_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="upstream exploded")

        with pytest.raises(ProviderError, match=r"\(500\): upstream exploded"):
            gemini(handler).embed_query("text")

    def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ProviderError, match="timed out"):
            gemini(handler).embed_query("text")

    def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderError, match="request failed"):
            gemini(handler).embed_query("text")

    def test_malformed_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"not json")

        with pytest.raises(ProviderError, match="Unexpected"):
            gemini(handler).embed_query("text")

    def test_missing_values_give_empty_vector(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"embedding": {}})

        assert gemini(handler).embed_query("text").size == 0


class TestLoadProvider:
    def test_gemini(self) -> None:
        provider = load_provider(AppConfig(provider="gemini", gemini_api_key="k"))

        assert isinstance(provider, GeminiEmbedder)
        provider.close()

    def test_gemini_without_key(self) -> None:
        with pytest.raises(ProviderError):
            load_provider(AppConfig(provider="gemini"))

    @patch("deepnotes.embedding.encoder.SentenceTransformer")
    def test_local(self, mock_st: MagicMock) -> None:
        mock_st.return_value.get_sentence_embedding_dimension.return_value = 4

        provider = load_provider(AppConfig(model_name="tiny-model"))

        assert isinstance(provider, EmbeddingModel)
        assert mock_st.call_args[0][0] == "tiny-model"

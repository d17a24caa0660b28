"""Remote embeddings through the Gemini ``embedContent`` endpoint."""

from __future__ import annotations

import logging

import httpx
import numpy as np

from deepnotes.embedding.base import ProviderError

LOGGER = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_MODEL = "gemini-embedding-001"
GEMINI_DIMENSION = 768

# Timeout for a single embedding request
REQUEST_TIMEOUT = 30.0  # seconds


class GeminiEmbedder:
    """Embeds one text per request.

    Requests are sent one at a time; the indexer never issues concurrent
    calls, which keeps us inside the API's rate limits.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = GEMINI_MODEL,
        dimension: int = GEMINI_DIMENSION,
        base_url: str = GEMINI_BASE_URL,
        client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ProviderError("Gemini API key is required but not set.")
        self.model = model
        self.dimension = dimension
        self._url = f"{base_url.rstrip('/')}/models/{model}:embedContent"
        self._client = client or httpx.Client(timeout=REQUEST_TIMEOUT)
        self._headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}

    def close(self) -> None:
        self._client.close()

    def embed_query(self, text: str) -> np.ndarray:
        payload = {"content": {"parts": [{"text": text}]}}
        try:
            response = self._client.post(self._url, json=payload, headers=self._headers)
        except httpx.TimeoutException as exc:
            raise ProviderError("Gemini embedding request timed out") from exc
        except httpx.RequestError as exc:
            raise ProviderError(f"Gemini embedding request failed: {exc}") from exc

        if not response.is_success:
            raise ProviderError(
                f"Gemini Embedding API error ({response.status_code}): {_error_message(response)}"
            )

        try:
            values = response.json().get("embedding", {}).get("values") or []
        except (ValueError, AttributeError) as exc:
            raise ProviderError("Unexpected Gemini embedding response") from exc

        LOGGER.debug("Embedded %d chars (dimension: %d)", len(text), len(values))
        return np.asarray(values, dtype="float32")

    def __call__(self, text: str) -> np.ndarray:
        return self.embed_query(text)


def _error_message(response: httpx.Response) -> str:
    """Prefer the API's own error message over the raw body."""
    try:
        message = response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return response.text[:200]
    return str(message)

"""Embedding provider capability shared by the local and remote backends."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Protocol, Sequence, Union

import numpy as np

if TYPE_CHECKING:
    from deepnotes.config import AppConfig

Vector = Union[np.ndarray, Sequence[float]]
EmbedFn = Callable[[str], Vector]


class ProviderError(RuntimeError):
    """An embedding call failed (network, auth, rate limit, bad response)."""


class EmbeddingProvider(Protocol):
    """Produces fixed-dimension vectors for text.

    ``dimension`` is fixed for the lifetime of an index; switching providers
    or models requires clearing the index.
    """

    dimension: int

    def embed_query(self, text: str) -> np.ndarray: ...

    def __call__(self, text: str) -> np.ndarray: ...


def load_provider(config: "AppConfig") -> EmbeddingProvider:
    """Instantiate the provider selected by ``config.provider``."""
    if config.provider == "gemini":
        from deepnotes.embedding.gemini import GeminiEmbedder

        return GeminiEmbedder(
            api_key=config.gemini_api_key or "",
            model=config.gemini_model,
        )
    if config.provider == "local":
        from deepnotes.embedding.encoder import EmbeddingConfig, EmbeddingModel

        return EmbeddingModel(EmbeddingConfig(model_name=config.model_name))
    raise ValueError(f"Unknown embedding provider: {config.provider!r}")

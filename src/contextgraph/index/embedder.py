from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from ..errors import BackendUnavailable


class Embedder(ABC):
    """Turns chunk text into vectors. Rows are expected to be L2-normalized."""

    name: str = "embedder"

    @abstractmethod
    def embed(self, texts: list[str]) -> np.ndarray:
        """Return float32 vectors of shape [len(texts), dimensions()]."""

    @abstractmethod
    def dimensions(self) -> int:
        pass

    def embed_query(self, query: str) -> np.ndarray:
        return self.embed([query])[0]


class FastEmbedEmbedder(Embedder):
    name = "fastembed"

    def __init__(self, model_name: str, *, model: Any = None):
        self.model_name = model_name
        self._model = model if model is not None else _load_model(model_name)
        self._dim: int | None = None

    def _run(self, texts: list[str]) -> np.ndarray:
        try:
            vectors = np.array(list(self._model.embed(texts)), dtype=np.float32)
        except Exception as e:
            raise BackendUnavailable(f"Embedding with {self.model_name} failed: {e}") from e
        if vectors.ndim != 2 or vectors.shape[0] != len(texts):
            raise BackendUnavailable(f"{self.model_name} returned vectors of shape {vectors.shape}")
        return vectors

    def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dimensions()), dtype=np.float32)

        vectors = l2_normalize(self._run(texts))
        if self._dim is None:
            self._dim = int(vectors.shape[1])
        return vectors

    def dimensions(self) -> int:
        if self._dim is None:
            self._dim = int(self._run(["dimension check"]).shape[1])
        return self._dim


def _load_model(model_name: str) -> Any:
    # Import here so schema/graph work can run without embedding deps.
    from fastembed import TextEmbedding  # type: ignore

    try:
        return TextEmbedding(model_name=model_name)
    except Exception as e:
        raise BackendUnavailable(f"Could not load embedding model {model_name}: {e}") from e


def l2_normalize(x: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    norm = np.linalg.norm(x, axis=1, keepdims=True)
    return x / np.maximum(norm, eps)

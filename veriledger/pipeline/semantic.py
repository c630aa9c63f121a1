"""
Semantic similarity oracle.

Optional enrichment for claim structuring: embeds the full text, the subject and
the object, then scores coherence as the mean cosine similarity of subject and
object against the full text. Oracle failures raise OracleError; callers skip
enrichment rather than failing the parse.
"""

import hashlib
import logging
import math
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import numpy as np
import requests

from ..errors import OracleError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_ENDPOINT = "https://api-inference.huggingface.co/pipeline/feature-extraction"
DEFAULT_TIMEOUT_SECONDS = 10
COHERENCE_THRESHOLD = 0.7
MAX_CACHE_ENTRIES = 1000


def _text_hash(text: str) -> str:
    return hashlib.sha256(text.lower().strip().encode("utf-8")).hexdigest()[:16]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for empty, zero or mismatched vectors."""
    va = np.asarray(a, dtype=float).ravel()
    vb = np.asarray(b, dtype=float).ravel()
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class SemanticOracle(ABC):
    """Produces embedding vectors for text."""

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Return an embedding vector. Raises OracleError on failure."""

    def is_available(self) -> bool:
        return True


class HuggingFaceOracle(SemanticOracle):
    """Embeddings from the hosted Hugging Face feature-extraction endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key.strip() if api_key else None
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._cache: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return bool(self.api_key)

    def embed(self, text: str) -> List[float]:
        if not self.is_available():
            raise OracleError("Hugging Face API key not configured")

        key = _text_hash(text)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            response = self.session.post(
                f"{self.endpoint}/{self.model}",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"inputs": text, "options": {"wait_for_model": True}},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise OracleError(f"Embedding request failed: {e}") from e
        except ValueError as e:
            raise OracleError(f"Embedding response is not JSON: {e}") from e

        vector = self._pool(payload)

        with self._lock:
            if len(self._cache) >= MAX_CACHE_ENTRIES:
                self._cache.clear()
            self._cache[key] = vector
        return vector

    @staticmethod
    def _pool(payload) -> List[float]:
        """Mean-pool token embeddings down to a single vector."""
        try:
            array = np.asarray(payload, dtype=float)
        except (TypeError, ValueError) as e:
            raise OracleError(f"Unexpected embedding payload: {e}") from e

        while array.ndim > 2 and array.shape[0] == 1:
            array = array[0]
        if array.ndim == 2:
            array = array.mean(axis=0)
        if array.ndim != 1 or array.size == 0:
            raise OracleError(f"Unexpected embedding shape {array.shape}")
        if not np.isfinite(array).all():
            raise OracleError("Embedding contains non-finite values")
        return array.tolist()


def semantic_coherence(oracle: SemanticOracle, text: str, subject: str, obj: str) -> float:
    """Mean cosine similarity of subject and object against the full text.

    Raises:
        OracleError: If embedding fails or the result is NaN or infinite
    """
    text_vector = oracle.embed(text)
    subject_vector = oracle.embed(subject)
    object_vector = oracle.embed(obj)
    coherence = (cosine_similarity(text_vector, subject_vector) + cosine_similarity(text_vector, object_vector)) / 2
    if not math.isfinite(coherence):
        raise OracleError(f"Semantic coherence is not finite: {coherence}")
    return coherence

"""Embedding abstractions and a deterministic baseline implementation."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt

_TOKEN_PATTERN = re.compile(r"[\w#+.]+", flags=re.UNICODE)


class Embedder(ABC):
    """Embedding service used for expert profiles and queries."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Embed one text."""

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]


class HashingEmbedder(Embedder):
    """Deterministic token-hashing embedding without external model calls.

    Used for local runs and tests. In production, swap in a provider-backed
    embedder with the same interface.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = [token.strip(".") for token in _TOKEN_PATTERN.findall(text.lower())]
        tokens = [token for token in tokens if token]
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)

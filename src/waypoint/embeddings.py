"""
Waypoint Embeddings -- deterministic, offline text fingerprints.

Provides:
- EmbeddingGenerator.embed(text) → D-dim unit vector (D from config)
- cosine_similarity(a, b) with zero-vector safety
- word_jaccard(a, b) for lexical overlap

There is no language model here. Each token is hashed to a seed, the seed is
expanded with a linear congruential generator, and token vectors are averaged
and L2-normalised. Texts sharing (canonicalised) words land close together;
anything beyond that is coincidence. Treat "semantic" search results as
ranking hints, not as understanding of meaning.
"""

import logging
import math
import re
import threading
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

from waypoint.errors import ValidationError

__all__ = [
    "EmbeddingGenerator",
    "cosine_similarity",
    "word_jaccard",
    "content_words",
    "string_hash",
]

logger = logging.getLogger("waypoint.embeddings")

_LCG_MULTIPLIER = 1664525
_LCG_INCREMENT = 1013904223
_MOD32 = 2 ** 32

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_WORD_SPLIT_RE = re.compile(r"\W+")

_STOPWORDS = frozenset(
    {
        "a", "about", "an", "and", "are", "as", "at", "be", "been", "but", "by",
        "can", "did", "do", "does", "for", "from", "had", "has", "have", "he",
        "her", "his", "how", "i", "if", "in", "into", "is", "it", "its", "let",
        "me", "my", "no", "not", "of", "on", "or", "our", "she", "so", "that",
        "the", "their", "them", "then", "there", "these", "they", "this", "to",
        "too", "was", "we", "were", "what", "when", "which", "who", "will",
        "with", "would", "you", "your",
    }
)

# Domain words that should share a seed so short related phrases stay close.
_SEED_TABLE: Dict[str, str] = {
    "db": "database",
    "databases": "database",
    "postgres": "database",
    "postgresql": "database",
    "mysql": "database",
    "sqlite": "database",
    "deployment": "deploy",
    "deployments": "deploy",
    "deploying": "deploy",
    "deployed": "deploy",
    "release": "deploy",
    "err": "error",
    "errors": "error",
    "failure": "error",
    "failed": "error",
    "exception": "error",
    "bug": "error",
    "cfg": "config",
    "configuration": "config",
    "configure": "config",
    "settings": "config",
    "servers": "server",
    "host": "server",
    "vm": "server",
    "backups": "backup",
    "snapshot": "backup",
    "monitor": "monitoring",
    "alerts": "monitoring",
    "alert": "monitoring",
    "auth": "security",
    "authentication": "security",
    "endpoint": "api",
    "endpoints": "api",
    "fixed": "fix",
    "fixes": "fix",
    "patch": "fix",
}

# Lightweight suffix stemming (same list the keyword scorer uses)
_SUFFIXES = ("ation", "tion", "ment", "ing", "ness", "ity", "ous", "ive", "able", "ed", "er", "es", "ly", "al", "s")


def string_hash(text: str) -> int:
    """31-multiplier string hash folded to 32 bits, returned as a non-negative int."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= _MOD32
    return abs(h)


def _seeded_vector(seed_text: str, dimension: int) -> List[float]:
    h = string_hash(seed_text)
    vector = []
    for _ in range(dimension):
        h = (h * _LCG_MULTIPLIER + _LCG_INCREMENT) % _MOD32
        vector.append((h / _MOD32) * 2 - 1)
    return _normalize(vector)


def _normalize(vector: List[float]) -> List[float]:
    magnitude = math.sqrt(sum(x * x for x in vector))
    if magnitude == 0:
        return vector
    return [x / magnitude for x in vector]


def _stem(token: str) -> str:
    for suffix in _SUFFIXES:
        if token.endswith(suffix) and len(token) - len(suffix) >= 3:
            return token[: -len(suffix)]
    return token


def canonical_tokens(text: str) -> List[str]:
    """Lower-case word tokens with stop-words dropped, seed-table and stem applied."""
    tokens = []
    for raw in _TOKEN_RE.findall(text.lower()):
        if raw in _STOPWORDS:
            continue
        mapped = _SEED_TABLE.get(raw)
        tokens.append(mapped if mapped else _stem(raw))
    return tokens


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity. 0.0 when either side has no magnitude."""
    if len(a) != len(b):
        raise ValidationError(f"Vector dimension mismatch: {len(a)} != {len(b)}")
    dot = norm_a = norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def content_words(text: str, min_len: int = 4) -> frozenset:
    """Normalised word set used for Jaccard overlap (words of ``min_len``+ chars)."""
    return frozenset(w for w in _WORD_SPLIT_RE.split((text or "").lower()) if len(w) >= min_len)


def word_jaccard(text_a: str, text_b: str) -> float:
    """Jaccard similarity of the two texts' word sets (words longer than 3 chars)."""
    words_a = content_words(text_a)
    words_b = content_words(text_b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


class EmbeddingGenerator:
    """Maps text to a fixed-length unit vector. Pure and deterministic.

    Empty or whitespace-only text maps to the all-zero vector ("no signal");
    similarity against it is always 0.
    """

    def __init__(self, dimension: int = 300, cache_size: int = 512):
        if dimension < 1:
            raise ValidationError("Embedding dimension must be positive")
        self.dimension = dimension
        self._cache: OrderedDict = OrderedDict()
        self._cache_max = cache_size
        self._token_cache: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def zero_vector(self) -> List[float]:
        return [0.0] * self.dimension

    def embed(self, text: Optional[str]) -> List[float]:
        stripped = (text or "").strip()
        if not stripped:
            return self.zero_vector()

        key = stripped.lower()
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                return list(cached)

        result = self._compute(stripped)

        with self._lock:
            self._cache[key] = result
            while len(self._cache) > self._cache_max:
                self._cache.popitem(last=False)
        return list(result)

    def embed_many(self, texts: Iterable[str]) -> List[List[float]]:
        return [self.embed(t) for t in texts]

    def similarity(self, text_a: str, text_b: str) -> float:
        return cosine_similarity(self.embed(text_a), self.embed(text_b))

    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
            self._token_cache.clear()

    def _token_vector(self, token: str) -> List[float]:
        vec = self._token_cache.get(token)
        if vec is None:
            vec = _seeded_vector(token, self.dimension)
            self._token_cache[token] = vec
        return vec

    def _compute(self, text: str) -> List[float]:
        tokens = canonical_tokens(text)
        if not tokens:
            # Punctuation or stop-words only: fingerprint the raw text
            return _seeded_vector(text.lower(), self.dimension)

        summed = [0.0] * self.dimension
        with self._lock:
            for token in tokens:
                vec = self._token_vector(token)
                for i, v in enumerate(vec):
                    summed[i] += v
        count = len(tokens)
        return _normalize([x / count for x in summed])

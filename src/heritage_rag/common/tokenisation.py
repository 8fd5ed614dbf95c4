"""heritage_rag.common.tokenisation

Tokenisation and text-signal utilities.

This module provides the small, deterministic text primitives used by the
relevance signals in :mod:`heritage_rag.retrieval.scoring`. Tokenisation keeps
Vietnamese Latin-extended diacritics intact so that Vietnamese and English
text tokenise consistently, and stopword removal works against a fixed
bilingual list.

Functions
---------
tokenize
    Lowercase, strip punctuation and split text into word tokens.
remove_stopwords
    Drop Vietnamese and English stopwords from a token list.
word_frequency
    Count occurrences of each token.
term_frequency
    Max-normalised term frequency of a token list.
inverse_document_frequency
    Classic ``ln(N / df)`` inverse document frequency over a document list.
tfidf_vector
    Sparse TF-IDF vector of a document.
cosine_similarity
    Cosine similarity between two sparse vectors.
jaccard_similarity
    Size of intersection over size of union of two token collections.
extract_key_phrases
    Contiguous n-grams of a text.
normalise_text
    Lowercase and trim, preserving diacritics.

Notes
-----
Every function is pure: identical input always produces identical output,
which keeps reranking reproducible.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from typing import Iterable, Mapping, Sequence

VIETNAMESE_DIACRITICS = (
    "àáạảãâầấậẩẫăằắặẳẵ"
    "èéẹẻẽêềếệểễ"
    "ìíịỉĩ"
    "òóọỏõôồốộổỗơờớợởỡ"
    "ùúụủũưừứựửữ"
    "ỳýỵỷỹ"
    "đ"
)

# ASCII word characters only: other letters are punctuation unless listed above.
_NON_TOKEN_CHARS = re.compile(rf"[^A-Za-z0-9_\s{VIETNAMESE_DIACRITICS}]")
_WHITESPACE = re.compile(r"\s+")

STOPWORDS: frozenset[str] = frozenset({
    # Vietnamese
    "và", "của", "có", "là", "được", "cho", "với", "từ", "trong", "trên",
    "về", "các", "này", "đó", "những", "một", "không", "như", "đã", "để",
    "khi", "bởi", "cũng", "theo", "rất", "nhiều", "hay", "hoặc", "nhưng",
    # English
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "can", "this", "that", "these",
    "those", "what", "which", "who", "when", "where", "why", "how",
})


def tokenize(text: str) -> list[str]:
    """Split ``text`` into lowercase word tokens.

    Parameters
    ----------
    text : str
        Input text. Non-string or empty input yields an empty list.

    Returns
    -------
    list[str]
        Tokens in order of appearance, punctuation removed.
    """
    if not text or not isinstance(text, str):
        return []
    cleaned = _NON_TOKEN_CHARS.sub(" ", text.lower())
    return [token for token in _WHITESPACE.split(cleaned) if token]


def remove_stopwords(tokens: Iterable[str]) -> list[str]:
    """Return ``tokens`` without bilingual stopwords (case-insensitive)."""
    return [token for token in tokens if token.lower() not in STOPWORDS]


def word_frequency(tokens: Iterable[str]) -> dict[str, int]:
    """Return a mapping of token to occurrence count."""
    return dict(Counter(tokens))


def term_frequency(tokens: Sequence[str]) -> dict[str, float]:
    """Return term frequencies normalised by the most frequent term."""
    freq = word_frequency(tokens)
    if not freq:
        return {}
    max_freq = max(freq.values())
    return {term: count / max_freq for term, count in freq.items()}


def inverse_document_frequency(documents: Sequence[str]) -> dict[str, float]:
    """Return ``ln(N / df)`` for every term that occurs in ``documents``."""
    n_docs = len(documents)
    df: Counter[str] = Counter()
    for doc in documents:
        df.update(set(tokenize(doc)))
    return {term: math.log(n_docs / count) for term, count in df.items()}


def tfidf_vector(document: str, idf: Mapping[str, float]) -> dict[str, float]:
    """Return the sparse TF-IDF vector of ``document`` under ``idf``."""
    tf = term_frequency(tokenize(document))
    return {term: value * idf.get(term, 0.0) for term, value in tf.items()}


def cosine_similarity(vec_a: Mapping[str, float], vec_b: Mapping[str, float]) -> float:
    """Return the cosine similarity of two sparse vectors, ``0.0`` if either is null."""
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for term in set(vec_a) | set(vec_b):
        a = vec_a.get(term, 0.0)
        b = vec_b.get(term, 0.0)
        dot += a * b
        norm_a += a * a
        norm_b += b * b
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def jaccard_similarity(first: Iterable[str], second: Iterable[str]) -> float:
    """Return ``|A & B| / |A | B|``, or ``0.0`` when both are empty."""
    set_a = set(first)
    set_b = set(second)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def extract_key_phrases(text: str, n: int = 2) -> list[str]:
    """Return the contiguous ``n``-grams of the tokenised ``text``."""
    tokens = tokenize(text)
    return [" ".join(tokens[i:i + n]) for i in range(len(tokens) - n + 1)]


def normalise_text(text: str) -> str:
    """Lowercase and trim ``text``. Diacritics are kept."""
    return text.lower().strip()


__all__ = [
    "STOPWORDS",
    "VIETNAMESE_DIACRITICS",
    "tokenize",
    "remove_stopwords",
    "word_frequency",
    "term_frequency",
    "inverse_document_frequency",
    "tfidf_vector",
    "cosine_similarity",
    "jaccard_similarity",
    "extract_key_phrases",
    "normalise_text",
]

"""heritage_rag.retrieval.scoring

Relevance signals used by the reranker.

Each function scores one candidate against a query from a single angle:
lexical (BM25, Jaccard keyword overlap), positional (early occurrence of
query terms) or document metadata (title, filename, category and recency).
All functions are pure and deterministic, apart from the recency part of
:func:`metadata_score`, which reads an injectable clock.

Classes
-------
BM25Scorer
    BM25 scorer with statistics precomputed over an explicit IDF corpus.

Functions
---------
bm25_score
    Okapi BM25 score of a document for a query against an IDF corpus.
keyword_score
    Jaccard similarity of the stopword-filtered query and document tokens.
position_score
    Reciprocal-rank score of the first occurrence of each query token.
metadata_score
    Title/filename/category/recency relevance of a candidate's metadata.
min_max_normalise
    Rescale a list of scores to ``[0, 1]``.
fuse
    Weighted mean of a signal vector.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from heritage_rag.common.errors import ScoringFailure
from heritage_rag.common.tokenisation import remove_stopwords, tokenize
from heritage_rag.config.settings import BM25Parameters

HERITAGE_CATEGORIES = ("heritage", "unesco", "monument", "cultural")

TITLE_MATCH_BOOST = 0.5
FILENAME_MATCH_BOOST = 0.3
CATEGORY_MATCH_BOOST = 0.2

# (max age in days, boost), checked in order
RECENCY_BOOSTS = ((30, 0.3), (90, 0.2), (365, 0.1))


def _content_tokens(text: str) -> list[str]:
    return remove_stopwords(tokenize(text))


class BM25Scorer:
    """BM25 scorer bound to one IDF corpus.

    Tokenised corpus statistics (document frequencies and average
    stopword-filtered document length) are computed once, so scoring every
    candidate of a query against the same corpus costs one pass per
    candidate instead of one pass over the corpus per candidate.

    Parameters
    ----------
    idf_corpus : Sequence[str]
        Documents the IDF and average length are computed over. In the
        reranker this is the candidate set of the current query.
    params : BM25Parameters, optional
        ``k1`` and ``b``. Defaults to ``k1=1.5, b=0.75``.
    """

    def __init__(self, idf_corpus: Sequence[str], params: BM25Parameters | None = None):
        self.params = params or BM25Parameters()
        self.n_docs = len(idf_corpus)

        doc_freq: Counter[str] = Counter()
        total_length = 0
        for doc in idf_corpus:
            tokens = tokenize(doc)
            doc_freq.update(set(tokens))
            total_length += len(remove_stopwords(tokens))

        self.doc_freq = doc_freq
        self.avg_doc_length = total_length / self.n_docs if self.n_docs else 0.0

    def idf(self, term: str) -> float:
        """``ln((N - df + 0.5) / (df + 0.5) + 1)``."""
        df = self.doc_freq.get(term, 0)
        return math.log((self.n_docs - df + 0.5) / (df + 0.5) + 1)

    def score(self, query: str, document: str) -> float:
        """Return the BM25 score of ``document`` for ``query``.

        Zero when the corpus is empty, when its average filtered length is
        zero, or when no query token occurs in the document.
        """
        if self.n_docs == 0 or self.avg_doc_length == 0:
            return 0.0

        query_tokens = _content_tokens(query)
        doc_tokens = _content_tokens(document)
        term_freq = Counter(doc_tokens)
        k1 = self.params.k1
        b = self.params.b
        length_norm = 1 - b + b * (len(doc_tokens) / self.avg_doc_length)

        score = 0.0
        for term in query_tokens:
            tf = term_freq.get(term, 0)
            if not tf:
                continue
            score += self.idf(term) * (tf * (k1 + 1)) / (tf + k1 * length_norm)
        return score


def bm25_score(
        query: str,
        document: str,
        idf_corpus: Sequence[str],
        params: BM25Parameters | None = None,
    ) -> float:
    """Okapi BM25 score of ``document`` for ``query``.

    Parameters
    ----------
    query : str
        Query text. Stopwords are removed before scoring.
    document : str
        Document text. Stopwords are removed before scoring.
    idf_corpus : Sequence[str]
        Corpus the IDF and average document length are computed over.
    params : BM25Parameters, optional
        ``k1`` and ``b``.

    Returns
    -------
    float
        Non-negative, unnormalised score.
    """
    return BM25Scorer(idf_corpus, params).score(query, document)


def keyword_score(query: str, document: str) -> float:
    """Jaccard similarity of the stopword-filtered token sets, in ``[0, 1]``."""
    query_tokens = set(_content_tokens(query))
    doc_tokens = set(_content_tokens(document))
    union = query_tokens | doc_tokens
    if not union:
        return 0.0
    return len(query_tokens & doc_tokens) / len(union)


def position_score(query: str, document: str) -> float:
    """Score early occurrences of query terms.

    Sums ``1 / (index + 1)`` over query tokens, where ``index`` is the first
    position of the token among the document's filtered tokens, and divides
    by the number of query tokens. Tokens absent from the document add
    nothing. Zero when either side has no tokens.
    """
    query_tokens = _content_tokens(query)
    doc_tokens = _content_tokens(document)
    if not query_tokens or not doc_tokens:
        return 0.0

    first_index: dict[str, int] = {}
    for index, token in enumerate(doc_tokens):
        first_index.setdefault(token, index)

    total = sum(
        1 / (first_index[token] + 1) for token in query_tokens if token in first_index
    )
    return total / len(query_tokens)


def _text_field(metadata: Mapping[str, Any], key: str) -> str | None:
    value = metadata.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ScoringFailure(f"Metadata field {key!r} must be a string, got {type(value).__name__}")
    return value


def _parse_timestamp(value: Any) -> datetime:
    """Parse ``uploadedAt``: a datetime, an ISO-8601 string or epoch milliseconds."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise ScoringFailure(f"Invalid uploadedAt timestamp: {value!r}") from exc
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ScoringFailure(f"Invalid uploadedAt date: {value!r}") from exc
    else:
        raise ScoringFailure(f"Unsupported uploadedAt value: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def metadata_score(
        query: str,
        metadata: Mapping[str, Any] | None,
        now: datetime | None = None,
    ) -> float:
    """Relevance of a candidate's metadata to the query.

    Parameters
    ----------
    query : str
        Raw query; matched case-insensitively as a whole substring.
    metadata : Mapping[str, Any] or None
        Candidate metadata. ``title``, ``filename``, ``category`` and
        ``uploadedAt`` are inspected.
    now : datetime, optional
        Reference time for recency. Defaults to the current UTC time.

    Returns
    -------
    float
        Sum of the applicable boosts, capped at 1.0.

    Raises
    ------
    ScoringFailure
        If a text field is not a string or ``uploadedAt`` cannot be parsed.
    """
    if not metadata:
        return 0.0

    score = 0.0
    query_lower = query.lower()

    title = _text_field(metadata, "title")
    if title is not None and query_lower in title.lower():
        score += TITLE_MATCH_BOOST

    filename = _text_field(metadata, "filename")
    if filename is not None and query_lower in filename.lower():
        score += FILENAME_MATCH_BOOST

    category = _text_field(metadata, "category")
    if category is not None:
        category_lower = category.lower()
        if any(name in category_lower for name in HERITAGE_CATEGORIES):
            score += CATEGORY_MATCH_BOOST

    uploaded_at = metadata.get("uploadedAt")
    if uploaded_at not in (None, ""):
        uploaded = _parse_timestamp(uploaded_at)
        reference = now or datetime.now(timezone.utc)
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=timezone.utc)
        age_days = (reference - uploaded).total_seconds() / 86400
        for max_age, boost in RECENCY_BOOSTS:
            if age_days < max_age:
                score += boost
                break

    return min(score, 1.0)


def min_max_normalise(values: Sequence[float]) -> list[float]:
    """Rescale ``values`` to ``[0, 1]``.

    Returns all ``1.0`` when every value is equal and ``[]`` for empty input.
    """
    if not values:
        return []
    low = min(values)
    high = max(values)
    if high == low:
        return [1.0] * len(values)
    span = high - low
    return [(value - low) / span for value in values]


def fuse(signals: Mapping[str, float], weights: Mapping[str, float]) -> float:
    """Weighted mean of ``signals``.

    Only signals with a positive weight contribute, and the weights are
    renormalised over those, so a single non-zero weight returns that signal
    unchanged. Zero when the total weight is zero.
    """
    active = [
        (name, float(weight))
        for name, weight in weights.items()
        if weight > 0 and name in signals
    ]
    total = sum(weight for _, weight in active)
    if total == 0:
        return 0.0
    return sum(signals[name] * (weight / total) for name, weight in active)


__all__ = [
    "BM25Scorer",
    "bm25_score",
    "keyword_score",
    "position_score",
    "metadata_score",
    "min_max_normalise",
    "fuse",
]

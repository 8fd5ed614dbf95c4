"""heritage_rag.retrieval.question_filter

Screening of user questions before retrieval.

Two levels are provided. :func:`is_heritage_question` is the lenient intent
check the query pipeline uses to decide whether a question goes through
retrieval at all: a question is off-topic only when it names an unrelated
subject (weather, food, sport...). :func:`filter_question` is the strict
screen for user-facing entry points: it validates length, repetition,
punctuation and blocked content (links, phone numbers, e-mail addresses),
normalises the question and scores its relevance to the heritage domain.

Keyword matching works on whole words (English plurals and ``-ing`` forms
included), case-insensitively, over Vietnamese and English lists.

Classes
-------
FilterConfig
    Thresholds of :func:`validate_question` and :func:`check_relevance`.
RelevanceCheck
    Outcome of :func:`check_relevance`.
FilterResult
    Outcome of :func:`filter_question`.

Functions
---------
validate_question
    Return the reasons a question is rejected (empty when it is acceptable).
clean_question
    Trim, collapse whitespace and strip stray leading/trailing punctuation.
detect_language
    ``"vi"``, ``"en"`` or ``"unknown"``.
classify_question_type
    Coarse question type from its opening words.
check_relevance
    Heritage-relevance score from keyword matches.
is_heritage_question
    Intent check used to route off-topic questions to a general answer.
filter_question
    Validate, clean and score a question in one call.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from heritage_rag.common.tokenisation import VIETNAMESE_DIACRITICS, normalise_text

logger = logging.getLogger("heritage_rag.question_filter")

HERITAGE_KEYWORDS_VI = (
    "di sản", "văn hóa", "lịch sử", "di tích", "bảo tàng", "đền", "chùa",
    "lăng", "thành", "hoàng", "cung", "điện", "unesco", "truyền thống",
    "nghệ thuật", "kiến trúc", "tượng", "bia", "tháp", "đình", "làng",
    "phố cổ", "hội an", "huế", "hạ long", "mỹ sơn", "thăng long", "việt nam",
    "heritage", "cultural", "monument", "temple", "citadel",
)

HERITAGE_KEYWORDS_EN = (
    "heritage", "cultural", "history", "monument", "museum", "temple",
    "pagoda", "tomb", "citadel", "imperial", "palace", "unesco",
    "traditional", "architecture", "statue", "tower", "ancient", "vietnam",
    "vietnamese",
)

IRRELEVANT_KEYWORDS = (
    "thời tiết", "weather", "bóng đá", "football", "game", "phim", "movie",
    "ca nhạc", "music", "ăn uống", "food", "giá cả", "price", "mua bán",
    "shopping", "chứng khoán", "stock",
)

# Subjects that send a question straight to a general answer.
OFF_TOPIC_KEYWORDS = IRRELEVANT_KEYWORDS + (
    "recipe", "cook", "joke", "sport", "hotel", "restaurant", "sex",
)

BLOCKED_PATTERNS = {
    "link": re.compile(r"https?://", re.IGNORECASE),
    "phone number": re.compile(r"\b\d{10,}\b"),
    "e-mail address": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
}

QUESTION_TYPES = ("factual", "explanatory", "boolean", "comparison", "general")

_QUESTION_TYPE_PATTERNS = (
    ("factual", re.compile(
        r"^(what|who|when|where|which|how many|how old|"
        r"cái gì|gì|ai|khi nào|ở đâu|nào|bao nhiêu)\b"
    )),
    ("explanatory", re.compile(r"^(why|how|tại sao|vì sao|như thế nào|làm sao)\b")),
    ("boolean", re.compile(r"^(is|are|do|does|did|can|could|will|would|có phải|phải không|là)\b")),
)
_COMPARISON_MARKERS = re.compile(r"\b(compare|difference|versus|vs|so sánh|khác nhau)\b")

_EDGE_PUNCTUATION = re.compile(r"^[^\w\s?]+|[^\w\s?]+$")
_WHITESPACE = re.compile(r"\s+")
_VIETNAMESE_LETTER = re.compile(f"[{VIETNAMESE_DIACRITICS}]", re.IGNORECASE)
_ENGLISH_TEXT = re.compile(r"^[a-zA-Z0-9\s.,!?;:'\"-]+$")


def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(rf"(?<!\w){re.escape(keyword)}(?:s|es|ing)?(?!\w)")


_PATTERNS: dict[str, re.Pattern] = {
    keyword: _keyword_pattern(keyword)
    for keyword in HERITAGE_KEYWORDS_VI + HERITAGE_KEYWORDS_EN + OFF_TOPIC_KEYWORDS
}


def _matches(text: str, keywords: Iterable[str]) -> list[str]:
    lowered = normalise_text(text)
    # dict.fromkeys: keywords present in both lists count once
    return [kw for kw in dict.fromkeys(keywords) if _PATTERNS[kw].search(lowered)]


@dataclass(frozen=True)
class FilterConfig:
    """Thresholds of the question screen.

    Attributes
    ----------
    min_length, max_length : int
        Accepted length of the trimmed question, in characters.
    max_repeated_chars : int
        A character may repeat this many times in a row; one more is rejected.
    max_punctuation : int
        Longest accepted run of punctuation marks.
    relevance_threshold : float
        Minimum keyword confidence for a question to count as relevant.
    """
    min_length: int = 10
    max_length: int = 500
    max_repeated_chars: int = 3
    max_punctuation: int = 5
    relevance_threshold: float = 0.15


@dataclass(frozen=True)
class RelevanceCheck:
    relevant: bool
    confidence: float
    matched_keywords: list[str] = field(default_factory=list)
    reason: Optional[str] = None


@dataclass(frozen=True)
class FilterResult:
    """Outcome of :func:`filter_question`.

    ``cleaned`` and the descriptive fields are only filled when the question
    passed validation; ``errors`` and ``suggestions`` explain a rejection.
    """
    passed: bool
    cleaned: Optional[str] = None
    errors: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    language: Optional[str] = None
    question_type: Optional[str] = None
    relevance: Optional[RelevanceCheck] = None


def validate_question(question, config: FilterConfig | None = None) -> list[str]:
    """Return the reasons ``question`` is rejected; an empty list means valid."""
    config = config or FilterConfig()
    if not isinstance(question, str) or not question.strip():
        return ["Question must be a non-empty string"]

    errors = []
    length = len(question.strip())
    if length < config.min_length:
        errors.append(f"Question is too short (minimum {config.min_length} characters)")
    if length > config.max_length:
        errors.append(f"Question is too long (maximum {config.max_length} characters)")
    if re.search(rf"(.)\1{{{config.max_repeated_chars},}}", question):
        errors.append("Question contains too many repeated characters")
    if re.search(rf"[!?.,;:]{{{config.max_punctuation + 1},}}", question):
        errors.append("Question contains too much punctuation")
    for label, pattern in BLOCKED_PATTERNS.items():
        if pattern.search(question):
            errors.append(f"Question must not contain a {label}")
    return errors


def clean_question(question: str) -> str:
    """Trim, collapse whitespace and strip edge punctuation other than ``?``."""
    collapsed = _WHITESPACE.sub(" ", question.strip())
    return _EDGE_PUNCTUATION.sub("", collapsed).strip()


def detect_language(question: str) -> str:
    if _VIETNAMESE_LETTER.search(question):
        return "vi"
    if _ENGLISH_TEXT.match(question):
        return "en"
    return "unknown"


def classify_question_type(question: str) -> str:
    """Return one of :data:`QUESTION_TYPES` from the question's wording."""
    lowered = normalise_text(question)
    for name, pattern in _QUESTION_TYPE_PATTERNS:
        if pattern.search(lowered):
            return name
    if _COMPARISON_MARKERS.search(lowered):
        return "comparison"
    return "general"


def check_relevance(
        question: str,
        language: str | None = None,
        config: FilterConfig | None = None,
    ) -> RelevanceCheck:
    """Score how strongly ``question`` relates to cultural heritage.

    An unrelated subject makes the question irrelevant outright. Otherwise
    the confidence is the number of heritage keywords found divided by
    three, capped at 1. Vietnamese questions are matched against the
    Vietnamese list only; other questions against both lists.
    """
    config = config or FilterConfig()
    off_topic = _matches(question, IRRELEVANT_KEYWORDS)
    if off_topic:
        return RelevanceCheck(
            relevant=False,
            confidence=0.1,
            matched_keywords=off_topic,
            reason=f"Question is about an unrelated subject: {', '.join(off_topic)}",
        )

    language = language or detect_language(question)
    keywords = HERITAGE_KEYWORDS_VI if language == "vi" else HERITAGE_KEYWORDS_EN + HERITAGE_KEYWORDS_VI
    matched = _matches(question, keywords)
    confidence = min(len(matched) / 3, 1.0)
    relevant = confidence >= config.relevance_threshold
    return RelevanceCheck(
        relevant=relevant,
        confidence=confidence,
        matched_keywords=matched,
        reason=None if relevant else "Question does not mention a heritage subject",
    )


def is_heritage_question(question: str) -> bool:
    """Return ``False`` when ``question`` names an unrelated subject.

    Questions that mention nothing off-topic are given the benefit of the
    doubt and go through retrieval.
    """
    off_topic = _matches(question, OFF_TOPIC_KEYWORDS)
    if off_topic:
        logger.info("Question classified as general (matched %s)", off_topic)
        return False
    return True


def filter_question(question, config: FilterConfig | None = None) -> FilterResult:
    """Validate, clean and describe ``question``.

    Returns
    -------
    FilterResult
        ``passed`` is ``False`` when validation failed; relevance does not
        affect it, callers decide what to do with an off-topic question.
    """
    config = config or FilterConfig()
    errors = validate_question(question, config)
    if errors:
        logger.info("Question rejected: %s", "; ".join(errors))
        return FilterResult(
            passed=False,
            errors=errors,
            suggestions=[
                "Ask a complete question about a heritage site, monument or tradition.",
                "Leave out links, phone numbers and e-mail addresses.",
            ],
        )

    cleaned = clean_question(question)
    language = detect_language(cleaned)
    return FilterResult(
        passed=True,
        cleaned=cleaned,
        language=language,
        question_type=classify_question_type(cleaned),
        relevance=check_relevance(cleaned, language, config),
    )


__all__ = [
    "BLOCKED_PATTERNS",
    "FilterConfig",
    "FilterResult",
    "HERITAGE_KEYWORDS_EN",
    "HERITAGE_KEYWORDS_VI",
    "IRRELEVANT_KEYWORDS",
    "OFF_TOPIC_KEYWORDS",
    "QUESTION_TYPES",
    "RelevanceCheck",
    "check_relevance",
    "classify_question_type",
    "clean_question",
    "detect_language",
    "filter_question",
    "is_heritage_question",
    "validate_question",
]

import pytest

from heritage_rag.retrieval.question_filter import (
    FilterConfig,
    check_relevance,
    classify_question_type,
    clean_question,
    detect_language,
    filter_question,
    is_heritage_question,
    validate_question,
)


def test_validate_accepts_an_ordinary_question():
    assert validate_question("When was the temple founded?") == []


@pytest.mark.parametrize("question", [None, "", "   ", 42])
def test_validate_rejects_non_string_or_blank(question):
    assert validate_question(question) == ["Question must be a non-empty string"]


@pytest.mark.parametrize("question,fragment", [
    ("temple", "too short"),
    ("temple " * 80, "too long"),
    ("Whaaaaat is the temple?", "repeated characters"),
    ("Where is the temple?!?!?!", "punctuation"),
    ("See https://example.com about the temple", "link"),
    ("Call 0912345678 about the temple", "phone number"),
    ("Write to guide@example.com about temples", "e-mail address"),
])
def test_validate_reports_each_problem(question, fragment):
    errors = validate_question(question)
    assert any(fragment in error for error in errors), errors


def test_validate_thresholds_come_from_config():
    assert validate_question("temple", FilterConfig(min_length=3)) == []


def test_clean_question_collapses_whitespace_and_edge_punctuation():
    assert clean_question("  ...When   was the temple founded?!!  ") == "When was the temple founded?"
    assert clean_question("«Chùa Một Cột»") == "Chùa Một Cột"


@pytest.mark.parametrize("question,language", [
    ("Chùa Một Cột ở đâu?", "vi"),
    ("Where is the citadel?", "en"),
    ("東京はどこですか", "unknown"),
])
def test_detect_language(question, language):
    assert detect_language(question) == language


@pytest.mark.parametrize("question,question_type", [
    ("When was the citadel built?", "factual"),
    ("How many pagodas are in Hue?", "factual"),
    ("Why was the capital moved?", "explanatory"),
    ("How was the temple built?", "explanatory"),
    ("Tại sao chùa Một Cột nổi tiếng?", "explanatory"),
    ("Is the citadel open today?", "boolean"),
    ("Compare the temple and the citadel", "comparison"),
    ("Tell me about Hue", "general"),
])
def test_classify_question_type(question, question_type):
    assert classify_question_type(question) == question_type


def test_relevance_counts_each_keyword_once():
    check = check_relevance("What is the history of the Imperial Citadel?")

    assert check.relevant
    assert check.confidence == 1.0
    assert check.matched_keywords == ["history", "citadel", "imperial"]


def test_relevance_of_vietnamese_question_uses_vietnamese_keywords():
    check = check_relevance("Lịch sử của chùa Một Cột là gì?")

    assert check.relevant
    assert check.matched_keywords == ["lịch sử", "chùa"]
    assert check.confidence == pytest.approx(2 / 3)


def test_unrelated_subject_is_irrelevant_outright():
    check = check_relevance("Is the football match near the citadel tonight?")

    assert not check.relevant
    assert check.confidence == 0.1
    assert check.matched_keywords == ["football"]
    assert "football" in check.reason


def test_question_without_heritage_keywords_is_not_relevant():
    check = check_relevance("Tell me something interesting")

    assert not check.relevant
    assert check.confidence == 0.0
    assert check.reason


@pytest.mark.parametrize("question,expected", [
    ("When was the temple founded?", True),
    ("Tell me about Hue", True),
    ("What is the history of Essex?", True),
    ("What is the weather like in Hanoi today?", False),
    ("Any good restaurants near the citadel?", False),
    ("What should I be cooking tonight?", False),
    ("Thời tiết ở Huế hôm nay thế nào?", False),
])
def test_is_heritage_question(question, expected):
    assert is_heritage_question(question) is expected


def test_filter_question_cleans_and_describes_a_valid_question():
    result = filter_question("  What is the history of the Imperial Citadel?!  ")

    assert result.passed
    assert result.errors == []
    assert result.cleaned == "What is the history of the Imperial Citadel?"
    assert result.language == "en"
    assert result.question_type == "factual"
    assert result.relevance.relevant


def test_filter_question_passes_off_topic_questions_with_low_relevance():
    result = filter_question("Thời tiết Huế hôm nay thế nào?")

    assert result.passed
    assert result.language == "vi"
    assert not result.relevance.relevant


def test_filter_question_rejects_with_errors_and_suggestions():
    result = filter_question("temple")

    assert not result.passed
    assert result.cleaned is None
    assert result.errors
    assert result.suggestions

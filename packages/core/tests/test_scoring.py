"""Tests for the text scoring helpers."""

import re

import pytest

from prtalk_core.scoring import (
    extract_keywords,
    keyword_coverage,
    levenshtein_distance,
    question_similarity,
    score_patterns,
    string_similarity,
    supported_by,
)


class TestKeywords:
    def test_drops_stopwords_and_short_words(self):
        assert extract_keywords("How can I improve this code?") == ["improve", "code"]

    def test_splits_paths_on_punctuation(self):
        assert extract_keywords("src/login.py") == ["src", "login"]


class TestSimilarity:
    def test_levenshtein(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3

    def test_string_similarity_bounds(self):
        assert string_similarity("", "") == 1.0
        assert string_similarity("abc", "abc") == 1.0
        assert string_similarity("abc", "xyz") == 0.0

    def test_keyword_coverage_is_measured_on_the_new_question(self):
        assert keyword_coverage("improve", "improve the code") == 1.0
        assert keyword_coverage("improve the code", "improve") == 0.5
        assert keyword_coverage("hello", "") == 0.0

    def test_paraphrases_are_similar(self):
        assert question_similarity("What should I improve here?", "How can I improve this code?") > 0.7

    def test_one_shared_keyword_with_a_short_question_is_not_a_repeat(self):
        assert question_similarity("Who approved the authentication changes?", "who approved it?") < 0.7

    def test_near_identical_questions_are_similar(self):
        assert question_similarity("what files changed in this pr", "what files changed in this pr?") > 0.9

    def test_unrelated_questions_are_not_similar(self):
        assert question_similarity("list the changed files", "who approved it?") < 0.7


class TestScorePatterns:
    def test_no_match_scores_zero(self):
        assert score_patterns("hello", [re.compile("slow")]) == 0.0

    def test_best_pattern_wins(self):
        patterns = [re.compile("slow"), re.compile("is it slow")]
        assert score_patterns("is it slow", patterns) == 1.0

    def test_coverage_plus_bonus(self):
        assert score_patterns("is it slow", [re.compile("slow")]) == pytest.approx(0.7)


class TestSupportedBy:
    def test_sixty_percent_rounded_up(self):
        context = {"token", "refresh"}
        assert supported_by("token refresh login", context)
        assert not supported_by("token expiry login", context)

    def test_text_without_keywords_is_supported(self):
        assert supported_by("it is", set())

"""Tests for request feature extraction.

Tests cover:
- Prompt statistics and time features
- Complexity scoring and clamping
- Keyword classification priority
- Per-user pattern ids
"""

from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from route_intelligence.core.config import LearningConfig
from route_intelligence.routing.base import RequestFeatures, RequestType
from route_intelligence.routing.features import FeatureExtractor

# ==============================================================================
# Basic Features
# ==============================================================================


class TestBasicFeatures:
    """Tests for prompt statistics and time features."""

    def test_prompt_statistics(self, clock, request_factory):
        """Test length, message count and system flag."""
        extractor = FeatureExtractor(clock=clock)
        request = request_factory("Hi", system="You are terse", extra_messages=2)

        features = extractor.extract(request, "user-1")

        assert features.message_count == 4
        assert features.has_system_message is True
        # user prompts: "message 0" and "Hi"
        assert features.prompt_length == len("message 0 Hi")

    def test_time_features(self, request_factory):
        """Test hour of day and Monday-based day of week."""
        sunday_evening = datetime(2025, 3, 9, 21, 15)
        extractor = FeatureExtractor(clock=lambda: sunday_evening)

        features = extractor.extract(request_factory(), "user-1")

        assert features.time_of_day == 21
        assert features.day_of_week == 6

    def test_features_are_immutable(self, clock, request_factory):
        """Test that the feature record cannot be modified."""
        features = FeatureExtractor(clock=clock).extract(request_factory(), "user-1")

        with pytest.raises(ValidationError):
            features.prompt_length = 10


# ==============================================================================
# Complexity
# ==============================================================================


class TestComplexity:
    """Tests for complexity scoring."""

    def test_simple_request(self, request_factory):
        """Test a one-message request without cues."""
        score = FeatureExtractor().complexity_score(request_factory("Hello"))

        assert score == pytest.approx(0.1)

    def test_cues_add_bonus(self, request_factory):
        """Test analysis and code cues increase the score."""
        extractor = FeatureExtractor()

        analyze = extractor.complexity_score(request_factory("Please analyze these numbers"))
        code = extractor.complexity_score(request_factory("Write a function"))
        explain = extractor.complexity_score(request_factory("Explain it in detail"))

        assert analyze == pytest.approx(0.4)
        assert code == pytest.approx(0.5)
        assert explain == pytest.approx(0.3)

    def test_cues_are_case_insensitive(self, request_factory):
        """Test cues match regardless of case."""
        score = FeatureExtractor().complexity_score(request_factory("COMPARE these"))

        assert score == pytest.approx(0.4)

    def test_max_tokens_and_long_text(self, request_factory):
        """Test max tokens and long text contribute to the score."""
        score = FeatureExtractor().complexity_score(
            request_factory("x" * 1200, max_tokens=200)
        )

        assert score == pytest.approx(0.1 + 0.2 + 0.3)

    def test_score_is_clamped(self, request_factory):
        """Test that a very large request is clamped to 1."""
        request = request_factory("hello", extra_messages=49, tools=10, max_tokens=5000)

        features = FeatureExtractor().extract(request, "user-1")

        assert features.message_count == 50
        assert features.complexity_score == 1.0


# ==============================================================================
# Classification
# ==============================================================================


class TestClassification:
    """Tests for keyword classification."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Write some code for me", RequestType.CODE_GENERATION),
            ("Generate a data report", RequestType.DATA_PROCESSING),
            ("Tell me a story", RequestType.CREATIVE_WRITING),
            ("I need help with my router", RequestType.TECHNICAL_SUPPORT),
            ("This is a difficult question", RequestType.COMPLEX_ANALYSIS),
            ("Good morning", RequestType.SIMPLE_CHAT),
        ],
    )
    def test_keyword_groups(self, text, expected):
        """Test each keyword group maps to its request type."""
        assert FeatureExtractor().classify(text) == expected

    def test_priority_order(self):
        """Test code keywords win over later groups."""
        text = "Write a function to analyze data"

        assert FeatureExtractor().classify(text) == RequestType.CODE_GENERATION

    def test_long_text_is_complex_analysis(self):
        """Test that long prompts without keywords are complex analysis."""
        assert FeatureExtractor().classify("lorem " * 100) == RequestType.COMPLEX_ANALYSIS


# ==============================================================================
# User Patterns
# ==============================================================================


class TestUserPatterns:
    """Tests for per-user pattern ids."""

    def test_no_pattern_until_enough_history(self):
        """Test that fewer than three observations give no pattern."""
        extractor = FeatureExtractor()
        for _ in range(2):
            extractor.observe("user-1", RequestFeatures(request_type=RequestType.SIMPLE_CHAT))

        assert extractor.user_pattern("user-1") is None
        assert extractor.user_pattern("unknown") is None

    def test_simple_pattern(self):
        """Test the pattern of a user with simple chat history."""
        extractor = FeatureExtractor()
        for _ in range(3):
            extractor.observe(
                "user-1",
                RequestFeatures(request_type=RequestType.SIMPLE_CHAT, complexity_score=0.1),
            )

        assert extractor.user_pattern("user-1") == "simple_chat_simple"

    def test_complex_pattern_uses_trailing_window(self):
        """Test that only the trailing window decides the pattern."""
        extractor = FeatureExtractor(LearningConfig(user_pattern_window=3))
        for _ in range(5):
            extractor.observe(
                "user-1",
                RequestFeatures(request_type=RequestType.SIMPLE_CHAT, complexity_score=0.1),
            )
        for _ in range(3):
            extractor.observe(
                "user-1",
                RequestFeatures(request_type=RequestType.CODE_GENERATION, complexity_score=0.9),
            )

        assert extractor.user_pattern("user-1") == "code_generation_complex"

    def test_history_is_bounded(self):
        """Test that per-user history keeps only the most recent records."""
        extractor = FeatureExtractor(LearningConfig(max_user_patterns=5))
        for i in range(8):
            extractor.observe("user-1", RequestFeatures(prompt_length=i))

        history = extractor.get_user_history("user-1")
        assert [f.prompt_length for f in history] == [3, 4, 5, 6, 7]

    def test_most_common_type_tie_goes_to_first_seen(self):
        """Test ties between request types go to the type seen first."""
        history = [
            RequestFeatures(request_type=RequestType.DATA_PROCESSING),
            RequestFeatures(request_type=RequestType.CODE_GENERATION),
        ]

        assert FeatureExtractor.most_common_type(history) == RequestType.DATA_PROCESSING

    def test_clear(self):
        """Test that clear forgets all users."""
        extractor = FeatureExtractor()
        extractor.observe("user-1", RequestFeatures())
        extractor.clear()

        assert extractor.get_user_history("user-1") == []

"""Feature extraction for completion requests.

The extractor turns a normalized request into a ``RequestFeatures`` record:
prompt statistics, a bounded complexity score, a keyword-based request type and,
once a user has been seen often enough, a coarse per-user pattern id.
"""

from __future__ import annotations

import threading
from collections import Counter, defaultdict, deque
from datetime import datetime
from typing import Callable

from ..core.config import LearningConfig
from ..core.logger import get_logger
from ..core.statistics import clamp
from .base import CompletionRequest, RequestFeatures, RequestType

logger = get_logger("routing.features")


class FeatureExtractor:
    """Extracts routing features and keeps per-user request history.

    Example:
        ```python
        extractor = FeatureExtractor()
        features = extractor.extract(request, "user-1")
        extractor.observe("user-1", features)
        ```
    """

    # Request type keywords, checked in priority order
    TYPE_KEYWORDS: tuple[tuple[RequestType, tuple[str, ...]], ...] = (
        (RequestType.CODE_GENERATION, ("code", "function", "programming")),
        (RequestType.DATA_PROCESSING, ("analyze", "data", "report")),
        (RequestType.CREATIVE_WRITING, ("write", "story", "creative")),
        (RequestType.TECHNICAL_SUPPORT, ("help", "support", "problem")),
        (RequestType.COMPLEX_ANALYSIS, ("complex", "difficult")),
    )
    COMPLEX_ANALYSIS_MIN_LENGTH = 500

    # (cues, bonus) added to the complexity score when any cue occurs
    COMPLEXITY_CUES: tuple[tuple[tuple[str, ...], float], ...] = (
        (("analyze", "compare"), 0.3),
        (("code", "function"), 0.4),
        (("explain", "detail"), 0.2),
    )
    LONG_TEXT_LENGTH = 1000
    LONG_TEXT_BONUS = 0.3
    COMPLEX_PATTERN_THRESHOLD = 0.5

    def __init__(
        self,
        config: LearningConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the extractor.

        Args:
            config: Learner retention settings (user history size, pattern window)
            clock: Source of the current time, used for hour/day features
        """
        self.config = config or LearningConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._user_history: dict[str, deque[RequestFeatures]] = defaultdict(
            lambda: deque(maxlen=self.config.max_user_patterns)
        )

    def extract(self, request: CompletionRequest, user_id: str) -> RequestFeatures:
        """Compute the feature record of ``request`` for ``user_id``."""
        prompt_text = " ".join(m.content for m in request.messages if m.role == "user")
        now = self._clock()

        return RequestFeatures(
            prompt_length=len(prompt_text),
            message_count=len(request.messages),
            has_system_message=any(m.role == "system" for m in request.messages),
            complexity_score=self.complexity_score(request),
            request_type=self.classify(prompt_text),
            user_pattern=self.user_pattern(user_id),
            time_of_day=now.hour,
            day_of_week=now.weekday(),
        )

    def complexity_score(self, request: CompletionRequest) -> float:
        """Score request complexity in [0, 1]."""
        score = 0.1 * len(request.messages)
        score += (request.max_tokens or 0) / 1000
        score += len(request.tools)

        total_text = " ".join(m.content for m in request.messages)
        lowered = total_text.lower()
        for cues, bonus in self.COMPLEXITY_CUES:
            if any(cue in lowered for cue in cues):
                score += bonus
        if len(total_text) > self.LONG_TEXT_LENGTH:
            score += self.LONG_TEXT_BONUS

        return clamp(score)

    def classify(self, prompt_text: str) -> RequestType:
        """Classify a prompt by the first matching keyword group."""
        text = prompt_text.lower()
        for request_type, keywords in self.TYPE_KEYWORDS:
            if any(keyword in text for keyword in keywords):
                return request_type
        if len(text) > self.COMPLEX_ANALYSIS_MIN_LENGTH:
            return RequestType.COMPLEX_ANALYSIS
        return RequestType.SIMPLE_CHAT

    def user_pattern(self, user_id: str) -> str | None:
        """Return ``<type>_<complex|simple>`` once enough history exists for the user."""
        with self._lock:
            history = self._user_history.get(user_id)
            if not history or len(history) < self.config.user_pattern_min_observations:
                return None
            recent = list(history)[-self.config.user_pattern_window :]

        avg_complexity = sum(f.complexity_score for f in recent) / len(recent)
        common_type = self.most_common_type(recent)
        level = "complex" if avg_complexity > self.COMPLEX_PATTERN_THRESHOLD else "simple"
        return f"{common_type.value}_{level}"

    @staticmethod
    def most_common_type(history: list[RequestFeatures]) -> RequestType:
        """Most frequent request type; ties go to the type seen first."""
        counts = Counter(f.request_type for f in history)
        common_type = RequestType.SIMPLE_CHAT
        max_count = 0
        for request_type, count in counts.items():
            if count > max_count:
                max_count = count
                common_type = request_type
        return common_type

    def observe(self, user_id: str, features: RequestFeatures) -> None:
        """Append ``features`` to the user's history (bounded)."""
        with self._lock:
            self._user_history[user_id].append(features)

    def get_user_history(self, user_id: str) -> list[RequestFeatures]:
        with self._lock:
            return list(self._user_history.get(user_id, ()))

    def clear(self) -> None:
        with self._lock:
            self._user_history.clear()
        logger.debug("Cleared user feature history")

"""Request routing: feature extraction, performance prediction and outcome learning.

This package contains:
- Request, feature, prediction and decision models
- The static backend catalog with baseline estimates
- The feature extractor and the performance table
- The predictor that ranks backend models under an optimization objective
- The outcome learner that feeds observed outcomes back into the system
"""

from .base import (
    ChatMessage,
    CompletionOutcome,
    CompletionRequest,
    LearningRecord,
    PerformanceHistoryEntry,
    PredictionResult,
    RequestFeatures,
    RequestType,
    RoutingConstraints,
    RoutingDecision,
)
from .catalog import BACKEND_MODELS, get_backend_models
from .features import FeatureExtractor
from .learner import OutcomeLearner
from .performance import PerformanceTable
from .predictor import OBJECTIVE_WEIGHTS, Predictor
from .quality import score_outcome

__all__ = [
    "BACKEND_MODELS",
    "OBJECTIVE_WEIGHTS",
    "ChatMessage",
    "CompletionOutcome",
    "CompletionRequest",
    "FeatureExtractor",
    "LearningRecord",
    "OutcomeLearner",
    "PerformanceHistoryEntry",
    "PerformanceTable",
    "PredictionResult",
    "Predictor",
    "RequestFeatures",
    "RequestType",
    "RoutingConstraints",
    "RoutingDecision",
    "get_backend_models",
    "score_outcome",
]

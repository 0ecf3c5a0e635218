"""Base types and models for request routing.

This module provides the request, feature, prediction and decision models
shared by the feature extractor, the predictor, the outcome learner and the
monitors.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..core.config import OptimizationObjective


class RequestType(str, Enum):
    """Coarse classification of a completion request."""

    CODE_GENERATION = "code_generation"
    DATA_PROCESSING = "data_processing"
    CREATIVE_WRITING = "creative_writing"
    TECHNICAL_SUPPORT = "technical_support"
    COMPLEX_ANALYSIS = "complex_analysis"
    SIMPLE_CHAT = "simple_chat"


class ChatMessage(BaseModel):
    """A single message of a completion request."""

    role: Literal["system", "user", "assistant", "tool"] = Field(description="Message role")
    content: str = Field(default="", description="Message text")


class CompletionRequest(BaseModel):
    """Normalized completion request as handed over by the caller.

    Attributes:
        messages: Conversation messages
        tools: Tool definitions offered to the model
        max_tokens: Requested completion budget
        model: Optional model hint
        temperature: Optional sampling temperature
    """

    messages: list[ChatMessage] = Field(default_factory=list, description="Messages")
    tools: list[dict[str, Any]] = Field(default_factory=list, description="Tool definitions")
    max_tokens: int | None = Field(default=None, ge=0, description="Max completion tokens")
    model: str | None = Field(default=None, description="Model hint")
    temperature: float | None = Field(default=None, description="Sampling temperature")


class CompletionOutcome(BaseModel):
    """Observed outcome of a completed backend call."""

    cost: float = Field(default=0.0, ge=0.0, description="Actual cost")
    response_time_ms: float = Field(default=0.0, ge=0.0, description="Actual latency in ms")
    finish_reason: str | None = Field(default="stop", description="Backend finish reason")
    user_satisfaction: float | None = Field(
        default=None, ge=1.0, le=5.0, description="Optional 1-5 satisfaction rating"
    )
    success: bool = Field(default=True, description="Whether the call succeeded")
    error: str | None = Field(default=None, description="Error message if failed")


class RequestFeatures(BaseModel):
    """Feature record derived from a request. Immutable once computed."""

    model_config = ConfigDict(frozen=True)

    prompt_length: int = Field(default=0, ge=0, description="Length of the user prompt text")
    message_count: int = Field(default=0, ge=0, description="Number of messages")
    has_system_message: bool = Field(default=False, description="A system message is present")
    complexity_score: float = Field(default=0.0, ge=0.0, le=1.0, description="Complexity")
    request_type: RequestType = Field(
        default=RequestType.SIMPLE_CHAT, description="Classified request type"
    )
    user_pattern: str | None = Field(default=None, description="Per-user pattern id")
    time_of_day: int = Field(default=0, ge=0, le=23, description="Hour of day")
    day_of_week: int = Field(default=0, ge=0, le=6, description="Day of week, Monday is 0")


class PerformanceHistoryEntry(BaseModel):
    """One observation (or aggregate of observations) for a backend/model pair."""

    backend: str = Field(description="Backend identifier")
    model: str = Field(description="Model identifier")
    avg_cost: float = Field(default=0.0, ge=0.0, description="Average cost")
    avg_response_time: float = Field(default=0.0, ge=0.0, description="Average latency in ms")
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0, description="Quality score")
    success_rate: float = Field(default=1.0, ge=0.0, le=1.0, description="Success rate")
    last_updated: datetime = Field(default_factory=datetime.now, description="Update time")
    sample_size: int = Field(default=1, ge=1, description="Observations aggregated")

    @property
    def key(self) -> str:
        return f"{self.backend}/{self.model}"


class PredictionResult(BaseModel):
    """Predicted cost, latency and quality of serving a request with one backend model."""

    backend: str = Field(description="Backend identifier")
    model: str = Field(description="Model identifier")
    predicted_cost: float = Field(ge=0.0, description="Predicted cost")
    predicted_response_time: float = Field(ge=0.0, description="Predicted latency in ms")
    predicted_quality: float = Field(ge=0.0, le=1.0, description="Predicted quality")
    confidence: float = Field(ge=0.0, le=1.0, description="Prediction confidence")
    reasoning: str = Field(default="", description="Human-readable reasoning")

    @property
    def key(self) -> str:
        return f"{self.backend}/{self.model}"


class RoutingConstraints(BaseModel):
    """Hard limits a prediction must satisfy to be eligible."""

    max_cost: float | None = Field(default=None, ge=0.0, description="Maximum predicted cost")
    min_quality: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Minimum predicted quality"
    )
    max_response_time: float | None = Field(
        default=None, ge=0.0, description="Maximum predicted latency in ms"
    )


class RoutingDecision(BaseModel):
    """Result of a routing call. Always present, never an error.

    Attributes:
        selected: Chosen prediction
        alternatives: Runner-up predictions by descending score
        objective: Objective the score was computed for
        score: Optimization score of the selection
        is_fallback: True when no candidate survived filtering
        routing_time_ms: Time spent deciding
        features: Features the decision was made on
        experiment_id: Experiment that dictated the selection, if any
        variant: Experiment arm that was served, if any
        timestamp: When the decision was made
    """

    selected: PredictionResult = Field(description="Chosen prediction")
    alternatives: list[PredictionResult] = Field(default_factory=list, description="Runners-up")
    objective: OptimizationObjective = Field(default="balanced", description="Objective")
    score: float = Field(default=0.0, ge=0.0, le=1.0, description="Selection score")
    is_fallback: bool = Field(default=False, description="Fallback decision")
    routing_time_ms: float = Field(default=0.0, ge=0.0, description="Decision time in ms")
    features: RequestFeatures | None = Field(default=None, description="Input features")
    experiment_id: str | None = Field(default=None, description="Experiment id")
    variant: Literal["A", "B"] | None = Field(default=None, description="Experiment arm")
    timestamp: datetime = Field(default_factory=datetime.now, description="Decision time")

    @property
    def backend(self) -> str:
        return self.selected.backend

    @property
    def model(self) -> str:
        return self.selected.model

    @property
    def confidence(self) -> float:
        return self.selected.confidence


class LearningRecord(BaseModel):
    """One observed outcome in the learning dataset."""

    features: RequestFeatures = Field(description="Features of the served request")
    user_id: str = Field(description="User that issued the request")
    actual_backend: str = Field(description="Backend that served the request")
    actual_model: str = Field(description="Model that served the request")
    actual_cost: float = Field(ge=0.0, description="Observed cost")
    actual_response_time: float = Field(ge=0.0, description="Observed latency in ms")
    actual_quality: float = Field(ge=0.0, le=1.0, description="Observed quality")
    user_satisfaction: float | None = Field(default=None, description="Satisfaction rating")
    success: bool = Field(default=True, description="Whether the call succeeded")
    timestamp: datetime = Field(default_factory=datetime.now, description="Record time")

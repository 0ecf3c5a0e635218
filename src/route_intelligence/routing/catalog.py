"""Static backend catalog and baseline estimates.

The catalog lists the models each known backend offers, in preference order,
and the baseline cost/latency/quality figures used when a backend model has
not been observed often enough to predict from history.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_BASE_COST = 0.01
DEFAULT_BASE_RESPONSE_TIME = 2000.0
DEFAULT_BASE_QUALITY = 0.8

# Models per backend, in declaration order
BACKEND_MODELS: dict[str, list[str]] = {
    "openai": ["gpt-3.5-turbo", "gpt-4", "gpt-4o", "gpt-4o-mini"],
    "anthropic": [
        "claude-3-haiku-20240307",
        "claude-sonnet-4-20250514",
        "claude-3-5-sonnet-20241022",
    ],
    "google": ["gemini-1.5-flash", "gemini-1.5-pro", "gemini-pro"],
}

BASE_COSTS: dict[str, dict[str, float]] = {
    "openai": {
        "gpt-3.5-turbo": 0.002,
        "gpt-4": 0.03,
        "gpt-4o": 0.01,
        "gpt-4o-mini": 0.0003,
    },
    "anthropic": {
        "claude-3-haiku-20240307": 0.001,
        "claude-sonnet-4-20250514": 0.01,
        "claude-3-5-sonnet-20241022": 0.01,
    },
    "google": {
        "gemini-1.5-flash": 0.0007,
        "gemini-1.5-pro": 0.0025,
        "gemini-pro": 0.001,
    },
}

BASE_RESPONSE_TIMES: dict[str, float] = {
    "openai": 2000.0,
    "anthropic": 2500.0,
    "google": 1800.0,
}


@dataclass(frozen=True)
class BaselineObservation:
    """Aggregated observation used to seed the performance table."""

    backend: str
    model: str
    avg_cost: float
    avg_response_time: float
    quality_score: float
    success_rate: float = 0.95
    sample_size: int = 10


SEED_OBSERVATIONS: tuple[BaselineObservation, ...] = (
    BaselineObservation("openai", "gpt-4o-mini", 0.0003, 1800.0, 0.85),
    BaselineObservation("anthropic", "claude-3-haiku-20240307", 0.001, 2200.0, 0.88),
    BaselineObservation("google", "gemini-1.5-flash", 0.0007, 1600.0, 0.82),
)


def get_backend_models(backend: str) -> list[str]:
    """Return the catalog models of ``backend``; unknown backends have none."""
    return list(BACKEND_MODELS.get(backend, ()))


def base_cost(backend: str, model: str) -> float:
    return BASE_COSTS.get(backend, {}).get(model, DEFAULT_BASE_COST)


def base_response_time(backend: str) -> float:
    return BASE_RESPONSE_TIMES.get(backend, DEFAULT_BASE_RESPONSE_TIME)


def base_quality(backend: str, model: str) -> float:
    """Baseline quality by backend family and model tier."""
    if backend == "openai":
        return 0.9 if "gpt-4" in model else 0.8
    if backend == "anthropic":
        return 0.95 if "sonnet" in model else 0.85
    if backend == "google":
        return 0.85 if "pro" in model else 0.8
    return DEFAULT_BASE_QUALITY

"""Route Intelligence.

A self-learning routing engine for LLM backends with:
- Request feature extraction and performance prediction
- Objective-weighted backend selection with constraints and fallback
- Outcome learning from served requests
- Prediction accuracy monitoring with drift detection
- A/B experiments between backend models
- Sampled health monitoring and alerting

Example:
    ```python
    from route_intelligence import CompletionOutcome, CompletionRequest, RoutingEngine

    engine = RoutingEngine.from_config("engine.yaml")
    engine.start()

    request = CompletionRequest(messages=[{"role": "user", "content": "Summarize this report"}])
    decision = engine.route(request, "user-1", ["openai", "anthropic", "google"])
    engine.record_outcome(
        request,
        "user-1",
        decision.backend,
        decision.model,
        CompletionOutcome(cost=0.006, response_time_ms=2100.0),
        decision=decision,
    )
    engine.shutdown()
    ```
"""

from importlib.metadata import PackageNotFoundError, version

from .core import EngineConfig, get_logger, setup_logging
from .engine import RoutingEngine
from .experiments import ExperimentConfig, ExperimentFramework, VariantConfig
from .routing import (
    ChatMessage,
    CompletionOutcome,
    CompletionRequest,
    RequestType,
    RoutingConstraints,
    RoutingDecision,
)

__all__ = [
    "__version__",
    "RoutingEngine",
    "EngineConfig",
    "ChatMessage",
    "CompletionRequest",
    "CompletionOutcome",
    "RequestType",
    "RoutingConstraints",
    "RoutingDecision",
    "ExperimentConfig",
    "ExperimentFramework",
    "VariantConfig",
    "get_logger",
    "setup_logging",
]

try:  # pragma: no cover - best-effort during development
    __version__ = version("route-intelligence")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

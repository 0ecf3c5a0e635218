"""Custom exceptions for the routing engine."""

from __future__ import annotations


class RoutingEngineError(Exception):
    """Base exception for routing engine errors."""

    pass


class ConfigurationError(RoutingEngineError):
    """Raised when engine configuration is invalid."""

    def __init__(self, message: str, config_key: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            config_key: Configuration key that is invalid
        """
        self.config_key = config_key
        super().__init__(message)


class ExperimentError(RoutingEngineError):
    """Base exception for experiment framework errors."""

    def __init__(self, message: str, test_id: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            test_id: Identifier of the experiment involved
        """
        self.test_id = test_id
        super().__init__(message)


class ExperimentConfigError(ExperimentError):
    """Raised when an experiment configuration is rejected at creation time."""

    def __init__(self, message: str, test_id: str | None = None, field: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            test_id: Identifier of the rejected experiment
            field: Configuration field that failed validation
        """
        self.field = field
        super().__init__(message, test_id)


class ExperimentNotFoundError(ExperimentError):
    """Raised when an experiment id is unknown."""

    def __init__(self, test_id: str) -> None:
        super().__init__(f"A/B test {test_id} not found", test_id)


class ExperimentStateError(ExperimentError):
    """Raised when a lifecycle transition is not allowed from the current status."""

    def __init__(self, test_id: str, status: str, action: str) -> None:
        """Initialize the exception.

        Args:
            test_id: Identifier of the experiment
            status: Current status of the experiment
            action: Transition that was attempted
        """
        self.status = status
        self.action = action
        super().__init__(f"A/B test {test_id} cannot be {action} from {status} status", test_id)

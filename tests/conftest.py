"""Shared fixtures for the routing engine tests."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

import pytest

from route_intelligence.routing.base import ChatMessage, CompletionRequest


class FakeClock:
    """Manually advanced clock usable wherever a ``clock`` callable is accepted."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 3, 14, 30)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_request(
    content: str = "Hello there",
    system: str | None = None,
    tools: int = 0,
    max_tokens: int | None = None,
    extra_messages: int = 0,
) -> CompletionRequest:
    """Build a completion request with the given shape."""
    messages = []
    if system is not None:
        messages.append(ChatMessage(role="system", content=system))
    for i in range(extra_messages):
        role = "assistant" if i % 2 else "user"
        messages.append(ChatMessage(role=role, content=f"message {i}"))
    messages.append(ChatMessage(role="user", content=content))
    return CompletionRequest(
        messages=messages,
        tools=[{"name": f"tool_{i}"} for i in range(tools)],
        max_tokens=max_tokens,
    )


@pytest.fixture
def clock():
    """A fake clock starting on a Monday afternoon."""
    return FakeClock()


@pytest.fixture
def rng():
    """Deterministic random source."""
    return random.Random(1234)


@pytest.fixture
def simple_request():
    """A short chat request."""
    return make_request("Hello, how are you?")


@pytest.fixture
def code_request():
    """A code generation request."""
    return make_request("Please write a function that parses CSV files")


@pytest.fixture
def request_factory():
    """Factory building completion requests of a given shape."""
    return make_request

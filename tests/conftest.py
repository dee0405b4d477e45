"""Shared fakes for service-level tests."""

import json
from typing import List, Optional

import pytest

from equity_insight.cache import CacheService
from equity_insight.config import Settings
from equity_insight.research import ResearchService


class FakeModelClient:
    """
    Scripted ModelClient.

    Each call pops the next scripted outcome: a string is returned, an
    exception is raised. Every call is recorded in `calls`.
    """

    def __init__(self, outcomes: Optional[list] = None):
        self.outcomes = list(outcomes or [])
        self.calls: List[dict] = []

    def queue(self, *outcomes) -> None:
        self.outcomes.extend(outcomes)

    async def generate_content(self, prompt, *, use_search, temperature, response_schema=None):
        self.calls.append({
            "prompt": prompt,
            "use_search": use_search,
            "temperature": temperature,
            "response_schema": response_schema,
        })
        if not self.outcomes:
            raise AssertionError("FakeModelClient called more times than scripted")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeClock:
    def __init__(self, now: float = 1_728_993_600.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class StatusError(Exception):
    def __init__(self, code: int, message: str = "upstream failure"):
        super().__init__(message)
        self.code = code


async def no_sleep(delay: float) -> None:
    return None


def as_json(payload: dict) -> str:
    return json.dumps(payload)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    return FakeModelClient()


@pytest.fixture
def settings():
    return Settings(api_key="test-key")


@pytest.fixture
def service(client, settings, clock):
    return ResearchService(
        client=client,
        cache=CacheService.create(settings, clock=clock),
        settings=settings,
        clock=clock,
        sleep=no_sleep,
    )

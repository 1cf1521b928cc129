"""Shared test fixtures for ai-failover."""

import sys
from pathlib import Path

import pytest

# Ensure the source directory is importable without installing the package.
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from ai_failover.providers.base import (  # noqa: E402
    AIResponse,
    BaseAIProvider,
    ProviderCapabilities,
)


class FakeClock:
    def __init__(self, start=1_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and advances a clock."""

    def __init__(self, clock=None):
        self.delays = []
        self._clock = clock

    async def __call__(self, delay):
        self.delays.append(delay)
        if self._clock is not None:
            self._clock.advance(delay)


class FakeProvider(BaseAIProvider):
    """Adapter whose backend replays scripted outcomes.

    ``outcomes`` items are consumed per backend call: exceptions are raised,
    strings become reply content. ``failure`` is raised on every call once
    the script is exhausted.
    """

    def __init__(self, config, *, outcomes=None, failure=None, init_error=None, **kwargs):
        super().__init__(config, ProviderCapabilities(max_context_tokens=50), **kwargs)
        self.outcomes = list(outcomes or [])
        self.failure = failure
        self.init_error = init_error
        self.calls = []
        self.closed = False

    async def _perform_config_validation(self):
        return True

    async def _perform_initialization(self):
        if self.init_error is not None:
            raise self.init_error

    async def _perform_send(self, messages, options, model):
        self.calls.append(model)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        elif self.failure is not None:
            outcome = self.failure
        else:
            outcome = f"{self.provider_id} reply"
        if isinstance(outcome, BaseException):
            raise outcome
        return AIResponse(content=outcome, model=model, provider=self.provider_id)

    async def aclose(self):
        self.closed = True


class FakeFactory:
    """Factory building FakeProviders; ``behaviours`` maps provider id to kwargs."""

    def __init__(self, kinds=("fake",), behaviours=None):
        self.kinds = set(kinds)
        self.behaviours = dict(behaviours or {})
        self.created = []

    def create(self, config):
        provider = FakeProvider(config, **self.behaviours.get(config.provider, {}))
        self.created.append(provider)
        return provider

    def supports(self, config):
        return config.provider in self.kinds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def recording_sleep(fake_clock):
    return RecordingSleep(fake_clock)


@pytest.fixture
def fake_provider_cls():
    return FakeProvider


@pytest.fixture
def fake_factory_cls():
    return FakeFactory

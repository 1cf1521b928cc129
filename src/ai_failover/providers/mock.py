"""Offline provider that answers from canned scenarios."""

from __future__ import annotations

import asyncio
import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence

from ..config import ProviderConfig
from .base import (
    AIError,
    AIErrorType,
    AIResponse,
    BaseAIProvider,
    Message,
    ProviderCapabilities,
    RequestOptions,
)

MOCK_MODEL = "mock-1.0"
DEFAULT_SCENARIO = "general"
HISTORY_LIMIT = 100


@dataclass
class MockScenario:
    name: str
    triggers: List[str]
    responses: List[str]
    index: int = field(default=0, compare=False)

    def next_response(self) -> str:
        if not self.responses:
            return json.dumps({"command": "idle"})
        response = self.responses[self.index % len(self.responses)]
        self.index = (self.index + 1) % len(self.responses)
        return response


def default_scenarios() -> Dict[str, MockScenario]:
    scenarios = [
        MockScenario(
            name="general",
            triggers=["hello", "hi ", "help"],
            responses=[
                "Hello! This is a canned reply from the mock provider.",
                "The mock provider is answering without calling any remote API.",
            ],
        ),
        MockScenario(
            name="summary",
            triggers=["summarize", "summary", "tl;dr"],
            responses=[
                json.dumps({"summary": "A short summary of the supplied text.", "points": 3}),
                json.dumps({"summary": "Key points condensed.", "points": 2}),
            ],
        ),
        MockScenario(
            name="classification",
            triggers=["classify", "categorize", "label"],
            responses=[
                json.dumps({"label": "positive", "confidence": 0.92}),
                json.dumps({"label": "neutral", "confidence": 0.61}),
                json.dumps({"label": "negative", "confidence": 0.78}),
            ],
        ),
        MockScenario(
            name="json",
            triggers=["json", "structured"],
            responses=["```json\n{\"status\": \"ok\", \"items\": []}\n```"],
        ),
    ]
    return {scenario.name: scenario for scenario in scenarios}


def _scenarios_from_options(raw: Mapping[str, Any]) -> Dict[str, MockScenario]:
    scenarios: Dict[str, MockScenario] = {}
    for name, spec in raw.items():
        scenarios[name] = MockScenario(
            name=name,
            triggers=[str(trigger).lower() for trigger in spec.get("triggers", [])],
            responses=[
                item if isinstance(item, str) else json.dumps(item) for item in spec.get("responses", [])
            ],
        )
    return scenarios


class MockProvider(BaseAIProvider):
    """Deterministic provider for tests and offline development.

    Options:
        scenarios: mapping of name to ``{"triggers": [...], "responses": [...]}``
            replacing the built-in scenarios.
        latency: seconds to sleep before each reply.
        fail_with: an :class:`AIErrorType` name raised on every call, for
            exercising failover without a real outage.
        history_limit: how many recent messages ``history`` keeps.
    """

    default_model = MOCK_MODEL

    def __init__(self, config: ProviderConfig, **kwargs: Any):
        super().__init__(
            config,
            ProviderCapabilities(
                streaming=False,
                function_calling=False,
                max_context_tokens=100000,
                max_response_tokens=4000,
                system_messages=True,
                vision=False,
                json_mode=True,
            ),
            **kwargs,
        )
        configured = config.options.get("scenarios")
        self.scenarios = _scenarios_from_options(configured) if configured else default_scenarios()
        self.default_scenario = config.options.get("default_scenario", DEFAULT_SCENARIO)
        self.current_scenario: Optional[str] = None
        self.history: Deque[Message] = deque(maxlen=int(config.options.get("history_limit") or HISTORY_LIMIT))

    async def _perform_config_validation(self) -> bool:
        failure = self.config.options.get("fail_with")
        if failure and failure not in AIErrorType.__members__:
            self._logger.error("Unknown fail_with error type: %s", failure)
            return False
        return True

    async def _perform_initialization(self) -> None:
        self._logger.info("Mock provider initialized with scenarios: %s", ", ".join(self.scenarios))

    async def _perform_send(
        self,
        messages: Sequence[Message],
        options: RequestOptions,
        model: str,
    ) -> AIResponse:
        self.history.extend(messages)
        latency = float(self.config.options.get("latency") or 0)
        if latency > 0:
            await asyncio.sleep(latency)

        failure = self.config.options.get("fail_with")
        if failure:
            raise AIError(
                f"Simulated {failure} failure",
                AIErrorType[failure],
                self.provider_id,
                details={"model": model},
            )

        if not messages:
            return AIResponse(
                content=json.dumps({"command": "idle"}),
                model=model,
                provider=self.provider_id,
                usage={"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0, "cost": 0},
            )

        scenario = self.detect_scenario(messages[-1].content)
        content = scenario.next_response()
        prompt_tokens = self.estimate_tokens(" ".join(m.content for m in messages))
        completion_tokens = self.estimate_tokens(content)
        return AIResponse(
            content=content,
            model=model,
            provider=self.provider_id,
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
                "cost": 0,
            },
            metadata={"scenario": scenario.name, "response_index": scenario.index},
        )

    def detect_scenario(self, content: str) -> MockScenario:
        """Pick the first scenario whose trigger appears in ``content``.

        Without a match the previously selected scenario is reused, then
        the default.
        """
        lowered = content.lower()
        for scenario in self.scenarios.values():
            if any(trigger in lowered for trigger in scenario.triggers):
                self.current_scenario = scenario.name
                return scenario
        for name in (self.current_scenario, self.default_scenario):
            if name and name in self.scenarios:
                return self.scenarios[name]
        return next(iter(self.scenarios.values()))

    def _perform_reset(self) -> None:
        for scenario in self.scenarios.values():
            scenario.index = 0
        self.history.clear()
        self.current_scenario = None
        self._logger.info("Mock provider reset")


class MockProviderFactory:
    def create(self, config: ProviderConfig) -> MockProvider:
        return MockProvider(config)

    def supports(self, config: ProviderConfig) -> bool:
        return config.provider in {"mock", "test"}

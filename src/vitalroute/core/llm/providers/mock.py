"""Mock LLM provider for testing and key-less development."""

from __future__ import annotations

import json
from typing import Any

from vitalroute.core.llm.provider import ProviderResponse

_DEFAULT_INSIGHTS: dict[str, Any] = {
    "summary": "Overall markers look stable. Keep up consistent sleep and activity.",
    "insights": [
        "Resting heart rate is within the expected range for your age.",
        "Activity levels are close to your daily target.",
    ],
    "recommendations": [
        {
            "category": "activity",
            "title": "Add a short afternoon walk",
            "steps": ["Walk 10 minutes after lunch"],
        }
    ],
    "confidence": 0.85,
}


class MockProvider:
    """Mock provider that returns a canned JSON analysis.

    ``failures`` is a list of exceptions raised, in order, before canned
    responses are served. Tests use it to drive retry and fallback paths.
    """

    name = "mock"

    def __init__(
        self,
        response_content: str | None = None,
        failures: list[Exception] | None = None,
    ) -> None:
        self.response_content = (
            response_content if response_content is not None else json.dumps(_DEFAULT_INSIGHTS)
        )
        self.failures = list(failures or [])
        self.last_system_message: str = ""
        self.last_user_message: str = ""
        self.call_count: int = 0

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 2048,
        temperature: float = 0.2,
    ) -> ProviderResponse:
        self.last_system_message = system_message
        self.last_user_message = user_message
        self.call_count += 1
        if self.failures:
            raise self.failures.pop(0)
        return ProviderResponse(
            content=self.response_content,
            input_tokens=len(system_message.split()) + len(user_message.split()),
            output_tokens=len(self.response_content.split()),
            model="mock",
            latency_ms=0.0,
        )

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from llm_gateway.core.config import GatewaySettings
from llm_gateway.core.types import OutcomeEvent


class FakeStream:
    """In-memory vendor stream: async-iterable, async context manager, closeable."""

    def __init__(self, events: list[Any]) -> None:
        self._events = list(events)
        self.pulled = 0
        self.closed = False

    def __aiter__(self) -> FakeStream:
        return self

    async def __anext__(self) -> Any:
        if self.closed or self.pulled >= len(self._events):
            raise StopAsyncIteration
        event = self._events[self.pulled]
        self.pulled += 1
        if isinstance(event, BaseException):
            raise event
        return event

    async def __aenter__(self) -> FakeStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        self.closed = True

    async def aclose(self) -> None:
        self.closed = True


class FakeCall:
    """Stand-in for an SDK ``create`` coroutine that records its kwargs."""

    def __init__(
        self,
        *,
        response: Any = None,
        events: list[Any] | None = None,
        error: BaseException | None = None,
        always_stream: bool = False,
    ) -> None:
        self.response = response
        self.events = events or []
        self.error = error
        self.always_stream = always_stream
        self.calls: list[dict[str, Any]] = []
        self.streams: list[FakeStream] = []

    async def __call__(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if self.always_stream or kwargs.get('stream'):
            stream = FakeStream(self.events)
            self.streams.append(stream)
            return stream
        return self.response


def fake_openai(*, chat: FakeCall | None = None, responses: FakeCall | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=chat or FakeCall())),
        responses=SimpleNamespace(create=responses or FakeCall()),
    )


def fake_anthropic(create: FakeCall) -> SimpleNamespace:
    return SimpleNamespace(messages=SimpleNamespace(create=create))


def fake_gemini(*, generate: FakeCall | None = None, stream: FakeCall | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        aio=SimpleNamespace(
            models=SimpleNamespace(
                generate_content=generate or FakeCall(),
                generate_content_stream=stream or FakeCall(always_stream=True),
            )
        )
    )


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[OutcomeEvent] = []

    def report(self, event: OutcomeEvent) -> None:
        self.events.append(event)


@pytest.fixture
def settings() -> GatewaySettings:
    return GatewaySettings(
        openai_api_key='sk-test',
        anthropic_api_key='sk-ant-test',
        gemini_api_key='gm-test',
        openrouter_api_key='or-test',
        openrouter_base_url='https://relay.test/api/v1',
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()

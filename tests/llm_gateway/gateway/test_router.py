from __future__ import annotations

import gc
import json

import pytest
from conftest import FakeCall, RecordingSink, fake_anthropic, fake_gemini, fake_openai

from llm_gateway.core.config import DEFAULT_MODEL, GatewaySettings
from llm_gateway.core.descriptor import ModelDescriptor, Vendor
from llm_gateway.core.exceptions import ProviderError, UnsupportedModelError, ValidationError
from llm_gateway.core.sse import DONE_FRAME, iter_sse_frames
from llm_gateway.core.types import FinishReason, OutcomeStatus
from llm_gateway.gateway.router import CANCELLED_MESSAGE, GatewayRouter
from llm_gateway.registry.client_pool import ClientPool
from llm_gateway.registry.model_registry import ModelRegistry

CHAT_RESPONSE = {
    'id': 'chatcmpl-1',
    'created': 1700000000,
    'choices': [{'index': 0, 'message': {'role': 'assistant', 'content': 'Hello!'}, 'finish_reason': 'stop'}],
    'usage': {'prompt_tokens': 3, 'completion_tokens': 2, 'total_tokens': 5},
}

CHAT_EVENTS = [
    {'id': 'chatcmpl-1', 'created': 1700000000, 'choices': [{'index': 0, 'delta': {'content': 'Hel'}}]},
    {'id': 'chatcmpl-1', 'created': 1700000000, 'choices': [{'index': 0, 'delta': {'content': 'lo!'}}]},
    {'id': 'chatcmpl-1', 'created': 1700000000, 'choices': [{'index': 0, 'delta': {}, 'finish_reason': 'stop'}]},
    {'id': 'chatcmpl-1', 'created': 1700000000, 'choices': [], 'usage': {'prompt_tokens': 3, 'completion_tokens': 2}},
]

MESSAGE = {
    'id': 'msg_1',
    'content': [{'type': 'text', 'text': 'Bonjour'}],
    'stop_reason': 'end_turn',
    'usage': {'input_tokens': 4, 'output_tokens': 1},
}

REASONING_EVENTS = [
    {'type': 'response.output_text.delta', 'delta': 'H'},
    {'type': 'response.output_text.delta', 'delta': 'i'},
    {'type': 'response.reasoning_summary_text.delta', 'delta': 'thinking...'},
    {'type': 'response.completed', 'response': {'usage': {'input_tokens': 5, 'output_tokens': 2}}},
]

HI = [{'role': 'user', 'content': 'hi'}]


class Vendors:
    """Every vendor faked; no test here may reach the network."""

    def __init__(self) -> None:
        self.chat = FakeCall(response=CHAT_RESPONSE, events=CHAT_EVENTS)
        self.responses = FakeCall(events=REASONING_EVENTS)
        self.messages = FakeCall(response=MESSAGE)
        self.generate = FakeCall()
        self.generate_stream = FakeCall(always_stream=True)

    def pool(self, settings: GatewaySettings) -> ClientPool:
        return ClientPool(
            settings,
            openai=fake_openai(chat=self.chat, responses=self.responses),
            anthropic=fake_anthropic(self.messages),
            gemini=fake_gemini(generate=self.generate, stream=self.generate_stream),
        )

    def call_count(self) -> int:
        return sum(len(c.calls) for c in (self.chat, self.responses, self.messages, self.generate, self.generate_stream))


@pytest.fixture
def vendors() -> Vendors:
    return Vendors()


@pytest.fixture
def router(settings: GatewaySettings, vendors: Vendors, sink: RecordingSink) -> GatewayRouter:
    return GatewayRouter.from_settings(settings, usage_sink=sink, clients=vendors.pool(settings))


@pytest.mark.asyncio
async def test_route_reports_success(router: GatewayRouter, sink: RecordingSink) -> None:
    response = await router.route({'model': 'gpt-4o', 'messages': HI}, caller_id='user-1')
    assert response.content == 'Hello!'

    (event,) = sink.events
    assert event.status is OutcomeStatus.success
    assert (event.user_id, event.model, event.vendor) == ('user-1', 'gpt-4o', 'openai')
    assert event.total_tokens == 5
    assert event.duration_ms >= 0


@pytest.mark.asyncio
async def test_missing_model_uses_default(router: GatewayRouter, vendors: Vendors, sink: RecordingSink) -> None:
    response = await router.route({'messages': HI}, caller_id='user-1')
    assert router.default_model == DEFAULT_MODEL
    assert vendors.messages.calls[0]['model'] == DEFAULT_MODEL
    assert response.model == DEFAULT_MODEL
    assert response.content == 'Bonjour'
    assert sink.events[0].model == DEFAULT_MODEL
    assert sink.events[0].total_tokens == 5


@pytest.mark.asyncio
async def test_default_model_comes_from_settings(vendors: Vendors, sink: RecordingSink) -> None:
    settings = GatewaySettings(default_model='gpt-4o')
    router = GatewayRouter.from_settings(settings, usage_sink=sink, clients=vendors.pool(settings))
    await router.route({'messages': HI}, caller_id='user-1')
    assert vendors.chat.calls[0]['model'] == 'gpt-4o'


@pytest.mark.asyncio
@pytest.mark.parametrize('streaming', [False, True])
async def test_unknown_model_rejected_before_dispatch(
    router: GatewayRouter, vendors: Vendors, sink: RecordingSink, streaming: bool
) -> None:
    payload = {'model': 'unknown-id', 'messages': HI}
    with pytest.raises(UnsupportedModelError):
        if streaming:
            await router.route_stream(payload, caller_id='user-1')
        else:
            await router.route(payload, caller_id='user-1')

    assert vendors.call_count() == 0
    (event,) = sink.events
    assert event.status is OutcomeStatus.error
    assert event.model == 'unknown-id'
    assert event.error_message == 'Unsupported model: unknown-id'


@pytest.mark.asyncio
async def test_validation_error_reported(router: GatewayRouter, vendors: Vendors, sink: RecordingSink) -> None:
    with pytest.raises(ValidationError):
        await router.route({'messages': []}, caller_id='user-1')
    assert vendors.call_count() == 0
    assert sink.events[0].status is OutcomeStatus.error


@pytest.mark.asyncio
async def test_constraints_applied_before_dispatch(router: GatewayRouter, vendors: Vendors) -> None:
    await router.route({'model': 'o3', 'messages': HI, 'temperature': 0.9, 'top_p': 0.5}, caller_id='user-1')
    sent = vendors.chat.calls[0]
    assert 'temperature' not in sent
    assert sent['top_p'] == 0.5


@pytest.mark.asyncio
async def test_reasoning_stream_through_router(router: GatewayRouter, vendors: Vendors, sink: RecordingSink) -> None:
    stream = await router.route_stream({'model': 'gpt-5.1-codex', 'messages': HI}, caller_id='user-1')
    chunks = [c async for c in stream]

    assert vendors.responses.calls[0]['model'] == 'gpt-5-codex'
    assert [c.content for c in chunks[:-1]] == ['H', 'i']
    assert chunks[-1].finish_reason is FinishReason.stop
    assert chunks[-1].usage.total_tokens == 7
    assert {c.model for c in chunks} == {'gpt-5.1-codex'}
    assert sink.events[0].status is OutcomeStatus.success
    assert sink.events[0].total_tokens == 7


@pytest.mark.asyncio
async def test_stream_and_route_text_agree(router: GatewayRouter) -> None:
    response = await router.route({'model': 'gpt-4o', 'messages': HI}, caller_id='user-1')
    stream = await router.route_stream({'model': 'gpt-4o', 'messages': HI, 'stream': True}, caller_id='user-1')
    chunks = [c async for c in stream]
    assert ''.join(c.content or '' for c in chunks) == response.content
    assert [c for c in chunks if c.usage is not None] == [chunks[-1]]
    assert all(c.finish_reason in (None, FinishReason.stop) for c in chunks)


@pytest.mark.asyncio
async def test_consumer_abort_releases_vendor_stream(
    router: GatewayRouter, vendors: Vendors, sink: RecordingSink
) -> None:
    stream = await router.route_stream({'model': 'gpt-4o', 'messages': HI}, caller_id='user-1')
    first = await stream.__anext__()
    assert first.content == 'Hel'

    await stream.aclose()

    vendor_stream = vendors.chat.streams[0]
    assert vendor_stream.closed
    assert vendor_stream.pulled == 1
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    (event,) = sink.events
    assert event.status is OutcomeStatus.error
    assert event.error_message == CANCELLED_MESSAGE


@pytest.mark.asyncio
async def test_closing_frames_releases_vendor_stream(
    router: GatewayRouter, vendors: Vendors, sink: RecordingSink
) -> None:
    frames = iter_sse_frames(await router.route_stream({'model': 'gpt-4o', 'messages': HI}, caller_id='user-1'))
    first = await frames.__anext__()
    assert json.loads(first.removeprefix('data: '))['choices'][0]['delta']['content'] == 'Hel'

    await frames.aclose()

    assert vendors.chat.streams[0].closed
    (event,) = sink.events
    assert event.status is OutcomeStatus.error
    assert event.error_message == CANCELLED_MESSAGE


@pytest.mark.asyncio
async def test_stream_closed_before_first_pull_reports_once(
    router: GatewayRouter, vendors: Vendors, sink: RecordingSink
) -> None:
    stream = await router.route_stream({'model': 'gpt-4o', 'messages': HI}, caller_id='user-1')
    await stream.aclose()
    await stream.aclose()

    assert vendors.call_count() == 0
    (event,) = sink.events
    assert (event.model, event.vendor) == ('gpt-4o', 'openai')
    assert event.status is OutcomeStatus.error
    assert event.error_message == CANCELLED_MESSAGE


@pytest.mark.asyncio
async def test_discarded_stream_reports_cancel(router: GatewayRouter, vendors: Vendors, sink: RecordingSink) -> None:
    stream = await router.route_stream({'model': 'gpt-4o', 'messages': HI}, caller_id='user-1')
    del stream
    gc.collect()

    assert vendors.call_count() == 0
    (event,) = sink.events
    assert event.error_message == CANCELLED_MESSAGE


@pytest.mark.asyncio
async def test_drained_stream_reports_success_once(router: GatewayRouter, sink: RecordingSink) -> None:
    async with await router.route_stream({'model': 'gpt-4o', 'messages': HI}, caller_id='user-1') as stream:
        chunks = [c async for c in stream]

    assert chunks[-1].usage.total_tokens == 5
    (event,) = sink.events
    assert event.status is OutcomeStatus.success
    assert event.total_tokens == 5


@pytest.mark.asyncio
async def test_non_streaming_model_rejected_before_dispatch(
    settings: GatewaySettings, vendors: Vendors, sink: RecordingSink
) -> None:
    registry = ModelRegistry([
        ModelDescriptor(id='gpt-4o-batch', vendor=Vendor.openai, max_tokens=4096, supports_streaming=False),
    ])
    router = GatewayRouter.from_settings(settings, usage_sink=sink, clients=vendors.pool(settings), registry=registry)

    with pytest.raises(ValidationError, match='does not support streaming'):
        await router.route_stream({'model': 'gpt-4o-batch', 'messages': HI}, caller_id='user-1')
    assert vendors.call_count() == 0
    assert sink.events[0].status is OutcomeStatus.error

    response = await router.route({'model': 'gpt-4o-batch', 'messages': HI}, caller_id='user-1')
    assert response.content == 'Hello!'
    assert vendors.chat.calls[0]['model'] == 'gpt-4o-batch'


@pytest.mark.asyncio
async def test_mid_stream_provider_error_becomes_error_frame(
    router: GatewayRouter, vendors: Vendors, sink: RecordingSink
) -> None:
    vendors.responses.events = [
        {'type': 'response.output_text.delta', 'delta': 'H'},
        {'type': 'response.failed', 'response': {'error': {'code': 'server_error', 'message': 'boom'}}},
    ]
    stream = await router.route_stream({'model': 'gpt-5-codex', 'messages': HI}, caller_id='user-1')
    frames = [frame async for frame in iter_sse_frames(stream)]

    assert len(frames) == 2
    assert json.loads(frames[-1].removeprefix('data: ')) == {'error': 'boom'}
    assert DONE_FRAME not in frames
    assert sink.events[0].status is OutcomeStatus.error
    assert sink.events[0].error_message == 'boom'


@pytest.mark.asyncio
async def test_provider_error_reported_and_reraised(router: GatewayRouter, vendors: Vendors, sink: RecordingSink) -> None:
    vendors.messages.error = ProviderError('down', 'anthropic', status=503)
    with pytest.raises(ProviderError):
        await router.route({'messages': HI}, caller_id='user-1')
    assert sink.events[0].vendor == 'anthropic'
    assert sink.events[0].error_message == 'down'


@pytest.mark.asyncio
async def test_sink_failure_never_fails_the_call(settings: GatewaySettings, vendors: Vendors) -> None:
    class BrokenSink:
        def report(self, event: object) -> None:
            raise RuntimeError('sink down')

    router = GatewayRouter.from_settings(settings, usage_sink=BrokenSink(), clients=vendors.pool(settings))
    response = await router.route({'model': 'gpt-4o', 'messages': HI}, caller_id='user-1')
    assert response.content == 'Hello!'


def test_list_models(router: GatewayRouter) -> None:
    ids = [m['id'] for m in router.list_models()]
    assert DEFAULT_MODEL in ids
    assert ids == sorted(ids)

from __future__ import annotations

import httpx
import openai
import pytest
from conftest import FakeCall, fake_openai

from llm_gateway.adapters.openai_adapter import OpenAIChatAdapter, build_chat_payload, map_finish_reason
from llm_gateway.core.config import GatewaySettings
from llm_gateway.core.exceptions import ProviderError
from llm_gateway.core.types import ChatRequest, FinishReason, Role
from llm_gateway.registry.client_pool import ClientPool

CHAT_RESPONSE = {
    'id': 'chatcmpl-abc',
    'object': 'chat.completion',
    'created': 1700000000,
    'model': 'gpt-4o-2024-08-06',
    'choices': [{'index': 0, 'message': {'role': 'assistant', 'content': 'Hello!'}, 'finish_reason': 'stop'}],
    'usage': {'prompt_tokens': 9, 'completion_tokens': 3, 'total_tokens': 12},
}

STREAM_EVENTS = [
    {'id': 'chatcmpl-s', 'created': 1700000001, 'choices': [{'index': 0, 'delta': {'role': 'assistant', 'content': ''}}]},
    {'id': 'chatcmpl-s', 'created': 1700000001, 'choices': [{'index': 0, 'delta': {'content': 'Hel'}}]},
    {'id': 'chatcmpl-s', 'created': 1700000001, 'choices': [{'index': 0, 'delta': {'content': 'lo!'}}]},
    {'id': 'chatcmpl-s', 'created': 1700000001, 'choices': [{'index': 0, 'delta': {}, 'finish_reason': 'stop'}]},
    {'id': 'chatcmpl-s', 'created': 1700000001, 'choices': [], 'usage': {'prompt_tokens': 9, 'completion_tokens': 3}},
]


def _request(**params: object) -> ChatRequest:
    return ChatRequest(
        model='gpt-4o',
        messages=[{'role': 'system', 'content': 'sys'}, {'role': 'user', 'content': 'Hi'}],
        **params,
    )


def _adapter(settings: GatewaySettings, call: FakeCall) -> OpenAIChatAdapter:
    return OpenAIChatAdapter(ClientPool(settings, openai=fake_openai(chat=call)))


def test_payload_maps_one_to_one() -> None:
    payload = build_chat_payload(_request(temperature=0.3, stop=['x'], presence_penalty=0.1), 'gpt-4o')
    assert payload == {
        'model': 'gpt-4o',
        'messages': [{'role': 'system', 'content': 'sys'}, {'role': 'user', 'content': 'Hi'}],
        'temperature': 0.3,
        'presence_penalty': 0.1,
        'stop': ['x'],
    }


@pytest.mark.parametrize('empty', ['', []])
def test_empty_stop_left_out_of_payload(empty: str | list[str]) -> None:
    assert 'stop' not in build_chat_payload(_request(stop=empty), 'gpt-4o')


@pytest.mark.parametrize(
    ('reason', 'expected'),
    [('stop', FinishReason.stop), ('length', FinishReason.length), ('tool_calls', FinishReason.stop), ('odd', None)],
)
def test_finish_reason_mapping(reason: str, expected: FinishReason | None) -> None:
    assert map_finish_reason(reason) == expected


@pytest.mark.asyncio
async def test_send(settings: GatewaySettings) -> None:
    call = FakeCall(response=CHAT_RESPONSE)
    response = await _adapter(settings, call).send(_request(), 'gpt-4o')
    assert response.content == 'Hello!'
    assert response.id == 'chatcmpl-abc'
    assert response.model == 'gpt-4o'
    assert response.choices[0].message.role is Role.assistant
    assert response.usage.total_tokens == 12
    assert call.calls[0]['stream'] is False


@pytest.mark.asyncio
async def test_send_without_choices_is_provider_error(settings: GatewaySettings) -> None:
    call = FakeCall(response={**CHAT_RESPONSE, 'choices': []})
    with pytest.raises(ProviderError, match='no choices'):
        await _adapter(settings, call).send(_request(), 'gpt-4o')


@pytest.mark.asyncio
async def test_stream_attaches_usage_to_terminal_chunk_only(settings: GatewaySettings) -> None:
    call = FakeCall(events=STREAM_EVENTS)
    chunks = [c async for c in _adapter(settings, call).stream(_request(), 'gpt-4o')]

    assert ''.join(c.content or '' for c in chunks) == 'Hello!'
    assert [c.usage is not None for c in chunks] == [False, False, True]
    terminal = chunks[-1]
    assert terminal.finish_reason is FinishReason.stop
    assert terminal.usage.total_tokens == 12
    assert {c.id for c in chunks} == {'chatcmpl-s'}
    assert call.calls[0]['stream_options'] == {'include_usage': True}
    assert call.streams[0].closed


@pytest.mark.asyncio
async def test_stream_without_usage_event_still_terminates(settings: GatewaySettings) -> None:
    call = FakeCall(events=STREAM_EVENTS[:-1])
    chunks = [c async for c in _adapter(settings, call).stream(_request(), 'gpt-4o')]
    assert chunks[-1].finish_reason is FinishReason.stop
    assert chunks[-1].usage.total_tokens == 0


@pytest.mark.asyncio
async def test_status_error_becomes_provider_error(settings: GatewaySettings) -> None:
    request = httpx.Request('POST', 'https://api.openai.com/v1/chat/completions')
    error = openai.RateLimitError(
        'Rate limit reached',
        response=httpx.Response(429, request=request),
        body={'code': 'rate_limit_exceeded', 'message': 'Rate limit reached'},
    )
    with pytest.raises(ProviderError) as excinfo:
        await _adapter(settings, FakeCall(error=error)).send(_request(), 'gpt-4o')
    assert excinfo.value.status == 429
    assert excinfo.value.code == 'rate_limit_exceeded'
    assert excinfo.value.vendor == 'openai'


@pytest.mark.asyncio
async def test_consumer_abort_closes_vendor_stream(settings: GatewaySettings) -> None:
    call = FakeCall(events=STREAM_EVENTS)
    stream = _adapter(settings, call).stream(_request(), 'gpt-4o')
    first = await stream.__anext__()
    assert first.content == 'Hel'
    await stream.aclose()
    assert call.streams[0].closed
    assert call.streams[0].pulled == 2

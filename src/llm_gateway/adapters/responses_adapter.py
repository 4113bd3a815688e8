"""adapters.responses_adapter

Adapter for OpenAI's **Responses** API, used by the reasoning models
(``endpoint_kind == reasoning``).

The responses endpoint differs from chat/completions in three ways that matter
here:

* the conversation is a single ordered ``input`` list and there is no separate
  system channel, so system turns are sent as user turns;
* every request carries a fixed ``reasoning.effort = "medium"`` hint because the
  unified contract has no caller-facing knob for it;
* the stream is a heterogeneous event sequence. Text deltas become content
  chunks, the many reasoning/thinking events are dropped, and one of several
  "done" shapes closes the stream with the final usage.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, TypedDict

import openai

from llm_gateway.adapters.openai_adapter import openai_provider_error
from llm_gateway.core.abc import AbstractVendorAdapter, present
from llm_gateway.core.descriptor import AdapterFamily, Vendor
from llm_gateway.core.exceptions import ProviderError
from llm_gateway.core.stream import StreamTransformer, as_dict
from llm_gateway.core.types import (
    ChatChunk,
    ChatResponse,
    Choice,
    FinishReason,
    ResponseMessage,
    Role,
    Usage,
    new_completion_id,
)
from llm_gateway.registry.adapter_registry import adapter_registry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from llm_gateway.core.types import ChatRequest

logger = logging.getLogger(__name__)

REASONING_EFFORT = 'medium'

# ---------------------------------------------------------------------------
# Recognised stream event tags
# ---------------------------------------------------------------------------

TEXT_DELTA_EVENTS = frozenset({
    'response.output_text.delta',
    'content_block_delta',
    'message_delta',
})
REASONING_EVENTS = frozenset({
    'response.reasoning.delta',
    'response.reasoning_text.delta',
    'response.reasoning_text.done',
    'response.reasoning_summary_part.added',
    'response.reasoning_summary_part.done',
    'response.reasoning_summary_text.delta',
    'response.reasoning_summary_text.done',
    'reasoning_delta',
    'thinking_delta',
})
DONE_EVENTS = frozenset({'response.completed', 'response.done'})
INCOMPLETE_EVENTS = frozenset({'response.incomplete'})
FAILED_EVENTS = frozenset({'response.failed', 'error'})


def usage_from_responses(usage: Mapping[str, Any] | None) -> Usage:
    """Responses usage reports ``input_tokens``/``output_tokens``."""
    if not usage:
        return Usage()
    return Usage.from_counts(usage.get('input_tokens'), usage.get('output_tokens'))


def _event_usage(event: Mapping[str, Any]) -> Mapping[str, Any] | None:
    """Find usage on any of the terminal shapes (nested under ``response`` or top-level)."""
    response = event.get('response')
    if isinstance(response, dict) and response.get('usage'):
        return response['usage']
    return event.get('usage')


def _delta_text(event: Mapping[str, Any]) -> str | None:
    delta = event.get('delta')
    if isinstance(delta, str):
        return delta
    if isinstance(delta, dict):
        # Block-style deltas: only plain text counts, thinking blocks do not
        if delta.get('type') in (None, 'text_delta', 'output_text'):
            text = delta.get('text') or delta.get('content')
            return text if isinstance(text, str) else None
    return None


class ResponsesStreamTransformer(StreamTransformer):
    """State machine for Responses API event streams.

    * text-delta events -> one content chunk each;
    * reasoning/thinking events -> nothing;
    * ``response.completed`` / ``response.done`` / ``{"event": "done"}`` ->
      exactly one ``stop`` chunk carrying usage;
    * ``response.incomplete`` -> the terminal chunk with ``length``;
    * ``response.failed`` / ``error`` -> `ProviderError`;
    * any other event -> nothing.
    """

    def transform(self, event: Mapping[str, Any]) -> ChatChunk | None:
        event_type = event.get('type')

        if event_type in TEXT_DELTA_EVENTS:
            text = _delta_text(event)
            return self.content_chunk(text) if text else None

        if event_type in REASONING_EVENTS:
            return None

        if event_type in DONE_EVENTS or event.get('event') == 'done':
            return self.terminal_chunk(FinishReason.stop, usage_from_responses(_event_usage(event)))

        if event_type in INCOMPLETE_EVENTS:
            return self.terminal_chunk(FinishReason.length, usage_from_responses(_event_usage(event)))

        if event_type in FAILED_EVENTS:
            raise ProviderError(_failure_message(event), Vendor.openai.value, code=_failure_code(event))

        return None


def _failure_detail(event: Mapping[str, Any]) -> Mapping[str, Any]:
    response = event.get('response')
    if isinstance(response, dict) and isinstance(response.get('error'), dict):
        return response['error']
    return event


def _failure_message(event: Mapping[str, Any]) -> str:
    return _failure_detail(event).get('message') or 'Responses stream failed'


def _failure_code(event: Mapping[str, Any]) -> str | None:
    code = _failure_detail(event).get('code')
    return code if isinstance(code, str) else None


def first_output_text(output: list[Mapping[str, Any]] | None) -> str:
    """Return the first text-bearing entry of a Responses ``output`` list.

    The list mixes typed entries (``reasoning``, ``message``, tool calls...);
    only ``message`` entries hold ``output_text`` content parts.
    """
    for item in output or []:
        if item.get('type') != 'message':
            continue
        for part in item.get('content') or []:
            if part.get('type') == 'output_text' and part.get('text'):
                return part['text']
    return ''


class _ResponsesRequest(TypedDict, total=False):
    model: str
    input: list[dict[str, str]]
    reasoning: dict[str, str]
    temperature: float
    max_output_tokens: int
    top_p: float


def build_responses_payload(request: ChatRequest, vendor_model: str) -> _ResponsesRequest:
    payload: _ResponsesRequest = {
        'model': vendor_model,
        'input': [
            {
                'type': 'message',
                'role': Role.user.value if m.role is Role.system else m.role.value,
                'content': m.content,
            }
            for m in request.messages
        ],
        'reasoning': {'effort': REASONING_EFFORT},
    }
    payload.update(
        present(
            temperature=request.temperature,
            max_output_tokens=request.max_tokens,
            top_p=request.top_p,
        )
    )
    return payload


# ---------------------------------------------------------------------------
# Adapter implementation
# ---------------------------------------------------------------------------


class OpenAIResponsesAdapter(AbstractVendorAdapter):
    """Adapter for OpenAI's Responses API (reasoning models)."""

    vendor = Vendor.openai
    family = AdapterFamily.reasoning

    @property
    def _client(self) -> openai.AsyncOpenAI:
        return self._clients.openai

    async def send(self, request: ChatRequest, vendor_model: str) -> ChatResponse:
        payload = build_responses_payload(request, vendor_model)
        try:
            response = await self._client.responses.create(**payload)
        except openai.OpenAIError as exc:
            logger.error(f'OpenAI responses request failed for {vendor_model}: {exc}')
            raise openai_provider_error(exc) from exc

        data = as_dict(response)
        if isinstance(data.get('error'), dict):
            raise ProviderError(_failure_message(data['error']), self.vendor.value, code=_failure_code(data['error']))

        status = data.get('status')
        return ChatResponse(
            id=data.get('id') or new_completion_id(),
            created=int(data.get('created_at') or time.time()),
            model=request.model or vendor_model,
            choices=(
                Choice(
                    index=0,
                    message=ResponseMessage(content=first_output_text(data.get('output'))),
                    finish_reason=FinishReason.stop if status in (None, 'completed') else FinishReason.length,
                ),
            ),
            usage=usage_from_responses(data.get('usage')),
        )

    async def stream(self, request: ChatRequest, vendor_model: str) -> AsyncIterator[ChatChunk]:
        transformer = ResponsesStreamTransformer(request.model or vendor_model)
        payload = build_responses_payload(request, vendor_model)
        events = 0
        try:
            stream = await self._client.responses.create(**payload, stream=True)
            async with stream:
                async for event in stream:
                    events += 1
                    for chunk in transformer.feed(event):
                        yield chunk
        except openai.OpenAIError as exc:
            logger.error(f'OpenAI responses stream failed for {vendor_model}: {exc}')
            raise openai_provider_error(exc) from exc

        logger.debug(f'Responses stream for {vendor_model} complete: {events} events processed')
        for chunk in transformer.finish():
            yield chunk


# ---------------------------------------------------------------------------
# Automatic registration
# ---------------------------------------------------------------------------

adapter_registry.register(OpenAIResponsesAdapter)

"""adapters.openai_adapter

Concrete adapter that bridges :class:`llm_gateway.core.abc.AbstractVendorAdapter`
with the **OpenAI Chat Completions** HTTP API.

This implementation targets *openai==1.x* (the new "unified" client). The
unified contract is modelled on chat/completions, so messages and parameters
map 1:1; the interesting part is the stream, where OpenAI reports usage on an
extra final event after the chunk that carries ``finish_reason``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, TypedDict

import openai

from llm_gateway.core.abc import AbstractVendorAdapter, present
from llm_gateway.core.descriptor import AdapterFamily, Vendor
from llm_gateway.core.exceptions import ProviderError
from llm_gateway.core.stream import StreamState, StreamTransformer, as_dict
from llm_gateway.core.types import (
    ChatChunk,
    ChatResponse,
    Choice,
    FinishReason,
    ResponseMessage,
    Usage,
    new_completion_id,
)
from llm_gateway.registry.adapter_registry import adapter_registry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from llm_gateway.core.types import ChatRequest

logger = logging.getLogger(__name__)

_FINISH_REASONS: dict[str, FinishReason] = {
    'stop': FinishReason.stop,
    'length': FinishReason.length,
    'content_filter': FinishReason.content_filter,
    # Tool calls are not part of the unified contract; the turn still ended normally
    'tool_calls': FinishReason.stop,
    'function_call': FinishReason.stop,
}


def map_finish_reason(reason: str | None) -> FinishReason | None:
    return _FINISH_REASONS.get(reason) if reason else None


def usage_from_chat(usage: Mapping[str, Any] | None) -> Usage:
    if not usage:
        return Usage()
    prompt = usage.get('prompt_tokens') or 0
    completion = usage.get('completion_tokens') or 0
    return Usage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=usage.get('total_tokens') or prompt + completion,
    )


def response_from_chat(data: Mapping[str, Any], model: str, vendor: Vendor) -> ChatResponse:
    """Translate a chat/completions body (SDK dump or raw JSON) to the unified response."""
    choices = tuple(
        Choice(
            index=c.get('index', i),
            message=ResponseMessage(content=(c.get('message') or {}).get('content') or ''),
            finish_reason=map_finish_reason(c.get('finish_reason')),
        )
        for i, c in enumerate(data.get('choices') or [])
    )
    if not choices:
        raise ProviderError('Upstream returned no choices', vendor.value)
    return ChatResponse(
        id=data.get('id') or new_completion_id(),
        created=data.get('created') or int(time.time()),
        model=model,
        choices=choices,
        usage=usage_from_chat(data.get('usage')),
    )


def openai_provider_error(exc: openai.OpenAIError, vendor: Vendor = Vendor.openai) -> ProviderError:
    """Translate an SDK exception, keeping the upstream status and message."""
    if isinstance(exc, openai.APIStatusError):
        body = exc.body if isinstance(exc.body, dict) else {}
        code = body.get('code') if isinstance(body.get('code'), str) else None
        return ProviderError(exc.message, vendor.value, status=exc.status_code, code=code)
    return ProviderError(str(exc) or exc.__class__.__name__, vendor.value)


class ChatCompletionsTransformer(StreamTransformer):
    """State machine for chat/completions chunk streams.

    Recognised event shapes: a chunk with ``choices[0].delta.content``, a chunk
    with ``choices[0].finish_reason`` and a chunk carrying ``usage`` (usually
    with an empty ``choices`` list). The terminal chunk is held back until the
    usage arrives, or until the vendor stream ends.
    """

    def transform(self, event: Mapping[str, Any]) -> ChatChunk | None:
        chunks = self._translate(event)
        return chunks[-1] if chunks else None

    def feed(self, event: object) -> list[ChatChunk]:
        if self.state is StreamState.terminal:
            return []
        return self._translate(as_dict(event))

    def _translate(self, event: Mapping[str, Any]) -> list[ChatChunk]:
        self.adopt_identity(event.get('id'), event.get('created'))
        chunks: list[ChatChunk] = []
        choices = event.get('choices') or []
        if choices:
            choice = choices[0]
            text = (choice.get('delta') or {}).get('content')
            if text:
                chunks.append(self.content_chunk(text))
            if choice.get('finish_reason'):
                self.record_finish(map_finish_reason(choice['finish_reason']))
        if event.get('usage'):
            self.record_usage(usage_from_chat(event['usage']))
            if self._finish_seen:
                chunks.append(self.terminal_chunk(self._pending_finish))
        return chunks


class _ChatCompletionsRequest(TypedDict, total=False):
    model: str
    messages: list[dict[str, str]]
    temperature: float
    max_tokens: int
    top_p: float
    frequency_penalty: float
    presence_penalty: float
    stop: str | list[str]


def build_chat_payload(request: ChatRequest, vendor_model: str) -> _ChatCompletionsRequest:
    payload: _ChatCompletionsRequest = {
        'model': vendor_model,
        'messages': [{'role': m.role.value, 'content': m.content} for m in request.messages],
    }
    payload.update(
        present(
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            top_p=request.top_p,
            frequency_penalty=request.frequency_penalty,
            presence_penalty=request.presence_penalty,
            stop=request.stop if isinstance(request.stop, str) and request.stop else request.stop_sequences(),
        )
    )
    return payload


# ---------------------------------------------------------------------------
# Adapter implementation
# ---------------------------------------------------------------------------


class OpenAIChatAdapter(AbstractVendorAdapter):
    """Adapter for the OpenAI ChatCompletion API."""

    vendor = Vendor.openai
    family = AdapterFamily.direct_chat

    @property
    def _client(self) -> openai.AsyncOpenAI:
        return self._clients.openai

    # ------------------------------------------------------------------
    # Blocking path
    # ------------------------------------------------------------------

    async def send(self, request: ChatRequest, vendor_model: str) -> ChatResponse:
        payload = build_chat_payload(request, vendor_model)
        try:
            response = await self._client.chat.completions.create(**payload, stream=False)
        except openai.OpenAIError as exc:
            logger.error(f'OpenAI chat request failed for {vendor_model}: {exc}')
            raise openai_provider_error(exc) from exc

        return response_from_chat(as_dict(response), request.model or vendor_model, self.vendor)

    # ------------------------------------------------------------------
    # Streaming path
    # ------------------------------------------------------------------

    async def stream(self, request: ChatRequest, vendor_model: str) -> AsyncIterator[ChatChunk]:
        transformer = ChatCompletionsTransformer(request.model or vendor_model)
        payload = build_chat_payload(request, vendor_model)
        try:
            stream = await self._client.chat.completions.create(
                **payload,
                stream=True,
                stream_options={'include_usage': True},
            )
            async with stream:
                async for event in stream:
                    for chunk in transformer.feed(event):
                        yield chunk
        except openai.OpenAIError as exc:
            logger.error(f'OpenAI chat stream failed for {vendor_model}: {exc}')
            raise openai_provider_error(exc) from exc

        for chunk in transformer.finish():
            yield chunk


# ---------------------------------------------------------------------------
# Automatic registration
# ---------------------------------------------------------------------------

adapter_registry.register(OpenAIChatAdapter)

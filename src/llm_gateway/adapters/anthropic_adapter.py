"""adapters.anthropic_adapter

Adapter for Anthropic's **Messages** API.

System turns travel outside the message list (as one newline-joined
``system`` string), ``max_tokens`` is mandatory upstream, and usage is split
across the stream: input tokens arrive on ``message_start``, output tokens on
``message_delta``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypedDict

import anthropic

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

DEFAULT_MAX_TOKENS = 4096

_STOP_REASONS: dict[str, FinishReason] = {
    'end_turn': FinishReason.stop,
    'stop_sequence': FinishReason.stop,
    'max_tokens': FinishReason.length,
}


def map_stop_reason(reason: str | None) -> FinishReason | None:
    return _STOP_REASONS.get(reason) if reason else None


def anthropic_provider_error(exc: anthropic.AnthropicError) -> ProviderError:
    if isinstance(exc, anthropic.APIStatusError):
        body = exc.body if isinstance(exc.body, dict) else {}
        error = body.get('error') if isinstance(body.get('error'), dict) else {}
        code = error.get('type') if isinstance(error.get('type'), str) else None
        return ProviderError(exc.message, Vendor.anthropic.value, status=exc.status_code, code=code)
    return ProviderError(str(exc) or exc.__class__.__name__, Vendor.anthropic.value)


class MessagesStreamTransformer(StreamTransformer):
    """State machine for Messages API event streams.

    ``message_start`` carries the input token count, ``content_block_delta``
    with a ``text_delta`` carries text, ``message_delta`` carries the stop
    reason and output token count, and ``message_stop`` ends the stream.
    Pings, block start/stop events and non-text deltas are ignored.
    """

    def __init__(self, model: str, **kwargs: Any) -> None:
        super().__init__(model, **kwargs)
        self._input_tokens = 0
        self._output_tokens = 0

    def transform(self, event: Mapping[str, Any]) -> ChatChunk | None:
        event_type = event.get('type')

        if event_type == 'message_start':
            message = event.get('message') or {}
            self._input_tokens = (message.get('usage') or {}).get('input_tokens') or 0
            return None

        if event_type == 'content_block_delta':
            delta = event.get('delta') or {}
            if delta.get('type') == 'text_delta' and delta.get('text'):
                return self.content_chunk(delta['text'])
            return None

        if event_type == 'message_delta':
            delta = event.get('delta') or {}
            self._output_tokens = (event.get('usage') or {}).get('output_tokens') or self._output_tokens
            self.record_usage(Usage.from_counts(self._input_tokens, self._output_tokens))
            if 'stop_reason' in delta:
                self.record_finish(map_stop_reason(delta.get('stop_reason')))
            return None

        if event_type == 'message_stop':
            self.record_usage(Usage.from_counts(self._input_tokens, self._output_tokens))
            return self.terminal_chunk(self._pending_finish)

        if event_type == 'error':
            error = event.get('error') or {}
            raise ProviderError(
                error.get('message') or 'Anthropic stream error',
                Vendor.anthropic.value,
                code=error.get('type'),
            )

        return None


class _MessagesRequest(TypedDict, total=False):
    model: str
    messages: list[dict[str, str]]
    max_tokens: int
    system: str
    temperature: float
    top_p: float
    stop_sequences: list[str]


def build_messages_payload(request: ChatRequest, vendor_model: str) -> _MessagesRequest:
    payload: _MessagesRequest = {
        'model': vendor_model,
        'messages': [
            {'role': m.role.value, 'content': m.content} for m in request.messages if m.role is not Role.system
        ],
        'max_tokens': request.max_tokens or DEFAULT_MAX_TOKENS,
    }
    payload.update(
        present(
            system=request.joined_system_prompt(),
            temperature=request.temperature,
            top_p=request.top_p,
            stop_sequences=request.stop_sequences(),
        )
    )
    return payload


def response_from_message(data: Mapping[str, Any], model: str) -> ChatResponse:
    text = ''.join(
        block.get('text') or '' for block in data.get('content') or [] if block.get('type') == 'text'
    )
    usage = data.get('usage') or {}
    return ChatResponse(
        id=data.get('id') or new_completion_id(),
        model=model,
        choices=(
            Choice(
                index=0,
                message=ResponseMessage(content=text),
                finish_reason=map_stop_reason(data.get('stop_reason')),
            ),
        ),
        usage=Usage.from_counts(usage.get('input_tokens'), usage.get('output_tokens')),
    )


# ---------------------------------------------------------------------------
# Adapter implementation
# ---------------------------------------------------------------------------


class AnthropicAdapter(AbstractVendorAdapter):
    """Adapter for the Anthropic Messages API."""

    vendor = Vendor.anthropic
    family = AdapterFamily.messages

    @property
    def _client(self) -> anthropic.AsyncAnthropic:
        return self._clients.anthropic

    async def send(self, request: ChatRequest, vendor_model: str) -> ChatResponse:
        payload = build_messages_payload(request, vendor_model)
        try:
            message = await self._client.messages.create(**payload)
        except anthropic.AnthropicError as exc:
            logger.error(f'Anthropic request failed for {vendor_model}: {exc}')
            raise anthropic_provider_error(exc) from exc

        return response_from_message(as_dict(message), request.model or vendor_model)

    async def stream(self, request: ChatRequest, vendor_model: str) -> AsyncIterator[ChatChunk]:
        transformer = MessagesStreamTransformer(request.model or vendor_model)
        payload = build_messages_payload(request, vendor_model)
        try:
            stream = await self._client.messages.create(**payload, stream=True)
            async with stream:
                async for event in stream:
                    for chunk in transformer.feed(event):
                        yield chunk
        except anthropic.AnthropicError as exc:
            logger.error(f'Anthropic stream failed for {vendor_model}: {exc}')
            raise anthropic_provider_error(exc) from exc

        for chunk in transformer.finish():
            yield chunk


# ---------------------------------------------------------------------------
# Automatic registration
# ---------------------------------------------------------------------------

adapter_registry.register(AnthropicAdapter)

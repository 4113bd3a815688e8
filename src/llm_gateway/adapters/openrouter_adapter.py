"""adapters.openrouter_adapter

Adapter for **OpenRouter**, an OpenAI-compatible relay reached over plain
HTTP with ``httpx``.

The request body is the unified request almost unchanged. The streamed body
is ``data: {json}`` SSE; httpx splits it into lines, each line is decoded with
`llm_gateway.core.sse.SSELineDecoder` and every payload then goes through the
same chat/completions state machine as the direct-chat family.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from llm_gateway.adapters.openai_adapter import ChatCompletionsTransformer, build_chat_payload, response_from_chat
from llm_gateway.core.abc import AbstractVendorAdapter
from llm_gateway.core.descriptor import AdapterFamily, Vendor
from llm_gateway.core.exceptions import ProviderError
from llm_gateway.core.sse import SSELineDecoder
from llm_gateway.registry.adapter_registry import adapter_registry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from llm_gateway.core.types import ChatChunk, ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = '/chat/completions'


def relay_error_message(body: bytes | str, status: int) -> str:
    """Extract ``error.message`` from a relay error body, falling back to the raw text."""
    text = body.decode('utf-8', errors='replace') if isinstance(body, bytes) else body
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text.strip() or f'OpenRouter returned HTTP {status}'
    if isinstance(data, dict):
        error = data.get('error')
        if isinstance(error, dict) and error.get('message'):
            return str(error['message'])
        if isinstance(error, str):
            return error
    return text.strip() or f'OpenRouter returned HTTP {status}'


def build_relay_payload(request: ChatRequest, vendor_model: str, *, stream: bool) -> dict[str, Any]:
    payload: dict[str, Any] = dict(build_chat_payload(request, vendor_model))
    payload['stream'] = stream
    # Ask the relay to report token usage on the final event
    payload['usage'] = {'include': True}
    return payload


class RelayStreamTransformer(ChatCompletionsTransformer):
    """Chat/completions state machine fed from decoded SSE payloads.

    The relay may also push an in-band ``{"error": {...}}`` payload mid-stream.
    """

    def _translate(self, event: Mapping[str, Any]) -> list[ChatChunk]:
        error = event.get('error')
        if error:
            message = error.get('message') if isinstance(error, dict) else str(error)
            code = error.get('code') if isinstance(error, dict) else None
            raise ProviderError(
                message or 'OpenRouter stream error',
                Vendor.openrouter.value,
                status=code if isinstance(code, int) else None,
            )
        return super()._translate(event)


# ---------------------------------------------------------------------------
# Adapter implementation
# ---------------------------------------------------------------------------


class OpenRouterAdapter(AbstractVendorAdapter):
    """Adapter for the OpenRouter relay."""

    vendor = Vendor.openrouter
    family = AdapterFamily.relay

    @property
    def _client(self) -> httpx.AsyncClient:
        return self._clients.relay

    async def send(self, request: ChatRequest, vendor_model: str) -> ChatResponse:
        payload = build_relay_payload(request, vendor_model, stream=False)
        try:
            response = await self._client.post(CHAT_COMPLETIONS_PATH, json=payload)
        except httpx.HTTPError as exc:
            logger.error(f'OpenRouter request failed for {vendor_model}: {exc}')
            raise ProviderError(str(exc) or exc.__class__.__name__, self.vendor.value) from exc

        if response.status_code != httpx.codes.OK:
            message = relay_error_message(response.content, response.status_code)
            logger.error(f'OpenRouter returned HTTP {response.status_code} for {vendor_model}: {message}')
            raise ProviderError(message, self.vendor.value, status=response.status_code)

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise ProviderError('OpenRouter returned a non-JSON body', self.vendor.value) from exc
        if not isinstance(data, dict) or isinstance(data.get('error'), dict):
            raise ProviderError(relay_error_message(response.text, response.status_code), self.vendor.value)
        return response_from_chat(data, request.model or vendor_model, self.vendor)

    async def stream(self, request: ChatRequest, vendor_model: str) -> AsyncIterator[ChatChunk]:
        transformer = RelayStreamTransformer(request.model or vendor_model)
        decoder = SSELineDecoder()
        payload = build_relay_payload(request, vendor_model, stream=True)
        try:
            async with self._client.stream('POST', CHAT_COMPLETIONS_PATH, json=payload) as response:
                if response.status_code != httpx.codes.OK:
                    body = await response.aread()
                    message = relay_error_message(body, response.status_code)
                    logger.error(f'OpenRouter returned HTTP {response.status_code} for {vendor_model}: {message}')
                    raise ProviderError(message, self.vendor.value, status=response.status_code)

                async for line in response.aiter_lines():
                    event = decoder.decode(line)
                    if event is None:
                        continue
                    for chunk in transformer.feed(event):
                        yield chunk
        except httpx.HTTPError as exc:
            logger.error(f'OpenRouter stream failed for {vendor_model}: {exc}')
            raise ProviderError(str(exc) or exc.__class__.__name__, self.vendor.value) from exc

        if decoder.skipped:
            logger.warning(f'OpenRouter stream for {vendor_model} skipped {decoder.skipped} malformed payload(s)')
        for chunk in transformer.finish():
            yield chunk


# ---------------------------------------------------------------------------
# Automatic registration
# ---------------------------------------------------------------------------

adapter_registry.register(OpenRouterAdapter)

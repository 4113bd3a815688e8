"""adapters.gemini_adapter

Adapter for Google's **generate-content** API via the ``google-genai`` SDK.

System turns go into ``system_instruction``, the assistant role is called
``model`` upstream, and every streamed item may hold several text parts. Each
non-empty part becomes its own chunk; an item that also carries a real finish
reason produces the terminal chunk right after its text.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx
from google.genai import errors as genai_errors

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
    Role,
    Usage,
    new_completion_id,
)
from llm_gateway.registry.adapter_registry import adapter_registry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from google import genai

    from llm_gateway.core.types import ChatRequest

logger = logging.getLogger(__name__)

UNSPECIFIED_FINISH = 'FINISH_REASON_UNSPECIFIED'

_FINISH_REASONS: dict[str, FinishReason] = {
    'STOP': FinishReason.stop,
    'MAX_TOKENS': FinishReason.length,
    'SAFETY': FinishReason.content_filter,
}

_ROLES: dict[Role, str] = {
    Role.user: 'user',
    Role.assistant: 'model',
}


def map_finish_reason(reason: str | None) -> FinishReason | None:
    return _FINISH_REASONS.get(reason) if reason else None


def has_finish_reason(reason: str | None) -> bool:
    return reason is not None and reason != UNSPECIFIED_FINISH


def usage_from_metadata(metadata: Mapping[str, Any] | None) -> Usage:
    if not metadata:
        return Usage()
    prompt = metadata.get('prompt_token_count') or 0
    completion = metadata.get('candidates_token_count') or 0
    return Usage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=metadata.get('total_token_count') or prompt + completion,
    )


def gemini_provider_error(exc: genai_errors.APIError) -> ProviderError:
    code = exc.status if isinstance(exc.status, str) else None
    return ProviderError(exc.message or str(exc), Vendor.gemini.value, status=exc.code, code=code)


def _first_candidate(item: Mapping[str, Any]) -> Mapping[str, Any]:
    candidates = item.get('candidates') or []
    return candidates[0] if candidates else {}


def _text_parts(candidate: Mapping[str, Any]) -> list[str]:
    parts = (candidate.get('content') or {}).get('parts') or []
    # Thought summaries are reasoning, not answer text
    return [p['text'] for p in parts if p.get('text') and not p.get('thought')]


class GenerateContentTransformer(StreamTransformer):
    """Split each streamed item into one chunk per text part, plus the terminal chunk."""

    def transform(self, event: Mapping[str, Any]) -> ChatChunk | None:
        chunks = self._translate(event)
        return chunks[-1] if chunks else None

    def feed(self, event: object) -> list[ChatChunk]:
        if self.state is StreamState.terminal:
            return []
        return self._translate(as_dict(event))

    def _translate(self, item: Mapping[str, Any]) -> list[ChatChunk]:
        self.adopt_identity(item.get('response_id'), None)
        if item.get('usage_metadata'):
            self.record_usage(usage_from_metadata(item['usage_metadata']))

        candidate = _first_candidate(item)
        chunks = [self.content_chunk(text) for text in _text_parts(candidate)]
        reason = candidate.get('finish_reason')
        if has_finish_reason(reason):
            chunks.append(self.terminal_chunk(map_finish_reason(reason)))
        return chunks


def build_contents(request: ChatRequest) -> list[dict[str, Any]]:
    return [
        {'role': _ROLES[m.role], 'parts': [{'text': m.content}]} for m in request.messages if m.role is not Role.system
    ]


def build_config(request: ChatRequest) -> dict[str, Any]:
    return present(
        system_instruction=request.joined_system_prompt(),
        temperature=request.temperature,
        max_output_tokens=request.max_tokens,
        top_p=request.top_p,
        stop_sequences=request.stop_sequences(),
        presence_penalty=request.presence_penalty,
        frequency_penalty=request.frequency_penalty,
    )


def response_from_generate(data: Mapping[str, Any], model: str) -> ChatResponse:
    candidate = _first_candidate(data)
    if not candidate:
        raise ProviderError('Upstream returned no candidates', Vendor.gemini.value)
    reason = candidate.get('finish_reason')
    return ChatResponse(
        id=data.get('response_id') or new_completion_id(),
        model=model,
        choices=(
            Choice(
                index=0,
                message=ResponseMessage(content=''.join(_text_parts(candidate))),
                finish_reason=map_finish_reason(reason) if has_finish_reason(reason) else None,
            ),
        ),
        usage=usage_from_metadata(data.get('usage_metadata')),
    )


# ---------------------------------------------------------------------------
# Adapter implementation
# ---------------------------------------------------------------------------


class GeminiAdapter(AbstractVendorAdapter):
    """Adapter for the Gemini generate-content API."""

    vendor = Vendor.gemini
    family = AdapterFamily.generate_content

    @property
    def _client(self) -> genai.Client:
        return self._clients.gemini

    async def send(self, request: ChatRequest, vendor_model: str) -> ChatResponse:
        try:
            response = await self._client.aio.models.generate_content(
                model=vendor_model,
                contents=build_contents(request),
                config=build_config(request),
            )
        except genai_errors.APIError as exc:
            logger.error(f'Gemini request failed for {vendor_model}: {exc}')
            raise gemini_provider_error(exc) from exc
        except httpx.HTTPError as exc:
            logger.error(f'Gemini request failed for {vendor_model}: {exc}')
            raise ProviderError(str(exc) or exc.__class__.__name__, self.vendor.value) from exc

        return response_from_generate(as_dict(response), request.model or vendor_model)

    async def stream(self, request: ChatRequest, vendor_model: str) -> AsyncIterator[ChatChunk]:
        transformer = GenerateContentTransformer(request.model or vendor_model)
        stream = None
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=vendor_model,
                contents=build_contents(request),
                config=build_config(request),
            )
            async for item in stream:
                for chunk in transformer.feed(item):
                    yield chunk
        except genai_errors.APIError as exc:
            logger.error(f'Gemini stream failed for {vendor_model}: {exc}')
            raise gemini_provider_error(exc) from exc
        except httpx.HTTPError as exc:
            logger.error(f'Gemini stream failed for {vendor_model}: {exc}')
            raise ProviderError(str(exc) or exc.__class__.__name__, self.vendor.value) from exc
        finally:
            # The SDK hands back a bare async generator; close it explicitly
            aclose = getattr(stream, 'aclose', None)
            if aclose is not None:
                await aclose()

        for chunk in transformer.finish():
            yield chunk


# ---------------------------------------------------------------------------
# Automatic registration
# ---------------------------------------------------------------------------

adapter_registry.register(GeminiAdapter)

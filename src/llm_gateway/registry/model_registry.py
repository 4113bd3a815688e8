"""registry.model_registry

Static table of the models the gateway serves and the read-only lookup over
it. Resolving is a pure in-memory operation: an unknown model id is rejected
here, before any adapter or network client is touched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from llm_gateway.core.descriptor import EndpointKind, ModelDescriptor, Vendor
from llm_gateway.core.exceptions import UnsupportedModelError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

BUILTIN_MODELS: tuple[ModelDescriptor, ...] = (
    # OpenAI chat/completions
    ModelDescriptor(id='gpt-4o', vendor=Vendor.openai, max_tokens=16384),
    ModelDescriptor(id='gpt-4-turbo', vendor=Vendor.openai, max_tokens=4096),
    ModelDescriptor(id='gpt-4', vendor=Vendor.openai, max_tokens=8192),
    ModelDescriptor(id='gpt-3.5-turbo', vendor=Vendor.openai, max_tokens=4096),
    ModelDescriptor(id='o3', vendor=Vendor.openai, max_tokens=100000),
    ModelDescriptor(id='o4-mini', vendor=Vendor.openai, max_tokens=100000),
    # OpenAI responses endpoint (reasoning models)
    ModelDescriptor(id='gpt-5-codex', vendor=Vendor.openai, endpoint_kind=EndpointKind.reasoning, max_tokens=128000),
    ModelDescriptor(id='gpt-5-mini', vendor=Vendor.openai, endpoint_kind=EndpointKind.reasoning, max_tokens=128000),
    ModelDescriptor(
        id='gpt-5.1-codex',
        vendor=Vendor.openai,
        endpoint_kind=EndpointKind.reasoning,
        max_tokens=128000,
        wire_id='gpt-5-codex',
    ),
    ModelDescriptor(
        id='gpt-5.1-codex-mini',
        vendor=Vendor.openai,
        endpoint_kind=EndpointKind.reasoning,
        max_tokens=128000,
        wire_id='gpt-5-mini',
    ),
    # Anthropic
    ModelDescriptor(id='claude-3-5-sonnet-20241022', vendor=Vendor.anthropic, max_tokens=8192),
    ModelDescriptor(id='claude-3-5-haiku-20241022', vendor=Vendor.anthropic, max_tokens=8192),
    # Google Gemini
    ModelDescriptor(id='gemini-2.5-pro', vendor=Vendor.gemini, max_tokens=65536),
    ModelDescriptor(id='gemini-2.5-flash', vendor=Vendor.gemini, max_tokens=65536),
    ModelDescriptor(id='gemini-3-pro-preview', vendor=Vendor.gemini, max_tokens=65536),
    # OpenRouter relay
    ModelDescriptor(
        id='claude-sonnet-4.5',
        vendor=Vendor.openrouter,
        max_tokens=64000,
        wire_id='anthropic/claude-sonnet-4.5',
    ),
    ModelDescriptor(
        id='gemini-2.5-flash-openrouter',
        vendor=Vendor.openrouter,
        max_tokens=65536,
        wire_id='google/gemini-2.5-flash',
    ),
)


class ModelRegistry:
    """Read-only model id → descriptor lookup."""

    def __init__(self, models: Iterable[ModelDescriptor] = BUILTIN_MODELS) -> None:
        table: dict[str, ModelDescriptor] = {}
        for descriptor in models:
            if descriptor.id in table:
                raise ValueError(f'Duplicate model id: {descriptor.id}')
            table[descriptor.id] = descriptor
        self._models: Mapping[str, ModelDescriptor] = table

    def resolve(self, model_id: str) -> ModelDescriptor:
        """Return the descriptor for *model_id*.

        Raises
        ------
        UnsupportedModelError
            If *model_id* is not registered.

        """
        try:
            return self._models[model_id]
        except KeyError as exc:
            raise UnsupportedModelError(model_id, self.available_models()) from exc

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def available_models(self) -> list[str]:
        """Return a sorted list of registered model ids."""
        return sorted(self._models)

    def describe(self) -> list[dict[str, Any]]:
        """Public model listing (id, provider, token limit, streaming support)."""
        return [
            {
                'id': d.id,
                'provider': d.vendor.value,
                'max_tokens': d.max_tokens,
                'supports_streaming': d.supports_streaming,
            }
            for d in sorted(self._models.values(), key=lambda d: d.id)
        ]


# Re-export a module-level instance for ergonomic usage
model_registry: ModelRegistry = ModelRegistry()

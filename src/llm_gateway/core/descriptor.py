"""core.descriptor

Value objects describing *where* a model lives: its vendor, which upstream
endpoint serves it and the wire id the vendor expects.

This module is intentionally free of external dependencies (apart from Pydantic)
so that it can live in the **core** domain layer and be imported by any other
layer without causing circular-import issues.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, model_validator

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Vendor(StrEnum):
    openai = 'openai'
    anthropic = 'anthropic'
    gemini = 'gemini'
    openrouter = 'openrouter'


class EndpointKind(StrEnum):
    standard = 'standard'
    reasoning = 'reasoning'


class AdapterFamily(StrEnum):
    """Closed set of translation strategies; one adapter implements each."""

    direct_chat = 'direct_chat'
    reasoning = 'reasoning'
    messages = 'messages'
    generate_content = 'generate_content'
    relay = 'relay'


_FAMILY_BY_VENDOR: dict[Vendor, AdapterFamily] = {
    Vendor.openai: AdapterFamily.direct_chat,
    Vendor.anthropic: AdapterFamily.messages,
    Vendor.gemini: AdapterFamily.generate_content,
    Vendor.openrouter: AdapterFamily.relay,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class ModelDescriptor(BaseModel):
    """Registry entry for one model.

    * `id` … identifier callers put in ``request.model``
    * `wire_id` … identifier the vendor expects (defaults to `id`)
    """

    id: str = Field(..., min_length=1)
    vendor: Vendor
    endpoint_kind: EndpointKind = EndpointKind.standard
    max_tokens: int = Field(..., ge=1)
    supports_streaming: bool = True
    wire_id: str = ''

    model_config = {
        'frozen': True,  # hashable / usable as dict key
    }

    @model_validator(mode='before')
    @classmethod
    def _default_wire_id(cls, data: object) -> object:
        if isinstance(data, dict) and not data.get('wire_id'):
            return {**data, 'wire_id': data.get('id', '')}
        return data

    @property
    def family(self) -> AdapterFamily:
        """Adapter family serving this model.

        Only OpenAI exposes a separate reasoning endpoint; every other vendor
        maps to exactly one family.
        """
        if self.vendor is Vendor.openai and self.endpoint_kind is EndpointKind.reasoning:
            return AdapterFamily.reasoning
        return _FAMILY_BY_VENDOR[self.vendor]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f'{self.vendor}:{self.id}'

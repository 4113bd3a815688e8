"""core.types

Vendor-agnostic DTOs and enums shared by the router, the registry and every
adapter.

These models live in the **core** layer so that *adapters*, *registry*, and
higher application layers can depend on them without causing circular imports.
None of them carry vendor-specific fields: translation to and from vendor
payloads happens inside each adapter.
"""

from __future__ import annotations

import time
import uuid
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Chat roles (OpenAI-style for broad compatibility)
# ---------------------------------------------------------------------------


class Role(StrEnum):
    system = 'system'
    user = 'user'
    assistant = 'assistant'


class FinishReason(StrEnum):
    """Normalised finish reasons. A missing reason is represented by ``None``."""

    stop = 'stop'
    length = 'length'
    content_filter = 'content_filter'


class OutcomeStatus(StrEnum):
    success = 'success'
    error = 'error'


# ---------------------------------------------------------------------------
# Messages and requests
# ---------------------------------------------------------------------------


class Message(BaseModel):
    """Single chat message."""

    role: Role
    content: str

    # Immutable value-object
    model_config = ConfigDict(frozen=True)


class ChatRequest(BaseModel):
    """Unified chat-completion request.

    Instances are immutable; the constraint engine and the router derive new
    requests with ``model_copy(update=...)``. A parameter that is ``None`` is
    treated as absent and never reaches a vendor call.
    """

    messages: tuple[Message, ...] = Field(..., min_length=1)
    model: str | None = None
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, ge=1, description='Maximum tokens in completion')
    top_p: float | None = Field(None, ge=0.0, le=1.0)
    frequency_penalty: float | None = Field(None, ge=-2.0, le=2.0)
    presence_penalty: float | None = Field(None, ge=-2.0, le=2.0)
    stop: str | tuple[str, ...] | None = None
    stream: bool = False

    # Unknown inbound fields (tools, user, ...) are dropped rather than rejected
    model_config = ConfigDict(frozen=True, extra='ignore')

    def stop_sequences(self) -> list[str] | None:
        """Return ``stop`` normalised to a list (vendors disagree on the shape).

        An empty string or list means no stop sequences and gives ``None``.
        """
        if not self.stop:
            return None
        if isinstance(self.stop, str):
            return [self.stop]
        return list(self.stop)

    def messages_with_role(self, role: Role) -> list[Message]:
        return [m for m in self.messages if m.role == role]

    def joined_system_prompt(self) -> str | None:
        """Concatenate all system messages in order, newline-joined."""
        system = '\n'.join(m.content for m in self.messages_with_role(Role.system))
        return system or None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class Usage(BaseModel):
    """Token accounting in the unified (prompt/completion/total) vocabulary."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_counts(cls, prompt_tokens: int | None, completion_tokens: int | None) -> Usage:
        """Build usage from vendors that only report input/output counts."""
        prompt = prompt_tokens or 0
        completion = completion_tokens or 0
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)


class ResponseMessage(BaseModel):
    role: Role = Role.assistant
    content: str = ''

    model_config = ConfigDict(frozen=True)


class Choice(BaseModel):
    index: int = 0
    message: ResponseMessage
    finish_reason: FinishReason | None = None

    model_config = ConfigDict(frozen=True)


class ChatResponse(BaseModel):
    """Unified non-streaming response."""

    id: str
    object: str = 'chat.completion'
    created: int = Field(default_factory=lambda: int(time.time()))
    model: str
    choices: tuple[Choice, ...] = Field(..., min_length=1)
    usage: Usage = Field(default_factory=Usage)

    model_config = ConfigDict(frozen=True)

    @property
    def content(self) -> str:
        """Text of the first choice."""
        return self.choices[0].message.content

    def to_wire(self) -> dict[str, Any]:
        """JSON body returned to the caller."""
        return self.model_dump(mode='json')


class Delta(BaseModel):
    role: Role | None = None
    content: str | None = None

    model_config = ConfigDict(frozen=True)


class ChunkChoice(BaseModel):
    index: int = 0
    delta: Delta = Field(default_factory=Delta)
    finish_reason: FinishReason | None = None

    model_config = ConfigDict(frozen=True)


class ChatChunk(BaseModel):
    """One item of a unified stream.

    Only the terminal chunk carries ``usage``; ``finish_reason`` is ``None`` on
    every other chunk.
    """

    id: str
    object: str = 'chat.completion.chunk'
    created: int
    model: str
    choices: tuple[ChunkChoice, ...] = ()
    usage: Usage | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def content(self) -> str | None:
        return self.choices[0].delta.content if self.choices else None

    @property
    def finish_reason(self) -> FinishReason | None:
        return self.choices[0].finish_reason if self.choices else None

    def to_wire(self) -> dict[str, Any]:
        """JSON payload of one SSE frame.

        Empty delta fields and a missing ``usage`` are omitted, while
        ``finish_reason`` is always present (``null`` on non-terminal chunks).
        """
        body: dict[str, Any] = {
            'id': self.id,
            'object': self.object,
            'created': self.created,
            'model': self.model,
            'choices': [
                {
                    'index': c.index,
                    'delta': c.delta.model_dump(mode='json', exclude_none=True),
                    'finish_reason': c.finish_reason.value if c.finish_reason else None,
                }
                for c in self.choices
            ],
        }
        if self.usage is not None:
            body['usage'] = self.usage.model_dump(mode='json')
        return body


def new_completion_id() -> str:
    return f'chatcmpl-{uuid.uuid4().hex}'


# ---------------------------------------------------------------------------
# Outcome reporting
# ---------------------------------------------------------------------------


class OutcomeEvent(BaseModel):
    """What the router reports to the usage sink after every call."""

    user_id: str
    model: str
    vendor: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    duration_ms: int
    status: OutcomeStatus
    error_message: str | None = None

    model_config = ConfigDict(frozen=True)

"""core.stream

Base state machine shared by every adapter's streaming transformer.

A transformer turns vendor stream events into unified chunks. It moves through
three states::

    awaiting_first_event --(first event)--> streaming_content --(done)--> terminal

Events whose tag the family does not recognise are a no-op transition, and
nothing is emitted once the terminal state is reached. Every chunk a
transformer emits shares one ``id`` and one ``created`` timestamp.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel

from llm_gateway.core.types import (
    ChatChunk,
    ChunkChoice,
    Delta,
    FinishReason,
    Role,
    Usage,
    new_completion_id,
)

logger = logging.getLogger(__name__)


class StreamState(StrEnum):
    awaiting_first_event = 'awaiting_first_event'
    streaming_content = 'streaming_content'
    terminal = 'terminal'


def as_dict(event: object) -> dict[str, Any]:
    """Normalise a vendor SDK object (pydantic model) or mapping into a dict."""
    if isinstance(event, BaseModel):
        return event.model_dump(mode='json', exclude_none=True)
    if isinstance(event, Mapping):
        return dict(event)
    raise TypeError(f'Unsupported vendor event type: {type(event).__name__}')


class StreamTransformer(ABC):
    """Vendor event -> unified chunk translator for one stream."""

    def __init__(self, model: str, *, chunk_id: str | None = None, created: int | None = None) -> None:
        self.model = model
        self.state = StreamState.awaiting_first_event
        self._id = chunk_id or new_completion_id()
        self._created = created or int(time.time())
        self._usage: Usage | None = None
        self._pending_finish: FinishReason | None = None
        self._finish_seen = False

    # ------------------------------------------------------------------
    # Per-family hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def transform(self, event: Mapping[str, Any]) -> ChatChunk | None:
        """Translate one vendor event into zero or one unified chunk."""

    def feed(self, event: object) -> list[ChatChunk]:
        """Translate one raw vendor event; families that split events override this."""
        if self.state is StreamState.terminal:
            return []
        chunk = self.transform(as_dict(event))
        return [chunk] if chunk is not None else []

    def finish(self) -> list[ChatChunk]:
        """Flush a terminal chunk when the vendor stream ended without one.

        Called once the vendor stream is exhausted. If a finish reason was seen
        but the terminal chunk is still pending (waiting for usage), it is
        emitted now with whatever usage is known.
        """
        if self.state is StreamState.terminal:
            return []
        if self._finish_seen:
            return [self.terminal_chunk(self._pending_finish)]
        logger.warning(f'Vendor stream for {self.model} ended without a terminal event')
        return []

    # ------------------------------------------------------------------
    # Chunk construction
    # ------------------------------------------------------------------

    @property
    def chunk_id(self) -> str:
        return self._id

    @property
    def created(self) -> int:
        return self._created

    def adopt_identity(self, chunk_id: str | None, created: int | None) -> None:
        """Reuse the vendor's stream id and timestamp, before anything was emitted."""
        if self.state is not StreamState.awaiting_first_event:
            return
        if chunk_id:
            self._id = chunk_id
        if created:
            self._created = created

    def record_usage(self, usage: Usage) -> None:
        self._usage = usage

    def record_finish(self, reason: FinishReason | None) -> None:
        self._pending_finish = reason
        self._finish_seen = True

    def content_chunk(self, text: str) -> ChatChunk:
        """Non-terminal chunk; the first one announces the assistant role."""
        role = Role.assistant if self.state is StreamState.awaiting_first_event else None
        self.state = StreamState.streaming_content
        return self._chunk(Delta(role=role, content=text), None, None)

    def terminal_chunk(self, reason: FinishReason | None, usage: Usage | None = None) -> ChatChunk:
        """The single chunk carrying the finish reason and the final usage."""
        self.state = StreamState.terminal
        return self._chunk(Delta(), reason, usage or self._usage or Usage())

    def _chunk(self, delta: Delta, reason: FinishReason | None, usage: Usage | None) -> ChatChunk:
        return ChatChunk(
            id=self._id,
            created=self._created,
            model=self.model,
            choices=(ChunkChoice(index=0, delta=delta, finish_reason=reason),),
            usage=usage,
        )

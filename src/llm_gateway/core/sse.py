"""core.sse

Server-Sent-Events framing in both directions.

* `SSELineDecoder` parses the ``data: {json}`` lines of an upstream body.
  Splitting the body into lines across network reads is left to
  ``httpx.Response.aiter_lines()``.
* `iter_sse_frames` renders a unified chunk stream as the frames the gateway
  sends to its own callers.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from llm_gateway.core.exceptions import GatewayError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from llm_gateway.core.types import ChatChunk

logger = logging.getLogger(__name__)

DATA_PREFIX = 'data:'
DONE_SENTINEL = '[DONE]'
DONE_FRAME = f'data: {DONE_SENTINEL}\n\n'


class SSELineDecoder:
    """Per-line ``data:`` payload parser.

    Comment lines, other SSE fields, blank separators and the ``[DONE]``
    sentinel yield nothing. A payload that is not a JSON object is logged,
    counted in `skipped` and dropped; it never aborts the stream.
    """

    def __init__(self) -> None:
        self.skipped = 0

    def decode(self, line: str) -> dict[str, Any] | None:
        line = line.strip()
        if not line.startswith(DATA_PREFIX):
            return None
        data = line[len(DATA_PREFIX) :].strip()
        if not data or data == DONE_SENTINEL:
            return None
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as exc:
            self.skipped += 1
            logger.warning(f'Skipping malformed SSE payload ({exc.msg}): {data[:200]!r}')
            return None
        if not isinstance(payload, dict):
            self.skipped += 1
            logger.warning(f'Skipping non-object SSE payload: {data[:200]!r}')
            return None
        return payload


def format_frame(payload: dict[str, Any]) -> str:
    return f'data: {json.dumps(payload, separators=(",", ":"))}\n\n'


async def iter_sse_frames(chunks: AsyncIterator[ChatChunk]) -> AsyncIterator[str]:
    """Render a unified stream as outbound SSE frames.

    Emits one frame per chunk followed by ``data: [DONE]``. If the stream
    fails part-way, a single ``{"error": message}`` frame replaces the rest of
    the stream and no ``[DONE]`` frame follows; response headers have already
    been sent at that point, so the error cannot change the HTTP status.

    Closing this generator (the downstream write failed) closes *chunks*,
    which releases the vendor stream behind it.
    """
    try:
        async for chunk in chunks:
            yield format_frame(chunk.to_wire())
    except GatewayError as exc:
        logger.error(f'Stream failed after start: {exc}')
        yield format_frame({'error': str(exc)})
        return
    except Exception as exc:
        logger.exception('Unexpected error while streaming')
        yield format_frame({'error': str(exc) or 'Unknown error'})
        return
    finally:
        aclose = getattr(chunks, 'aclose', None)
        if aclose is not None:
            await aclose()
    yield DONE_FRAME

"""gateway.usage

Where outcome events go. The gateway only *reports* usage; storing, billing or
aggregating it is the sink's business.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from llm_gateway.core.types import OutcomeStatus

if TYPE_CHECKING:
    from llm_gateway.core.types import OutcomeEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class UsageSink(Protocol):
    """Receives one `OutcomeEvent` per routed call.

    ``report`` is fire-and-forget: it should return quickly, and anything it
    raises is logged by the router and otherwise ignored.
    """

    def report(self, event: OutcomeEvent) -> None: ...


class LoggingUsageSink:
    """Default sink: one ``LLM Request`` log line per outcome."""

    def report(self, event: OutcomeEvent) -> None:
        if event.status is OutcomeStatus.success:
            logger.info(
                f'LLM Request user={event.user_id} model={event.model} provider={event.vendor} '
                f'tokens={event.total_tokens} duration={event.duration_ms}ms'
            )
        else:
            logger.warning(
                f'LLM Request failed user={event.user_id} model={event.model} provider={event.vendor} '
                f'duration={event.duration_ms}ms error={event.error_message}'
            )

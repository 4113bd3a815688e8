"""gateway.router

Entry point of the gateway core.

`GatewayRouter` resolves the model (explicit, or the process-wide default),
picks the adapter for the model's family, applies the parameter constraints,
dispatches, and reports exactly one `OutcomeEvent` per call to the usage sink.
It never persists anything itself.

Example
-------
```python
router = GatewayRouter.from_settings(GatewaySettings.from_env())
response = await router.route({'messages': [{'role': 'user', 'content': 'hi'}]}, caller_id='u-1')

async for chunk in await router.route_stream(request, caller_id='u-1'):
    ...
```
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from llm_gateway.core.config import DEFAULT_MODEL
from llm_gateway.core.exceptions import AdapterNotFoundError, ValidationError
from llm_gateway.core.types import ChatRequest, OutcomeEvent, OutcomeStatus
from llm_gateway.core.validation import parse_request
from llm_gateway.gateway.usage import LoggingUsageSink
from llm_gateway.registry.adapter_registry import load_builtin_adapters
from llm_gateway.registry.client_pool import ClientPool
from llm_gateway.registry.constraints import ConstraintEngine
from llm_gateway.registry.model_registry import ModelRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Mapping

    from llm_gateway.core.abc import AbstractVendorAdapter
    from llm_gateway.core.config import GatewaySettings
    from llm_gateway.core.descriptor import AdapterFamily, ModelDescriptor
    from llm_gateway.core.types import ChatChunk, ChatResponse, Usage
    from llm_gateway.gateway.usage import UsageSink

logger = logging.getLogger(__name__)

UNKNOWN = 'unknown'
CANCELLED_MESSAGE = 'stream cancelled by consumer'


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class RoutedStream:
    """Chunk stream returned by `GatewayRouter.route_stream`.

    Wraps the adapter's stream and reports exactly one outcome event: success
    when the vendor stream is drained, the error when it fails, and
    ``stream cancelled by consumer`` when it is closed, cancelled or garbage
    collected before that. A stream closed before its first pull never opens
    the vendor connection.
    """

    def __init__(
        self,
        router: GatewayRouter,
        chunks: AsyncGenerator[ChatChunk, None],
        caller_id: str,
        descriptor: ModelDescriptor,
    ) -> None:
        self._router = router
        self._chunks = chunks
        self._caller_id = caller_id
        self._descriptor = descriptor
        self._started = time.perf_counter()
        self._usage: Usage | None = None
        self._reported = False

    def __aiter__(self) -> RoutedStream:
        return self

    async def __anext__(self) -> ChatChunk:
        if self._reported:
            raise StopAsyncIteration
        try:
            chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            self._finish(None)
            raise
        except asyncio.CancelledError:
            self._finish(CANCELLED_MESSAGE)
            raise
        except Exception as exc:
            self._finish(exc)
            raise
        if chunk.usage is not None:
            self._usage = chunk.usage
        return chunk

    async def __aenter__(self) -> RoutedStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if not self._reported:
            self._finish(CANCELLED_MESSAGE)
        await self._chunks.aclose()

    def __del__(self) -> None:
        if not getattr(self, '_reported', True):
            self._finish(CANCELLED_MESSAGE)

    def _finish(self, error: BaseException | str | None) -> None:
        self._reported = True
        duration_ms = _elapsed_ms(self._started)
        if error is None:
            self._router._report_success(self._caller_id, self._descriptor, self._usage, duration_ms)
            logger.debug(f'Completed stream {self._descriptor.id} for {self._caller_id}')
            return
        if isinstance(error, str):
            logger.info(f'Stream {self._descriptor.id} for {self._caller_id} closed by consumer')
        self._router._report_failure(
            self._caller_id, self._descriptor.id, self._descriptor.vendor.value, error, duration_ms
        )


class GatewayRouter:
    """Route unified requests to vendor adapters.

    Parameters
    ----------
    registry
        Model id -> descriptor lookup.
    constraints
        Per-model parameter rules.
    adapters
        One adapter instance per family.
    usage_sink
        Receives the outcome event of every call. Defaults to
        `LoggingUsageSink`.
    default_model
        Model used when a request does not name one.

    """

    def __init__(
        self,
        registry: ModelRegistry,
        constraints: ConstraintEngine,
        adapters: Mapping[AdapterFamily, AbstractVendorAdapter],
        usage_sink: UsageSink | None = None,
        default_model: str = DEFAULT_MODEL,
    ) -> None:
        self._registry = registry
        self._constraints = constraints
        self._adapters = dict(adapters)
        self._usage_sink = usage_sink or LoggingUsageSink()
        self._default_model = default_model
        self._clients: ClientPool | None = None

    @classmethod
    def from_settings(
        cls,
        settings: GatewaySettings,
        *,
        usage_sink: UsageSink | None = None,
        clients: ClientPool | None = None,
        registry: ModelRegistry | None = None,
        constraints: ConstraintEngine | None = None,
    ) -> GatewayRouter:
        """Wire the built-in adapters to a (possibly injected) client pool."""
        pool = clients or ClientPool(settings)
        adapters = {family: adapter_cls(pool) for family, adapter_cls in load_builtin_adapters().mapping().items()}
        router = cls(
            registry or ModelRegistry(),
            constraints or ConstraintEngine(),
            adapters,
            usage_sink=usage_sink,
            default_model=settings.default_model,
        )
        router._clients = pool
        return router

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def default_model(self) -> str:
        return self._default_model

    def list_models(self) -> list[dict[str, Any]]:
        return self._registry.describe()

    def adapter_for(self, descriptor: ModelDescriptor) -> AbstractVendorAdapter:
        try:
            return self._adapters[descriptor.family]
        except KeyError as exc:
            raise AdapterNotFoundError(f'No adapter registered for family: {descriptor.family}') from exc

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def route(self, request: ChatRequest | Mapping[str, Any], caller_id: str) -> ChatResponse:
        """Blocking completion; reports one outcome event, then returns or re-raises."""
        derived, descriptor, adapter = self._prepare(request, caller_id)

        logger.info(f'Routing {descriptor.id} to {descriptor.vendor} for {caller_id}')
        started = time.perf_counter()
        try:
            response = await adapter.send(derived, descriptor.wire_id)
        except Exception as exc:
            self._report_failure(caller_id, descriptor.id, descriptor.vendor.value, exc, _elapsed_ms(started))
            raise

        self._report_success(caller_id, descriptor, response.usage, _elapsed_ms(started))
        logger.debug(f'Completed {descriptor.id} for {caller_id}')
        return response

    async def route_stream(self, request: ChatRequest | Mapping[str, Any], caller_id: str) -> RoutedStream:
        """Streaming completion.

        Validation, model resolution and constraints run now, so their errors
        raise from this call; the returned stream then only fails with vendor
        errors. The outcome event is reported once the stream is drained,
        fails, or is closed or discarded by the consumer.
        """
        derived, descriptor, adapter = self._prepare(request, caller_id, streaming=True)

        logger.info(f'Routing {descriptor.id} to {descriptor.vendor} for {caller_id} (stream)')
        return RoutedStream(self, adapter.stream(derived, descriptor.wire_id), caller_id, descriptor)

    def _prepare(
        self, request: ChatRequest | Mapping[str, Any], caller_id: str, *, streaming: bool = False
    ) -> tuple[ChatRequest, ModelDescriptor, AbstractVendorAdapter]:
        """Everything that happens before dispatch; failures are reported and re-raised."""
        model_id = request.model if isinstance(request, ChatRequest) else None
        try:
            parsed = request if isinstance(request, ChatRequest) else parse_request(request)
            model_id = parsed.model or self._default_model
            descriptor = self._registry.resolve(model_id)
            if streaming and not descriptor.supports_streaming:
                raise ValidationError(
                    f'Model does not support streaming: {model_id}',
                    [{'path': 'stream', 'message': f'{model_id} only supports blocking completions'}],
                )
            adapter = self.adapter_for(descriptor)
            derived = self._constraints.apply(parsed.model_copy(update={'model': model_id}), model_id)
        except Exception as exc:
            logger.warning(f'Rejected request from {caller_id}: {exc}')
            self._report_failure(caller_id, model_id or UNKNOWN, UNKNOWN, exc, 0)
            raise
        return derived, descriptor, adapter

    # ------------------------------------------------------------------
    # Outcome reporting
    # ------------------------------------------------------------------

    def _report_success(
        self, caller_id: str, descriptor: ModelDescriptor, usage: Usage | None, duration_ms: int
    ) -> None:
        event = OutcomeEvent(
            user_id=caller_id,
            model=descriptor.id,
            vendor=descriptor.vendor.value,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
            duration_ms=duration_ms,
            status=OutcomeStatus.success,
        )
        self._report(event)

    def _report_failure(
        self, caller_id: str, model: str, vendor: str, error: BaseException | str, duration_ms: int
    ) -> None:
        message = error if isinstance(error, str) else str(error) or error.__class__.__name__
        event = OutcomeEvent(
            user_id=caller_id,
            model=model,
            vendor=vendor,
            duration_ms=duration_ms,
            status=OutcomeStatus.error,
            error_message=message,
        )
        self._report(event)

    def _report(self, event: OutcomeEvent) -> None:
        try:
            self._usage_sink.report(event)
        except Exception:
            # A broken sink must never fail the call itself
            logger.exception(f'Usage sink failed for {event.model}')

    async def aclose(self) -> None:
        """Close the vendor clients of a router built with `from_settings`."""
        if self._clients is not None:
            await self._clients.aclose()

"""core.abc

Abstract base class that *all* vendor adapters must implement.

Design goals
============
1. **Vendor-agnostic public API** - the router interacts exclusively via
    `send()` / `stream()` passing domain models (`ChatRequest`) and receiving
    `ChatResponse` / `ChatChunk`. It never touches vendor payloads.
2. **Translation at the boundary** - each adapter builds its own vendor request
    payload and converts every vendor failure into `ProviderError`.
3. **No retries** - a vendor failure surfaces immediately.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from llm_gateway.core.descriptor import AdapterFamily, Vendor
    from llm_gateway.core.types import ChatChunk, ChatRequest, ChatResponse
    from llm_gateway.registry.client_pool import ClientPool


def present(**params: Any) -> dict[str, Any]:
    """Keep only parameters that are set; ``None`` means "do not send"."""
    return {key: value for key, value in params.items() if value is not None}


class AbstractVendorAdapter(ABC):
    """Vendor-independent adapter interface."""

    #: Vendor slug reported in outcome events and provider errors.
    vendor: ClassVar[Vendor]
    #: Adapter family this class implements.
    family: ClassVar[AdapterFamily]

    # ---------------------------------------------------------------------
    # Construction
    # ---------------------------------------------------------------------

    def __init__(self, clients: ClientPool) -> None:
        """Keep a reference to the shared pool; clients are built on first use."""
        self._clients = clients

    # ------------------------------------------------------------------
    # Methods to implement in concrete adapters
    # ------------------------------------------------------------------

    @abstractmethod
    async def send(self, request: ChatRequest, vendor_model: str) -> ChatResponse:
        """Blocking (awaited) completion."""

    @abstractmethod
    def stream(self, request: ChatRequest, vendor_model: str) -> AsyncGenerator[ChatChunk, None]:
        """Lazy unified stream; closing it releases the vendor connection."""

    # ------------------------------------------------------------------
    # Helper - string representation
    # ------------------------------------------------------------------

    def __repr__(self) -> str:  # pragma: no cover - cosmetic
        return f'<{self.__class__.__name__} vendor={self.vendor!s}>'

"""core.exceptions

Centralised exception hierarchy for *llm_gateway*.

Each error carries an `http_status` attribute so that upper layers (REST API
controllers, FastAPI exception handlers, etc.) can translate exceptions to
appropriate HTTP responses *without* scattering status-code logic throughout
business code.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


# ---------------------------------------------------------------------------
# Base mixin with HTTP status information
# ---------------------------------------------------------------------------


class GatewayError(Exception):
    """Base class for all *llm_gateway* domain errors."""

    #: Default HTTP status if not overridden by subclass.
    http_status: ClassVar[HTTPStatus] = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)

    @property
    def message(self) -> str:
        return str(self)

    def details(self) -> dict[str, Any]:
        """Extra fields merged into the error body (overridden by subclasses)."""
        return {}

    def to_json(self) -> dict[str, dict[str, Any]]:
        """Unified error body returned by the HTTP layer."""
        return {'error': {'type': self.__class__.__name__, 'message': str(self), **self.details()}}


# ---------------------------------------------------------------------------
# Concrete error classes
# ---------------------------------------------------------------------------


class ValidationError(GatewayError):
    """Raised when an inbound request is structurally invalid."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.BAD_REQUEST  # 400

    def __init__(self, message: str = 'Validation failed', issues: Sequence[Mapping[str, str]] = ()) -> None:
        super().__init__(message)
        self.issues: list[dict[str, str]] = [dict(i) for i in issues]

    def details(self) -> dict[str, Any]:
        return {'issues': self.issues} if self.issues else {}


class UnsupportedModelError(GatewayError):
    """Raised when the requested model id is not in the registry."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.BAD_REQUEST  # 400

    def __init__(self, model_id: str, supported: Sequence[str] = ()) -> None:
        super().__init__(f'Unsupported model: {model_id}')
        self.model_id = model_id
        self.supported: list[str] = list(supported)

    def details(self) -> dict[str, Any]:
        return {'requested_model': self.model_id, 'supported_models': self.supported}


class AdapterNotFoundError(GatewayError):
    """Raised when no adapter is registered for a vendor family."""

    http_status: ClassVar[HTTPStatus] = HTTPStatus.NOT_IMPLEMENTED  # 501


class ProviderError(GatewayError):
    """Upstream vendor failure (transport, HTTP status or SDK error).

    The vendor's status code and message are carried verbatim; the gateway
    never retries.
    """

    http_status: ClassVar[HTTPStatus] = HTTPStatus.BAD_GATEWAY  # 502

    def __init__(
        self,
        message: str,
        vendor: str,
        *,
        status: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message or 'LLM provider error')
        self.vendor = vendor
        self.status = status
        self.code = code

    def details(self) -> dict[str, Any]:
        body: dict[str, Any] = {'vendor': self.vendor}
        if self.status is not None:
            body['status'] = self.status
        if self.code is not None:
            body['code'] = self.code
        return body


HTTP_STATUS_MAP: Mapping[type[GatewayError], HTTPStatus] = {
    ValidationError: ValidationError.http_status,
    UnsupportedModelError: UnsupportedModelError.http_status,
    AdapterNotFoundError: AdapterNotFoundError.http_status,
    ProviderError: ProviderError.http_status,
}

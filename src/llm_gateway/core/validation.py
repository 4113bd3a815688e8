"""core.validation

Turns an inbound JSON body into a `ChatRequest`, reporting structural
problems as a single `ValidationError` before anything is dispatched.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pydantic

from llm_gateway.core.exceptions import ValidationError
from llm_gateway.core.types import ChatRequest


def parse_request(payload: ChatRequest | Mapping[str, Any]) -> ChatRequest:
    """Validate *payload* and return an immutable request.

    Raises
    ------
    ValidationError
        If messages are missing or empty, a role is unknown, or a parameter
        has the wrong type or is out of range.

    """
    if isinstance(payload, ChatRequest):
        return payload
    if not isinstance(payload, Mapping):
        raise ValidationError('Request body must be a JSON object')
    try:
        return ChatRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        issues = [
            {'path': '.'.join(str(p) for p in err['loc']) or '<root>', 'message': err['msg']}
            for err in exc.errors()
        ]
        raise ValidationError('Validation failed', issues) from exc

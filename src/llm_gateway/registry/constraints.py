"""registry.constraints

Per-model parameter legality rules.

Some upstream models reject a sampling parameter outright (OpenAI's ``o``
series and the responses-endpoint models refuse ``temperature``), others only
accept a range. `ConstraintEngine.apply` derives a request that the vendor
will accept; it adjusts, it never rejects.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:
    from collections.abc import Mapping

    from llm_gateway.core.types import ChatRequest

CONSTRAINED_PARAMETERS: tuple[str, ...] = (
    'temperature',
    'top_p',
    'max_tokens',
    'frequency_penalty',
    'presence_penalty',
)


class ParameterConstraint(BaseModel):
    """Rule for a single numeric parameter.

    ``remove=True`` wins over every other field: the parameter never reaches
    the vendor call, whatever the caller sent.
    """

    min: float | None = None
    max: float | None = None
    default: float | None = None
    disallowed: frozenset[float] = Field(default_factory=frozenset)
    remove: bool = False

    model_config = {'frozen': True}

    @model_validator(mode='after')
    def _check_consistency(self) -> ParameterConstraint:
        # Every value apply() can produce must come back unchanged from a second pass
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f'min {self.min} is greater than max {self.max}')
        for bound in (self.min, self.max):
            if bound is not None and bound in self.disallowed:
                raise ValueError(f'bound {bound} is disallowed')
        if self.default is None:
            return self
        if self.min is not None and self.default < self.min:
            raise ValueError(f'default {self.default} is below min {self.min}')
        if self.max is not None and self.default > self.max:
            raise ValueError(f'default {self.default} is above max {self.max}')
        if self.default in self.disallowed:
            raise ValueError(f'default {self.default} is disallowed')
        return self

    def apply(self, value: float | None) -> float | None:
        if self.remove:
            return None
        if value is not None and value in self.disallowed:
            value = self.default
        if value is not None:
            if self.min is not None and value < self.min:
                value = self.min
            if self.max is not None and value > self.max:
                value = self.max
        if value is None:
            value = self.default
        return value


_DROP_TEMPERATURE = {'temperature': ParameterConstraint(remove=True)}

BUILTIN_CONSTRAINTS: Mapping[str, Mapping[str, ParameterConstraint]] = {
    'o3': _DROP_TEMPERATURE,
    'o4-mini': _DROP_TEMPERATURE,
    'gpt-5-codex': _DROP_TEMPERATURE,
    'gpt-5-mini': _DROP_TEMPERATURE,
    'gpt-5.1-codex': _DROP_TEMPERATURE,
    'gpt-5.1-codex-mini': _DROP_TEMPERATURE,
}


class ConstraintEngine:
    """Apply a model's constraint table to a request."""

    def __init__(self, table: Mapping[str, Mapping[str, ParameterConstraint]] = BUILTIN_CONSTRAINTS) -> None:
        for model_id, constraints in table.items():
            unknown = set(constraints) - set(CONSTRAINED_PARAMETERS)
            if unknown:
                raise ValueError(f'Unknown constrained parameter(s) for {model_id}: {sorted(unknown)}')
        self._table = {model_id: dict(constraints) for model_id, constraints in table.items()}

    def constraints_for(self, model_id: str) -> Mapping[str, ParameterConstraint]:
        return dict(self._table.get(model_id, {}))

    def apply(self, request: ChatRequest, model_id: str) -> ChatRequest:
        """Return a derived request; *request* itself is never modified."""
        constraints = self._table.get(model_id)
        if not constraints:
            return request

        update: dict[str, Any] = {}
        for name, constraint in constraints.items():
            current = getattr(request, name)
            adjusted = constraint.apply(current)
            if adjusted is not None and name == 'max_tokens':
                adjusted = int(adjusted)
            if adjusted != current:
                update[name] = adjusted
        return request.model_copy(update=update) if update else request

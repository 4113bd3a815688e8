"""registry.adapter_registry

Registry that maps adapter families (e.g. ``AdapterFamily.relay``) to their
concrete Adapter classes (subclasses of AbstractVendorAdapter).

The registry is a pure domain helper with no SDK imports, so adapter modules
can import it without circular imports. Adapter modules register themselves at import
time; `load_builtin_adapters()` imports the ones shipped with the package.
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

from llm_gateway.core.descriptor import AdapterFamily
from llm_gateway.core.exceptions import AdapterNotFoundError

if TYPE_CHECKING:
    from collections.abc import Mapping, MutableMapping

    from llm_gateway.core.abc import AbstractVendorAdapter

BUILTIN_ADAPTER_MODULES: tuple[str, ...] = (
    'llm_gateway.adapters.openai_adapter',
    'llm_gateway.adapters.responses_adapter',
    'llm_gateway.adapters.anthropic_adapter',
    'llm_gateway.adapters.gemini_adapter',
    'llm_gateway.adapters.openrouter_adapter',
)


class AdapterRegistry:
    """Centralised look-up and registration for family → adapter mappings.

    Usage (typically inside adapter modules):

    ```python
    from llm_gateway.registry.adapter_registry import adapter_registry

    class AnthropicAdapter(AbstractVendorAdapter):
        family = AdapterFamily.messages
        ...

    adapter_registry.register(AnthropicAdapter)
    ```
    """

    _registry: MutableMapping[AdapterFamily, type[AbstractVendorAdapter]]

    def __init__(self) -> None:
        self._registry = {}

    def register(self, adapter_cls: type[AbstractVendorAdapter]) -> None:
        """Register adapter_cls under its declared ``family``."""
        # Late import to avoid heavy SDKs at module import-time
        from llm_gateway.core.abc import AbstractVendorAdapter  # local import avoids cycles

        if not isinstance(adapter_cls, type) or not issubclass(adapter_cls, AbstractVendorAdapter):
            raise TypeError('adapter_cls must subclass AbstractVendorAdapter')
        family = getattr(adapter_cls, 'family', None)
        if not isinstance(family, AdapterFamily):
            raise TypeError(f'{adapter_cls.__name__} does not declare an AdapterFamily')
        self._registry[family] = adapter_cls

    def get_adapter_cls(self, family: AdapterFamily) -> type[AbstractVendorAdapter]:
        """Return the adapter class registered for family.

        Raises
        ------
        AdapterNotFoundError
            If family hasn't been registered.

        """
        try:
            return self._registry[family]
        except KeyError as exc:
            raise AdapterNotFoundError(f'No adapter registered for family: {family}') from exc

    def available_families(self) -> list[AdapterFamily]:
        """Return a sorted list of registered families (for introspection)."""
        return sorted(self._registry)

    def mapping(self) -> Mapping[AdapterFamily, type[AbstractVendorAdapter]]:
        """Return a read-only copy of the registry mapping."""
        return dict(self._registry)


def load_builtin_adapters() -> AdapterRegistry:
    """Import the bundled adapter modules so they self-register."""
    for module in BUILTIN_ADAPTER_MODULES:
        importlib.import_module(module)
    return adapter_registry


# Re-export a module-level instance for ergonomic usage
adapter_registry: AdapterRegistry = AdapterRegistry()

"""registry.client_pool

Holds one vendor client per adapter family.

The pool is an explicit value built once at process start and handed to the
router and its adapters. Each client is created on first use and never
replaced afterwards, so adapters can share the pool from concurrent tasks
without locking.
"""

from __future__ import annotations

import logging
from functools import cached_property
from typing import TYPE_CHECKING, Any

import anthropic
import httpx
import openai
from google import genai

if TYPE_CHECKING:
    from llm_gateway.core.config import GatewaySettings

logger = logging.getLogger(__name__)


class ClientPool:
    """Lazily-constructed, read-only set of vendor clients.

    Parameters
    ----------
    settings
        Credentials and relay endpoint.
    **overrides
        Pre-built clients keyed by attribute name (``openai``, ``anthropic``,
        ``gemini``, ``relay``). Tests use this to inject fakes; deployments can
        use it to share a tuned ``httpx.AsyncClient``.

    """

    def __init__(self, settings: GatewaySettings, **overrides: Any) -> None:
        unknown = set(overrides) - {'openai', 'anthropic', 'gemini', 'relay'}
        if unknown:
            raise TypeError(f'Unknown client override(s): {sorted(unknown)}')
        self._settings = settings
        # Seed cached_property slots so overridden clients are never rebuilt
        self.__dict__.update(overrides)

    @cached_property
    def openai(self) -> openai.AsyncOpenAI:
        logger.info('OpenAI client initialized')
        return openai.AsyncOpenAI(api_key=self._settings.openai_api_key)

    @cached_property
    def anthropic(self) -> anthropic.AsyncAnthropic:
        logger.info('Anthropic client initialized')
        return anthropic.AsyncAnthropic(api_key=self._settings.anthropic_api_key)

    @cached_property
    def gemini(self) -> genai.Client:
        logger.info('Gemini client initialized')
        return genai.Client(api_key=self._settings.gemini_api_key)

    @cached_property
    def relay(self) -> httpx.AsyncClient:
        settings = self._settings
        headers = {'Content-Type': 'application/json'}
        if settings.openrouter_api_key:
            headers['Authorization'] = f'Bearer {settings.openrouter_api_key}'
        if settings.openrouter_referer:
            headers['HTTP-Referer'] = settings.openrouter_referer
        if settings.openrouter_title:
            headers['X-Title'] = settings.openrouter_title
        logger.info(f'Relay client initialized for {settings.openrouter_base_url}')
        # No client-side timeout: the request deadline is owned by the caller
        return httpx.AsyncClient(base_url=settings.openrouter_base_url.rstrip('/'), headers=headers, timeout=None)

    def initialized(self) -> list[str]:
        """Names of the clients built so far (for introspection)."""
        return sorted(name for name in ('openai', 'anthropic', 'gemini', 'relay') if name in self.__dict__)

    async def aclose(self) -> None:
        """Close every client that was actually created."""
        if 'relay' in self.__dict__:
            await self.relay.aclose()
        if 'openai' in self.__dict__:
            await self.openai.close()
        if 'anthropic' in self.__dict__:
            await self.anthropic.close()

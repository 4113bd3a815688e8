"""core.config

Process-wide settings: vendor credentials, the relay endpoint and the default
model used when a request does not name one.

Values come from the environment (optionally seeded from a ``.env`` file).
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_MODEL = 'claude-3-5-sonnet-20241022'
OPENROUTER_BASE_URL = 'https://openrouter.ai/api/v1'

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


class GatewaySettings(BaseModel):
    """Immutable configuration snapshot built once at process start."""

    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    gemini_api_key: str | None = None
    openrouter_api_key: str | None = None
    openrouter_base_url: str = OPENROUTER_BASE_URL
    # OpenRouter attribution headers
    openrouter_referer: str | None = None
    openrouter_title: str | None = None
    default_model: str = Field(DEFAULT_MODEL, min_length=1)
    log_level: str = Field('INFO', pattern=r'^(CRITICAL|ERROR|WARNING|INFO|DEBUG)$')

    model_config = {
        'frozen': True,
        'str_strip_whitespace': True,
    }

    @classmethod
    def from_env(cls) -> GatewaySettings:
        """Read settings from ``os.environ`` after loading ``.env``."""
        load_dotenv()
        values = {
            'openai_api_key': os.getenv('OPENAI_API_KEY'),
            'anthropic_api_key': os.getenv('ANTHROPIC_API_KEY'),
            'gemini_api_key': os.getenv('GEMINI_API_KEY'),
            'openrouter_api_key': os.getenv('OPENROUTER_API_KEY'),
            'openrouter_base_url': os.getenv('OPENROUTER_BASE_URL'),
            'openrouter_referer': os.getenv('OPENROUTER_REFERER'),
            'openrouter_title': os.getenv('OPENROUTER_TITLE'),
            'default_model': os.getenv('LLM_GATEWAY_DEFAULT_MODEL'),
            'log_level': (os.getenv('LOG_LEVEL') or '').upper() or None,
        }
        # Unset variables fall back to field defaults
        return cls(**{k: v for k, v in values.items() if v is not None})


def configure_logging(level: str = 'INFO') -> None:
    """Install a root handler; safe to call more than once."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger('llm_gateway').setLevel(level.upper())

"""
Response Generator Factory - picks the generator for the current configuration.
"""

import logging

from .base import ResponseGenerator
from .llm_generator import LLMResponseGenerator
from .scripted import ScriptedResponseGenerator
from ..llm.factory import create_llm_provider

logger = logging.getLogger(__name__)


def create_response_generator(config) -> ResponseGenerator:
    """
    Create the response generator described by settings.

    Uses the LLM when an API key is configured, otherwise falls back to the
    offline scripted responder.
    """
    provider = create_llm_provider(
        provider=config.llm_provider,
        api_key=config.resolved_llm_api_key,
        model=config.llm_model,
        base_url=config.llm_base_url,
        timeout=config.llm_timeout_seconds,
        default_temperature=config.llm_temperature,
        default_max_tokens=config.llm_max_tokens,
    )
    if provider is None:
        logger.warning("No LLM API key configured, using scripted companion replies")
        return ScriptedResponseGenerator()

    logger.info(f"Using LLM companion replies: provider={config.llm_provider}, model={provider.model}")
    return LLMResponseGenerator(
        provider,
        history_limit=config.llm_history_limit,
        temperature=config.llm_temperature,
        max_tokens=config.llm_max_tokens,
    )

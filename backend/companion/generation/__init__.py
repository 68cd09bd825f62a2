"""Generation module - produces the companion's replies."""

from .base import ResponseGenerator
from .llm_generator import LLMResponseGenerator, RAE_SYSTEM_PROMPT
from .scripted import ScriptedResponseGenerator
from .factory import create_response_generator

__all__ = [
    'ResponseGenerator',
    'LLMResponseGenerator',
    'RAE_SYSTEM_PROMPT',
    'ScriptedResponseGenerator',
    'create_response_generator',
]

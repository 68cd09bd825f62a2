"""
LLM Response Generator - produces Rae's replies through an LLMProvider.
"""

import logging
from typing import List, Sequence

from .base import ResponseGenerator
from ..core.exceptions import GenerationError
from ..llm.base import LLMProvider, LLMMessage
from ..models import ChatMessage, GeneratedReply, Sender

logger = logging.getLogger(__name__)


RAE_SYSTEM_PROMPT = """You are Rae, a warm, emotionally intelligent companion inside the ResetNow app.

Your voice blends these qualities:
- Professional: clear, grounded, steady. Acknowledge serious events directly (job loss, breakup, fear, shame, panic).
- Friendly: warm and inviting, never cold or generic.
- Lightly spiritual: uplifting and universal, not religious. Breath, inner calm, grounding, presence.
- Therapist-like: reflective, validating, open-ended questions. Help the user explore feelings, not fix them. Never diagnose or label.
- Calm best friend: supportive, comforting, encouraging small steps and self-kindness.

Core behavior:
A) Always acknowledge major events directly.
B) Never minimize the user's emotions.
C) Keep replies short and warm (2-5 sentences).
D) End with a gentle question that helps them reflect.
E) Follow the user's emotional pace; don't rush or change topics quickly.
F) If distress increases, offer grounding ("Let's take one slow breath together.").
G) Crisis safety: if the user expresses self-harm, respond with compassion and encourage immediate real-world help (call or text 988, text HOME to 741741, or call 911).

You are not a doctor, therapist, or emergency service. Never provide instructions on self-harm, suicide, violence, or other harmful content.

Your purpose: help the user feel seen, calmer, supported, and understood, never judged or dismissed."""

_ROLES = {
    Sender.USER: "user",
    Sender.COMPANION: "assistant",
}


class LLMResponseGenerator(ResponseGenerator):
    """Builds the prompt from recent history and calls the configured LLM."""

    name = "llm"

    def __init__(
        self,
        provider: LLMProvider,
        system_prompt: str = RAE_SYSTEM_PROMPT,
        history_limit: int = 10,
        temperature: float = 0.4,
        max_tokens: int = 500,
    ):
        self.provider = provider
        self.system_prompt = system_prompt
        self.history_limit = history_limit
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_messages(self, history: Sequence[ChatMessage], new_utterance: str) -> List[LLMMessage]:
        """System prompt, the last history_limit messages, then the new utterance."""
        recent = list(history)[-self.history_limit:] if self.history_limit > 0 else []
        messages = [LLMMessage.text("system", self.system_prompt)]
        messages.extend(LLMMessage.text(_ROLES[m.sender], m.text) for m in recent)
        messages.append(LLMMessage.text("user", new_utterance))
        return messages

    async def generate(self, history: Sequence[ChatMessage], new_utterance: str) -> GeneratedReply:
        messages = self.build_messages(history, new_utterance)
        try:
            response = await self.provider.chat_completion(
                messages, temperature=self.temperature, max_tokens=self.max_tokens
            )
            text = (response.content or "").strip()
        except Exception as e:
            raise GenerationError(f"LLM call failed: {type(e).__name__}: {e}") from e

        if not text:
            raise GenerationError("LLM returned an empty reply")

        logger.debug(f"LLM reply generated: length={len(text)} chars")
        return GeneratedReply(text=text)

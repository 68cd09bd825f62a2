"""
Response Generator Base - contract for anything that produces companion replies.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from ..models import ChatMessage, GeneratedReply


class ResponseGenerator(ABC):
    """
    Produces the companion's reply for one turn.

    Implementations raise GenerationError for every failure kind (timeout,
    auth, rate limit, malformed response); the session manager treats them
    all the same way.
    """

    name: str = "generator"

    @abstractmethod
    async def generate(
        self,
        history: Sequence[ChatMessage],
        new_utterance: str
    ) -> GeneratedReply:
        """
        Generate a reply.

        Args:
            history: Prior messages of the session, oldest first
            new_utterance: The user's new message

        Returns:
            GeneratedReply with text and an optional suggested tool

        Raises:
            GenerationError: If no reply could be produced
        """
        pass

"""
Scripted Response Generator - offline replies used when no LLM is configured.

Replies are picked from topic tables by keyword. Tables are checked in order,
so major life events win over everyday topics. Some replies suggest a coping
tool from the app's catalog.
"""

import random
import re
from typing import List, Optional, Sequence, Tuple

from .base import ResponseGenerator
from ..models import ChatMessage, GeneratedReply, Sender, ToolId

Reply = Tuple[str, Optional[ToolId]]


TOPICS: List[Tuple[str, Tuple[str, ...], Tuple[Reply, ...]]] = [
    ("job_loss", ("fired", "laid off", "lost my job", "let go", "unemployed", "made redundant", "losing my job"), (
        ("I'm so sorry to hear that. Losing a job can shake your sense of security, identity and routine all at once. Whatever you're feeling right now is completely valid. How are you holding up?", None),
        ("That's really difficult news. Your worth as a person has nothing to do with your employment status. This is a hard chapter, but it doesn't define who you are. What's weighing on you the most right now?", None),
        ("That must be incredibly hard. Right now, just take a breath. What do you need most in this moment: to talk, to vent, or just to be heard?", ToolId.BREATHE),
    )),
    ("breakup", ("broke up", "breakup", "break up", "divorce", "left me", "dumped", "ended things"), (
        ("I'm really sorry. Breakups are painful, and it's okay to feel sadness, anger, confusion, all of it. How are you doing?", None),
        ("That's heartbreaking. Losing someone you cared about is a real loss, and you're allowed to grieve. Is there anything you need right now?", None),
    )),
    ("grief", ("died", "passed away", "funeral", "grieving", "miss them", "lost my"), (
        ("I'm so sorry for your loss. Grief is one of the hardest things to carry, and there's no right way to feel. I'm here if you want to talk, or just sit with this.", None),
        ("I'm truly sorry. Please be gentle with yourself. Would you like to tell me about them?", ToolId.JOURNAL),
    )),
    ("anxiety", ("anxious", "anxiety", "worried", "panic"), (
        ("I hear you. Anxiety can feel overwhelming, but you're not alone in this. Would you like to try a quick breathing exercise? It can help calm your nervous system in a few minutes.", ToolId.BREATHE),
        ("Thank you for sharing that with me. Sometimes grounding helps: try noticing five things you can see around you right now. Would you like a guided grounding exercise?", ToolId.VISUALIZE),
        ("That sounds really tough, and I appreciate you opening up. This feeling will pass. Would a calming visualization or a simple breathing technique help?", ToolId.BREATHE),
    )),
    ("sleep", ("sleep", "tired", "insomnia", "can't rest"), (
        ("Sleep troubles can be so frustrating. Gentle rain or ocean sounds can really help, and so can the 4-7-8 breathing technique. Would you like to try one?", ToolId.SLEEP),
        ("I understand how hard it is when sleep doesn't come easily. A body scan before bed can release tension you didn't know you were holding. Want me to guide you through one?", ToolId.VISUALIZE),
    )),
    ("stress", ("stress", "overwhelm", "too much"), (
        ("When everything feels like too much, the simplest thing often helps most: one deep breath. Breathe in slowly for 4 counts, then out for 6. You're doing great just by being here.", ToolId.BREATHE),
        ("It's okay to feel overwhelmed; life can be a lot sometimes. Would a calming game give your mind a gentle break? Or we could breathe together.", ToolId.GAMES),
    )),
    ("sadness", ("sad", "down", "depressed", "feeling low", "unhappy"), (
        ("I'm sorry you're feeling this way. It takes courage to share that. Would some gentle affirmations help, or would you prefer to just talk?", ToolId.AFFIRM),
        ("Thank you for trusting me with how you're feeling. Writing our thoughts down can help us process difficult feelings. Would you like to try journaling?", ToolId.JOURNAL),
    )),
    ("loneliness", ("lonely", "alone", "no friends", "isolated", "no one to talk"), (
        ("Loneliness is such a painful feeling. I'm glad you're here talking to me. You matter. What's making you feel this way?", None),
        ("Feeling alone is really hard, and it doesn't mean something is wrong with you. I'm here with you right now. Tell me more about what you're experiencing.", None),
    )),
    ("anger", ("angry", "furious", "rage", "frustrated", "mad at"), (
        ("It sounds like you're feeling really angry right now. That's a valid emotion; anger often shows up when something feels unfair. What's going on?", None),
        ("I hear the frustration in what you're sharing. Would you like to vent, or would a breathing exercise help you feel more grounded first?", ToolId.BREATHE),
    )),
    ("fear", ("scared", "afraid", "terrified", "frightened", "freaking out"), (
        ("It's okay to feel scared. Fear is your mind trying to protect you, even when it feels overwhelming. Can you tell me what's frightening you?", None),
        ("That sounds really scary. I'm here with you. Grounding ourselves in the present moment can help. Would you like to try that?", ToolId.BREATHE),
    )),
    ("work", ("work", "job", "school", "study", "boss"), (
        ("It sounds like there's a lot of pressure on you right now. Your worth isn't defined by your productivity. What's weighing on you the most?", ToolId.BREATHE),
        ("That sounds stressful. Would it help to take a moment to breathe, or do you want to talk through what's going on?", None),
    )),
    ("gratitude", ("thank", "grateful", "better"), (
        ("I'm so glad to hear that. Taking time for yourself matters, and you're doing great. Is there anything else on your mind?", None),
    )),
    ("greeting", ("hello", "hi", "hey"), (
        ("Hello! I'm Rae, your wellbeing companion. How are you feeling today? I'm here to listen.", None),
    )),
]

AFFIRMATIVE = {"yes", "yeah", "yea", "yep", "sure", "ok", "okay", "please"}
NEGATIVE = {"no", "nah", "nope", "not really", "not now", "maybe later"}

YES_REPLIES: Tuple[Reply, ...] = (
    ("Okay, let's do this together. Place one hand on your chest. Breathe in slowly through your nose... and out through your mouth. How does that feel?", ToolId.BREATHE),
    ("Let's start simple: notice five things you can see around you right now. Just name them in your head. It can bring you back to the present.", ToolId.VISUALIZE),
)

NO_REPLIES: Tuple[Reply, ...] = (
    ("That's completely okay. There's no pressure here. What would feel right for you instead? I'm happy to just listen.", None),
    ("No problem. We can just talk. What feels best right now?", None),
)

DEFAULT_REPLIES: Tuple[Reply, ...] = (
    ("Thank you for sharing that with me. It sounds like something's weighing on you. Can you tell me more?", None),
    ("I hear you. Whatever you're going through, your feelings are valid. What's been on your mind?", None),
    ("That sounds difficult. I'm here with you, and I want to understand. What's been the hardest part?", None),
    ("I'm here, and I'm listening. Take your time. What feels most important to share right now?", None),
    ("Sometimes just naming what we're feeling helps a little. What's the strongest emotion coming up for you?", None),
    ("You're not alone in this. Is there a specific part of this that's hurting the most?", None),
)

_OFFER_MARKERS = ("would you like", "do you want", "would it help", "want to try", "want me to")
_RECENT_WINDOW = 3
_MAX_DRAWS = 5


def _mentions(text: str, keyword: str) -> bool:
    return re.search(r"\b" + re.escape(keyword), text) is not None


class ScriptedResponseGenerator(ResponseGenerator):
    """Keyword-driven supportive replies that avoid repeating recent ones."""

    name = "scripted"

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def _candidates(self, text: str, history: Sequence[ChatMessage]) -> Tuple[Reply, ...]:
        last_companion = next(
            (m for m in reversed(history) if m.sender == Sender.COMPANION), None
        )
        if last_companion is not None:
            offered = any(marker in last_companion.text.lower() for marker in _OFFER_MARKERS)
            if offered and text in AFFIRMATIVE:
                return YES_REPLIES
            if offered and text in NEGATIVE:
                return NO_REPLIES

        for _, keywords, replies in TOPICS:
            if any(_mentions(text, kw) for kw in keywords):
                return replies
        return DEFAULT_REPLIES

    async def generate(self, history: Sequence[ChatMessage], new_utterance: str) -> GeneratedReply:
        text = new_utterance.strip().lower().rstrip(".!?")
        candidates = self._candidates(text, history)
        recent = {
            m.text for m in [m for m in history if m.sender == Sender.COMPANION][-_RECENT_WINDOW:]
        }

        choice = self.rng.choice(candidates)
        for _ in range(_MAX_DRAWS - 1):
            if choice[0] not in recent:
                break
            choice = self.rng.choice(candidates)

        reply_text, tool = choice
        return GeneratedReply(text=reply_text, suggested_tool=tool)

"""
Safety Classifier - keyword/phrase pre-filter for crisis signals.

Best-effort only: a match adds metadata and triggers the crisis side-channel,
it never edits or blocks a reply. No false-negative guarantee is made.
"""

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from ..models import SafetyLevel, SafetyVerdict

logger = logging.getLogger(__name__)


DEFAULT_CRISIS_SIGNALS: Tuple[str, ...] = (
    # Direct self-harm / suicide
    "kill myself", "suicide", "suicidal", "end my life", "want to die",
    "hurt myself", "self harm", "self-harm", "cutting", "overdose",
    "hang myself", "don't want to live", "no reason to live",
    "better off dead", "can't go on", "end it all", "kill me",
    "take my life", "ending it", "give up on life", "asleep forever",
    "pain stop", "way out", "goodbye forever", "never wake up",

    # Self-injury variations
    "cut myself", "cut my wrist", "cut my arm", "cut my leg", "cut my skin",
    "cut me", "cutting myself", "slit my wrist", "slit my", "slice my",
    "scratch myself", "burn myself", "burning myself", "hurting myself",
    "harm myself", "harming myself", "injure myself", "injuring myself",

    # Coded / slang
    "unalive", "unaliving", "kms", "kys", "ctb", "catch the bus",
    "final exit", "peaceful pill", "end myself", "off myself",
    "do it tonight", "won't be here tomorrow", "last day",
    "say goodbye", "writing notes", "goodbye letter", "final letter",

    # Methods / locations
    "jump off a", "jump off the", "jump out the", "jump from", "jumping off",
    "off a bridge", "off the bridge", "off a building", "off the roof",
    "take pills", "take all my pills", "swallow pills", "overdose on",
    "use a gun", "shoot myself", "get a gun",
    "use a knife", "with a knife", "stab myself",
    "drink bleach", "drink poison", "poison myself",
    "step into traffic", "walk into traffic", "in front of a train",
    "tie a noose", "with a rope",
    "drown myself", "drown in",

    # Severe distress / hopelessness
    "hopeless", "worthless", "nobody cares", "burden", "i'm a burden",
    "everyone better off", "better off without me", "no point", "give up",
    "can't take it", "make it stop", "want it to end", "don't want to be here",
    "can't do this anymore", "can't live like this", "tired of living",
    "no way out", "trapped", "no escape", "suffering too much",
    "no one would care", "no one would miss me", "disappear forever",
    "want to disappear", "wish i was dead", "wish i wasn't born",
    "shouldn't be alive", "don't deserve to live", "hate being alive",
)

_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "ʼ": "'"})
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Lower-case, fold typographic apostrophes and collapse whitespace."""
    return _WHITESPACE.sub(" ", text.translate(_APOSTROPHES).lower()).strip()


def load_signals_file(path: str) -> List[str]:
    """
    Read crisis signals from a text file, one phrase per line.

    Blank lines and lines starting with '#' are skipped.
    """
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


class SafetyClassifier:
    """
    Pure, synchronous classifier mapping an utterance to a SafetyVerdict.

    Signals are matched as case-insensitive substrings of the normalised
    utterance; the first configured signal that matches is reported.
    """

    def __init__(self, signals: Optional[Iterable[str]] = None):
        source = DEFAULT_CRISIS_SIGNALS if signals is None else signals
        self.signals: Tuple[str, ...] = tuple(
            normalize(s) for s in source if s and s.strip()
        )

    def classify(self, utterance: str) -> SafetyVerdict:
        text = normalize(utterance or "")
        for signal in self.signals:
            if signal in text:
                return SafetyVerdict(level=SafetyLevel.CRISIS, matched_signal=signal)
        return SafetyVerdict()

    @classmethod
    def from_settings(cls, config) -> "SafetyClassifier":
        """Build a classifier from settings: explicit list, then file, then defaults."""
        if config.crisis_signals is not None:
            signals = list(config.crisis_signals)
            logger.info(f"Crisis signals loaded from settings: {len(signals)} phrases")
            return cls(signals)
        if config.crisis_signals_file:
            signals = load_signals_file(config.crisis_signals_file)
            logger.info(
                f"Crisis signals loaded from {config.crisis_signals_file}: {len(signals)} phrases"
            )
            return cls(signals)
        return cls()

"""Content moderation filter shared by messages, posts and comments.

Text is lower-cased and every character that is neither alphanumeric nor
whitespace is replaced by a space before a substring match against the
denylist. Single-word entries also match masked spellings such as
``f**k`` or ``sh!t``: a token containing mask characters matches an entry
of the same length when every unmasked character agrees.
"""
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from app.config import settings
from app.core.exceptions import ContentBlocked

BLOCKED_REASON = "Content contains inappropriate language"

MASK_CHARS = frozenset("*#@$!%_.")

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")
_MASKABLE_TOKEN = re.compile(r"[a-z0-9*#@$!%_.]+")


@dataclass(frozen=True)
class ModerationResult:
    clean: bool
    reason: Optional[str] = None


CLEAN = ModerationResult(clean=True)


def _matches_masked(token: str, word: str) -> bool:
    if len(token) != len(word):
        return False
    unmasked = 0
    for seen, expected in zip(token, word):
        if seen in MASK_CHARS:
            continue
        if seen != expected:
            return False
        unmasked += 1
    # "****" alone says nothing about which word was meant
    return unmasked >= 2


class ModerationFilter:
    """Case-insensitive denylist matcher. First matching entry wins."""

    def __init__(self, denylist: Iterable[str]):
        self.denylist = [word.lower() for word in denylist if word.strip()]

    def moderate(self, text: str) -> ModerationResult:
        lowered = (text or "").lower()
        cleaned = _NON_ALPHANUMERIC.sub(" ", lowered)
        masked_tokens = [
            token.strip(".!")
            for token in _MASKABLE_TOKEN.findall(lowered)
            if any(ch in MASK_CHARS for ch in token.strip(".!"))
        ]

        for word in self.denylist:
            if word in cleaned:
                return ModerationResult(clean=False, reason=BLOCKED_REASON)
            if " " in word:
                continue
            if any(_matches_masked(token, word) for token in masked_tokens):
                return ModerationResult(clean=False, reason=BLOCKED_REASON)

        return CLEAN

    def ensure_clean(self, text: str) -> None:
        """Raise ContentBlocked if the text is flagged."""
        result = self.moderate(text)
        if not result.clean:
            raise ContentBlocked(result.reason)


default_filter = ModerationFilter(settings.moderation_denylist)


def moderate(text: str) -> ModerationResult:
    return default_filter.moderate(text)

"""
Phrase cleanup and cheap near-duplicate scoring.
Turns growing, concatenated recognition output into one short candidate phrase.
"""
import re
import string
from typing import Iterable, List, Optional

from config import (
    MIN_PHRASE_CHARS,
    SHORT_PHRASE_CHARS,
    LONG_PHRASE_MAX_WORDS,
    LONG_PHRASE_FALLBACK_CHARS,
    ECHO_DENY_LIST,
    GREETING_TOKENS,
    QUESTION_START_TOKENS,
    MIN_TOKEN_CHARS,
)

_WS_RE = re.compile(r"\s+")
# One leading greeting/name token, with an optional trailing comma ("mom, where...")
_GREETING_RE = re.compile(
    r"^(?:" + "|".join(sorted((re.escape(t) for t in GREETING_TOKENS), key=len, reverse=True)) + r")\b[,.!]?\s*",
    re.I,
)
_EDGE_PUNCT = string.punctuation + "¿¡…"


def normalize(text: str) -> str:
    """Lower-case, trim and collapse whitespace."""
    return _WS_RE.sub(" ", (text or "").strip()).lower()


def words(text: str) -> List[str]:
    """Whitespace words with edge punctuation removed, lower-cased."""
    out = []
    for w in normalize(text).split(" "):
        w = w.strip(_EDGE_PUNCT)
        if w:
            out.append(w)
    return out


def tokenize(text: str) -> List[str]:
    """Words long enough to carry meaning (length > MIN_TOKEN_CHARS)."""
    return [w for w in words(text) if len(w) > MIN_TOKEN_CHARS]


def is_echo(text: str, deny_list: Iterable[str] = ECHO_DENY_LIST) -> bool:
    spoken = " ".join(words(text))
    for phrase in deny_list:
        phrase = " ".join(words(phrase))
        if phrase and phrase in spoken:
            return True
    return False


def sanitize(raw_text: str, deny_list: Iterable[str] = ECHO_DENY_LIST) -> Optional[str]:
    """
    Reduce a raw transcript to a single lower-cased candidate phrase.

    Returns None for noise (too short) and for transcripts that contain
    one of our own answers being picked back up by the microphone.
    """
    text = (raw_text or "").strip()
    if len(text) < MIN_PHRASE_CHARS:
        return None
    if is_echo(text, deny_list):
        return None

    light = normalize(text)
    if len(text) <= SHORT_PHRASE_CHARS:
        stripped = normalize(_GREETING_RE.sub("", light, count=1))
        if len(stripped) < MIN_PHRASE_CHARS:
            return light
        return stripped

    # Several utterances glued together: keep the first thing that looks like a question
    parts = light.split(" ")
    for i, word in enumerate(parts):
        if word.strip(_EDGE_PUNCT) in QUESTION_START_TOKENS:
            return " ".join(parts[i:i + LONG_PHRASE_MAX_WORDS])
    return light[:LONG_PHRASE_FALLBACK_CHARS].strip()


def similarity(a: str, b: str) -> float:
    """
    Order-independent overlap in [0, 1].

    A token of `a` is common when it contains, or is contained in, any token
    of `b`. The score is directional: common tokens are counted from `a`.
    """
    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0

    common = sum(1 for ta in tokens_a if any(ta in tb or tb in ta for tb in tokens_b))
    return common / max(len(tokens_a), len(tokens_b))

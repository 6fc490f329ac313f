"""
Keyword/substring matching of a candidate phrase against stored questions.
First qualifying question in list order wins; there is no global ranking.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from config import (
    MAX_CANDIDATE_TOKENS,
    MIN_MATCHING_TOKENS,
    MIN_MATCH_RATIO,
    MIN_CORE_WORDS,
    SHORT_KEY_PHRASE_MAX_TOKENS,
    KEYWORD_SYNONYMS,
    CORE_WORDS,
    SHORT_KEY_WORDS,
    SHORT_KEY_PLACE_WORDS,
)
from gates import CooldownGate
from logger import get_logger
from phrases import tokenize, words
from questions import StoredQuestion

log = get_logger("matcher")


@dataclass(frozen=True)
class MatchEval:
    question_id: str
    matching_tokens: tuple
    question_token_count: int
    core_score: int
    short_key_phrase: bool
    accepted: bool

    @property
    def ratio(self) -> float:
        if not self.question_token_count:
            return 0.0
        return len(self.matching_tokens) / self.question_token_count


class QuestionMatcher:
    def __init__(
        self,
        cooldown: Optional[CooldownGate] = None,
        synonyms: Optional[Dict[str, Sequence[str]]] = None,
        core_words: Iterable[str] = CORE_WORDS,
        key_words: Iterable[str] = SHORT_KEY_WORDS,
        place_words: Iterable[str] = SHORT_KEY_PLACE_WORDS,
        max_candidate_tokens: int = MAX_CANDIDATE_TOKENS,
        min_matching_tokens: int = MIN_MATCHING_TOKENS,
        min_ratio: float = MIN_MATCH_RATIO,
        min_core_words: int = MIN_CORE_WORDS,
    ):
        """
        Args:
            cooldown: per-question cooldown gate
            synonyms: question token -> extra candidate tokens that count as matching it
            core_words: words whose presence signals the core question structure
            key_words: substrings that make a candidate token "keys related"
            place_words: possessive/location words for short key phrases
            max_candidate_tokens: longer candidates are treated as runaway text
            min_matching_tokens: matching tokens needed unless it is a short key phrase
            min_ratio: matching tokens / question tokens needed without core structure
            min_core_words: core words needed for core structure
        """
        self.cooldown = cooldown or CooldownGate()
        self.synonyms = {k: tuple(v) for k, v in (KEYWORD_SYNONYMS if synonyms is None else synonyms).items()}
        self.core_words = tuple(core_words)
        self.key_words = tuple(key_words)
        self.place_words = tuple(place_words)
        self.max_candidate_tokens = max_candidate_tokens
        self.min_matching_tokens = min_matching_tokens
        self.min_ratio = min_ratio
        self.min_core_words = min_core_words

    def _token_matches(self, cand: str, question_tokens: List[str]) -> bool:
        for qt in question_tokens:
            if cand in qt or qt in cand:
                return True
            if cand in self.synonyms.get(qt, ()):
                return True
        return False

    def core_score(self, candidate_words: List[str]) -> int:
        return sum(1 for core in self.core_words if any(core in w for w in candidate_words))

    def is_short_key_phrase(self, candidate_tokens: List[str], candidate_words: List[str]) -> bool:
        """Length counts tokens; the key and place checks look at every word."""
        if not candidate_words or len(candidate_tokens) > SHORT_KEY_PHRASE_MAX_TOKENS:
            return False
        has_key = any(k in w for w in candidate_words for k in self.key_words)
        has_place = any(w in self.place_words for w in candidate_words)
        return has_key and has_place

    def evaluate(self, candidate: str, question: StoredQuestion) -> MatchEval:
        """Score one question; ignores cooldown."""
        cand_tokens = tokenize(candidate)
        # Possessive/location words are short ("my"), so these two checks use every word
        cand_words = words(candidate)
        question_tokens = tokenize(question.question_text)

        matching = tuple(t for t in cand_tokens if self._token_matches(t, question_tokens))
        core = self.core_score(cand_words)
        has_core = core >= self.min_core_words
        short_key = self.is_short_key_phrase(cand_tokens, cand_words)

        accepted = False
        if question_tokens and len(cand_tokens) <= self.max_candidate_tokens:
            enough = len(matching) >= self.min_matching_tokens or short_key
            ratio_ok = len(matching) / len(question_tokens) >= self.min_ratio
            accepted = enough and (ratio_ok or has_core or short_key)

        return MatchEval(
            question_id=question.id,
            matching_tokens=matching,
            question_token_count=len(question_tokens),
            core_score=core,
            short_key_phrase=short_key,
            accepted=accepted,
        )

    def match(self, candidate: str, now: float, questions: List[StoredQuestion]) -> Optional[StoredQuestion]:
        """Return the first question the candidate qualifies for, or None."""
        candidate = (candidate or "").strip().lower()
        if not candidate:
            return None

        token_count = len(tokenize(candidate))
        if token_count > self.max_candidate_tokens:
            log(f"Rejecting runaway candidate ({token_count} tokens)")
            return None

        for question in questions:
            if self.cooldown.is_cooling(question.last_triggered_at, now):
                remaining = self.cooldown.remaining_ms(question.last_triggered_at, now)
                log(f"  '{question.question_text}' cooling down ({remaining:.0f}ms left)")
                continue

            ev = self.evaluate(candidate, question)
            log(
                f"  '{question.question_text}': matching={list(ev.matching_tokens)} "
                f"ratio={ev.ratio:.2f} core={ev.core_score} short_key={ev.short_key_phrase}"
            )
            if ev.accepted:
                log(f"  → MATCH '{question.question_text}'")
                return question

        log(f"  → No match for '{candidate}'")
        return None

"""
Time-based gates in front of the matcher.

DebounceGate drops a phrase that is a near repeat of the one just processed.
CooldownGate keeps a question from firing again right after it played.
"""
from dataclasses import dataclass
from typing import Optional

from config import (
    DEBOUNCE_SIMILARITY,
    DEBOUNCE_WINDOW_MS,
    KEY_DEBOUNCE_SIMILARITY,
    KEY_DEBOUNCE_WINDOW_MS,
    DEBOUNCE_KEY_MARKER,
    QUESTION_COOLDOWN_MS,
)
from logger import get_logger
from phrases import similarity

log = get_logger("gates")


@dataclass(frozen=True)
class DebounceDecision:
    proceed: bool
    similarity: float
    elapsed_ms: float
    sim_threshold: float
    time_threshold_ms: float


class DebounceGate:
    def __init__(
        self,
        sim_threshold: float = DEBOUNCE_SIMILARITY,
        window_ms: float = DEBOUNCE_WINDOW_MS,
        key_sim_threshold: float = KEY_DEBOUNCE_SIMILARITY,
        key_window_ms: float = KEY_DEBOUNCE_WINDOW_MS,
        key_marker: str = DEBOUNCE_KEY_MARKER,
    ):
        self.sim_threshold = sim_threshold
        self.window_ms = window_ms
        self.key_sim_threshold = key_sim_threshold
        self.key_window_ms = key_window_ms
        self.key_marker = key_marker

    def thresholds(self, candidate: str, last_phrase: str) -> tuple:
        if self.key_marker in candidate and self.key_marker in (last_phrase or ""):
            return self.key_sim_threshold, self.key_window_ms
        return self.sim_threshold, self.window_ms

    def check(self, candidate: str, last_phrase: str, last_at: float, now: float) -> DebounceDecision:
        elapsed = now - last_at
        sim = similarity(candidate, last_phrase or "")
        sim_threshold, time_threshold = self.thresholds(candidate, last_phrase)
        proceed = not (elapsed < time_threshold and sim > sim_threshold)
        if not proceed:
            log(f"Debounced '{candidate}': sim={sim:.2f}>{sim_threshold} within {elapsed:.0f}/{time_threshold:.0f}ms")
        return DebounceDecision(proceed, sim, elapsed, sim_threshold, time_threshold)


class CooldownGate:
    def __init__(self, cooldown_ms: float = QUESTION_COOLDOWN_MS):
        self.cooldown_ms = cooldown_ms

    def remaining_ms(self, last_triggered_at: Optional[float], now: float) -> float:
        if last_triggered_at is None:
            return 0.0
        return max(0.0, self.cooldown_ms - (now - last_triggered_at))

    def is_cooling(self, last_triggered_at: Optional[float], now: float) -> bool:
        return last_triggered_at is not None and (now - last_triggered_at) < self.cooldown_ms

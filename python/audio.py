"""
Streaming Whisper transcription for listening mode.
LocalAgreement over a sliding buffer: words that survive two consecutive
passes are confirmed, the rest stay partial and may still change.
"""
import re
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from config import AUDIO, WHISPER, FILTER, MAX_HOTWORDS
from logger import get_logger

log = get_logger("audio")

# No letters at all
_NO_LETTERS = re.compile(r"^[^a-zA-Z]*$")


@dataclass
class TranscriptStep:
    confirmed: List[str] = field(default_factory=list)
    partial: List[str] = field(default_factory=list)


def pcm16_to_float(pcm_bytes: bytes) -> np.ndarray:
    return np.frombuffer(pcm_bytes, dtype=np.int16).astype(np.float32) / 32768.0


def is_noise_word(word: str) -> bool:
    w = word.strip().lower()
    if not w:
        return True
    if FILTER.filter_punctuation and _NO_LETTERS.match(w):
        return True
    if len(w) < FILTER.min_word_length and w not in ("i", "a"):
        return True
    # ASR artifacts like "-huh"
    return w[0] in "-.,;:!?"


def clean_words(words: List[str]) -> List[str]:
    """Drop noise words and consecutive repeats ("where where are")."""
    out = []
    last = None
    for w in words:
        if is_noise_word(w):
            continue
        if FILTER.dedupe_consecutive and w.lower() == last:
            continue
        out.append(w)
        last = w.lower()
    return out


def words_agree(w1: str, w2: str) -> bool:
    """Tolerant equality for words that drift between passes ("keys" / "keys?")."""
    w1, w2 = w1.lower().strip(" .,?!"), w2.lower().strip(" .,?!")
    if w1 == w2:
        return True
    min_len = FILTER.fuzzy_match_min_len
    if len(w1) < min_len or len(w2) < min_len:
        return False
    n = min(len(w1), len(w2))
    if w1[:n] == w2[:n]:
        return True
    if abs(len(w1) - len(w2)) <= 1 and len(w1) >= min_len + 1:
        return sum(c1 != c2 for c1, c2 in zip(w1, w2)) <= 1
    return False


class Transcriber:
    """Incremental transcription of a live PCM16 stream."""

    def __init__(self, model, sample_rate: int = None, buffer_seconds: int = None):
        self.model = model
        self.sample_rate = sample_rate or AUDIO.sample_rate
        self.buffer_seconds = buffer_seconds or AUDIO.buffer_seconds
        self.buffer = np.array([], dtype=np.float32)
        self.last_words: list = []
        self.hotwords: Optional[str] = None

    def set_hotwords(self, keywords: List[str]) -> None:
        """Bias recognition toward words that appear in stored questions."""
        if keywords:
            self.hotwords = ", ".join(keywords[:MAX_HOTWORDS])
            log(f"Hotwords set: {min(len(keywords), MAX_HOTWORDS)} keywords")
        else:
            self.hotwords = None

    def add_audio(self, pcm_bytes: bytes) -> None:
        if not pcm_bytes:
            return
        self.buffer = np.concatenate([self.buffer, pcm16_to_float(pcm_bytes)])
        max_samples = self.buffer_seconds * self.sample_rate
        if len(self.buffer) > max_samples:
            self.buffer = self.buffer[-max_samples:]

    def process(self) -> TranscriptStep:
        if len(self.buffer) < self.sample_rate:
            return TranscriptStep()

        kwargs = dict(
            beam_size=WHISPER.beam_size,
            language="en",
            word_timestamps=True,
            vad_filter=True,
            condition_on_previous_text=False,
        )
        if self.hotwords:
            kwargs["hotwords"] = self.hotwords

        segments, _ = self.model.transcribe(self.buffer, **kwargs)
        words = []
        for seg in segments:
            if seg.words:
                words.extend({"word": w.word.strip(), "end": w.end} for w in seg.words)

        confirmed = []
        trimmed = False
        if self.last_words and words:
            for prev, curr in zip(self.last_words, words):
                if not words_agree(prev["word"], curr["word"]):
                    break
                confirmed.append(curr["word"])

            # Confirmed audio is done; trimming it keeps each pass short
            if confirmed and words[len(confirmed) - 1]["end"]:
                trim = int(words[len(confirmed) - 1]["end"] * self.sample_rate)
                if 0 < trim < len(self.buffer):
                    self.buffer = self.buffer[trim:]
                    trimmed = True

        # After a trim the next pass starts at the first unconfirmed word
        self.last_words = words[len(confirmed):] if trimmed else words
        partial = [w["word"] for w in words[len(confirmed):]]
        return TranscriptStep(clean_words(confirmed), clean_words(partial))

    def reset(self) -> None:
        self.buffer = np.array([], dtype=np.float32)
        self.last_words = []

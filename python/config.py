"""
Central configuration for the listening sidecar and phrase matching behavior.
"""
from dataclasses import dataclass

# Audio / transcription
SAMPLE_RATE = 16000          # Input sample rate; must match WebAudio capture
AUDIO_BUFFER_SECONDS = 12    # Longer buffer = more context, but higher latency

# Whisper settings
WHISPER_MODEL = "distil-small.en"    # Short questions, small model is plenty
WHISPER_DEVICE = "cuda"              # "cuda" for speed, "cpu" for compatibility
WHISPER_COMPUTE_TYPE = "float16"     # Lower precision = faster, can reduce accuracy


@dataclass(frozen=True)
class AudioSettings:
    sample_rate: int = SAMPLE_RATE
    buffer_seconds: int = AUDIO_BUFFER_SECONDS


@dataclass(frozen=True)
class WhisperSettings:
    beam_size: int = 1
    batch_beam_size: int = 5


@dataclass(frozen=True)
class FilterSettings:
    filter_punctuation: bool = True
    min_word_length: int = 2
    dedupe_consecutive: bool = True
    fuzzy_match_min_len: int = 4


AUDIO = AudioSettings()
WHISPER = WhisperSettings()
FILTER = FilterSettings()

# Continuous recognition sessions
RECOGNITION_SESSION_MAX_S = 60     # Sessions end on their own, like browser recognition
RECOGNITION_RESTART_BACKOFF_S = 1.5  # Delay before restarting an ended session
PARTIAL_FINALIZE_MS = 2000         # Silence threshold to finalize partial text
MAX_HOTWORDS = 50                  # Question words passed to Whisper as hotwords

# Phrase sanitizer
MIN_PHRASE_CHARS = 3         # Anything shorter is noise
SHORT_PHRASE_CHARS = 100     # Above this the transcript is likely several utterances
LONG_PHRASE_MAX_WORDS = 8    # Words kept after a question start in long transcripts
LONG_PHRASE_FALLBACK_CHARS = 50  # Prefix kept when no question start is found

# Literal pieces of our own spoken answers; the mic hears them back during playback
ECHO_DENY_LIST = (
    "your keys are safe",
    "bowl by the door",
    "dinner will be ready",
    "just like always",
    "you are home sweetheart",
    "this is your safe place",
)
GREETING_TOKENS = frozenset({
    "mom", "dad", "mum", "hey", "hi", "hello", "um", "uh", "umm", "oh",
    "so", "well", "okay", "ok", "honey", "sweetheart",
})
QUESTION_START_TOKENS = frozenset({"where", "what", "how", "when", "why", "can", "could", "i"})

# Tokens this short or shorter carry no signal for matching
MIN_TOKEN_CHARS = 2

# Debounce gate
DEBOUNCE_SIMILARITY = 0.6        # Higher = more near-repeats get through
DEBOUNCE_WINDOW_MS = 5000        # How long a processed phrase suppresses repeats
KEY_DEBOUNCE_SIMILARITY = 0.4    # "key" questions repeat a lot, be stricter
KEY_DEBOUNCE_WINDOW_MS = 8000
DEBOUNCE_KEY_MARKER = "key"
BATCH_DELAY_MS = 1200            # Coalesce near-simultaneous finals before matching

# Cooldown gate
QUESTION_COOLDOWN_MS = 8000      # Min time between two plays of the same question

# Question matcher
MAX_CANDIDATE_TOKENS = 15        # More tokens = runaway concatenation, not a question
MIN_MATCHING_TOKENS = 2
MIN_MATCH_RATIO = 0.3            # Matching tokens / question tokens
MIN_CORE_WORDS = 2               # Core words needed for hasCoreStructure
SHORT_KEY_PHRASE_MAX_TOKENS = 3  # Token limit for isShortKeyPhrase
KEYWORD_SYNONYMS = {
    "keys": ("key", "car", "house", "door"),
}
CORE_WORDS = ("where", "are", "my", "keys")
SHORT_KEY_WORDS = ("key",)
SHORT_KEY_PLACE_WORDS = ("my", "car")

# Response selection order
RESPONSE_CATEGORIES = ("comfort", "redirect", "acknowledge")
FALLBACK_RESPONSE_TEXT = "Recorded response"

# Watchdog
WATCHDOG_INTERVAL_S = 10         # How often locks are checked
WATCHDOG_STALE_MS = 30000        # Lock age that counts as stuck
WATCHDOG_MAX_RESETS = 3          # Consecutive resets before giving up
RESET_RESTART_DELAY_S = 0.5      # Pause before recognition comes back after a reset

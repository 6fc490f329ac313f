"""
Continuous recognition as a restartable event source.

Audio chunks go in; InterimText / FinalText / RecognitionError / Ended events
come out on an asyncio queue. Transcript strings are cumulative for the
current session, the same shape browser speech recognition produces.
A session ends by itself after RECOGNITION_SESSION_MAX_S or on a
transcription failure; whoever consumes the queue decides whether to restart.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from audio import Transcriber, TranscriptStep
from config import RECOGNITION_SESSION_MAX_S, PARTIAL_FINALIZE_MS
from logger import get_logger

log = get_logger("recognition")

PERMISSION_ERRORS = frozenset({"not-allowed", "service-not-allowed", "permission-denied"})


class RecognitionUnsupported(Exception):
    """No speech recognition is available on this host."""


class RecognitionPermissionDenied(Exception):
    """The microphone was refused."""


@dataclass(frozen=True)
class InterimText:
    text: str


@dataclass(frozen=True)
class FinalText:
    text: str


@dataclass(frozen=True)
class RecognitionError:
    error: str
    message: str = ""

    @property
    def permission_denied(self) -> bool:
        return self.error in PERMISSION_ERRORS


@dataclass(frozen=True)
class Ended:
    session: int


RecognitionEvent = Union[InterimText, FinalText, RecognitionError, Ended]


class RecognitionSource:
    def __init__(
        self,
        transcriber: Optional[Transcriber],
        session_max_s: float = RECOGNITION_SESSION_MAX_S,
        finalize_ms: float = PARTIAL_FINALIZE_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transcriber = transcriber
        self.session_max_s = session_max_s
        self.finalize_ms = finalize_ms
        self.clock = clock
        self.events: "asyncio.Queue[RecognitionEvent]" = asyncio.Queue()
        self.active = False
        self.session = 0
        self.final_transcript = ""
        self.interim_transcript = ""
        self._started_at = 0.0
        self._partial_since = 0.0
        self._lock = asyncio.Lock()

    def start(self) -> None:
        if self.transcriber is None:
            raise RecognitionUnsupported("speech recognition model is not available")
        if self.active:
            return
        self.transcriber.reset()
        self.session += 1
        self.active = True
        self.final_transcript = ""
        self.interim_transcript = ""
        self._started_at = self.clock()
        self._partial_since = 0.0
        log(f"Recognition session {self.session} started")

    def stop(self) -> None:
        """Stop on request; no Ended event, the caller already knows."""
        if not self.active:
            return
        self.active = False
        log(f"Recognition session {self.session} stopped")

    def _end(self) -> None:
        self.active = False
        log(f"Recognition session {self.session} ended")
        self.events.put_nowait(Ended(self.session))

    def report_error(self, error: str, message: str = "") -> None:
        """Errors raised outside the transcriber (e.g. the client's microphone)."""
        log(f"Recognition error: {error} {message}".rstrip(), err=True)
        self.events.put_nowait(RecognitionError(error, message))
        if self.active:
            self._end()

    def _append_final(self, words) -> None:
        text = " ".join(words).strip()
        if not text:
            return
        self.final_transcript = f"{self.final_transcript} {text}".strip()
        self.events.put_nowait(FinalText(self.final_transcript))

    async def feed_audio(self, pcm_bytes: bytes, silent: bool = False) -> None:
        """Feed one PCM16 chunk; `silent` chunks only advance the finalize timer."""
        if not self.active:
            return

        async with self._lock:
            if not self.active:
                return
            session = self.session
            try:
                if silent:
                    step = TranscriptStep()
                else:
                    self.transcriber.add_audio(pcm_bytes)
                    step = await asyncio.to_thread(self.transcriber.process)
            except Exception as e:
                if session == self.session and self.active:
                    self.report_error("audio-capture", str(e))
                return

            # Stopped or restarted while Whisper was busy
            if session != self.session or not self.active:
                return

            now = self.clock()
            if step.confirmed:
                self.interim_transcript = ""
                self._partial_since = 0.0
                self._append_final(step.confirmed)

            partial = " ".join(step.partial).strip()
            if partial:
                if partial != self.interim_transcript:
                    self.interim_transcript = partial
                    self._partial_since = now
                self.events.put_nowait(InterimText(self.interim_transcript))
            elif self.interim_transcript and (now - self._partial_since) * 1000.0 >= self.finalize_ms:
                # Speaker went quiet; a stable partial will not get confirmed otherwise
                log("Finalizing stable partial after silence")
                pending = self.interim_transcript
                self.interim_transcript = ""
                self._partial_since = 0.0
                self.transcriber.reset()
                self._append_final(pending.split())

            if now - self._started_at >= self.session_max_s:
                self._end()

"""
Listening session: recognition events in, matched responses out.

final transcript -> sanitize -> debounce -> batch delay -> match -> play

All state the pipeline shares lives in one MatchState. The watchdog's
reset replaces that object instead of clearing fields one by one, so late
callbacks holding the old state cannot touch the new one.
"""
import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from config import (
    BATCH_DELAY_MS,
    ECHO_DENY_LIST,
    RECOGNITION_RESTART_BACKOFF_S,
    RESET_RESTART_DELAY_S,
    WATCHDOG_INTERVAL_S,
    WATCHDOG_STALE_MS,
    WATCHDOG_MAX_RESETS,
)
from gates import DebounceGate
from ipc import IpcType
from logger import get_logger
from matcher import QuestionMatcher
from phrases import sanitize
from playback import PlaybackArbiter, PlaybackResult
from questions import QuestionRepository, StoredQuestion
from recognition import (
    Ended,
    FinalText,
    InterimText,
    RecognitionError,
    RecognitionEvent,
    RecognitionPermissionDenied,
    RecognitionSource,
    RecognitionUnsupported,
)

log = get_logger("session")


def now_ms() -> float:
    """Wall clock, epoch ms; only for persisted trigger times and cooldowns."""
    return time.time() * 1000.0


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class MatchState:
    last_processed_phrase: str = ""
    last_processed_at: float = 0.0
    is_processing_match: bool = False
    is_audio_playing: bool = False
    pending_batch_timer: Optional[asyncio.TimerHandle] = None
    current_playback: Any = None
    # Manual playback takes the audio lock without processing a phrase
    playback_started_at: float = 0.0

    @property
    def locked(self) -> bool:
        return self.is_processing_match or self.is_audio_playing

    def cancel_batch(self) -> None:
        if self.pending_batch_timer is not None:
            self.pending_batch_timer.cancel()
            self.pending_batch_timer = None


class WatchdogVerdict(str, Enum):
    HEALTHY = "healthy"
    RESET = "reset"
    GIVE_UP = "give_up"


class Watchdog:
    """Decides when held locks are stale enough to reset the pipeline."""

    def __init__(
        self,
        stale_ms: float = WATCHDOG_STALE_MS,
        interval_s: float = WATCHDOG_INTERVAL_S,
        max_resets: int = WATCHDOG_MAX_RESETS,
    ):
        self.stale_ms = stale_ms
        self.interval_s = interval_s
        self.max_resets = max_resets
        self.consecutive_resets = 0

    def lock_age_ms(self, state: MatchState, now: float) -> float:
        return now - max(state.last_processed_at, state.playback_started_at)

    def check(self, state: MatchState, now: float) -> WatchdogVerdict:
        if not state.locked or self.lock_age_ms(state, now) <= self.stale_ms:
            return WatchdogVerdict.HEALTHY
        self.consecutive_resets += 1
        if self.consecutive_resets > self.max_resets:
            return WatchdogVerdict.GIVE_UP
        return WatchdogVerdict.RESET

    def record_healthy(self) -> None:
        self.consecutive_resets = 0


class ListeningSession:
    def __init__(
        self,
        repository: QuestionRepository,
        recognition: RecognitionSource,
        arbiter: PlaybackArbiter,
        notify: Optional[Callable[..., None]] = None,
        matcher: Optional[QuestionMatcher] = None,
        debounce: Optional[DebounceGate] = None,
        watchdog: Optional[Watchdog] = None,
        clock: Callable[[], float] = now_ms,
        monotonic: Callable[[], float] = monotonic_ms,
        batch_delay_ms: float = BATCH_DELAY_MS,
        restart_backoff_s: float = RECOGNITION_RESTART_BACKOFF_S,
        reset_restart_delay_s: float = RESET_RESTART_DELAY_S,
    ):
        self.repository = repository
        self.recognition = recognition
        self.arbiter = arbiter
        self._notify = notify or (lambda *_a, **_k: None)
        self.matcher = matcher or QuestionMatcher()
        self.debounce = debounce or DebounceGate()
        self.watchdog = watchdog or Watchdog()
        self.clock = clock
        self.monotonic = monotonic
        self.batch_delay_ms = batch_delay_ms
        self.restart_backoff_s = restart_backoff_s
        self.reset_restart_delay_s = reset_restart_delay_s

        self.state = MatchState()
        self.listening = False
        self.last_error: Optional[Exception] = None
        self._consumer: Optional[asyncio.Task] = None
        self._watchdog_task: Optional[asyncio.Task] = None
        self._tasks: set = set()

    # ------------------------------------------------------------------ #
    # lifecycle

    def start(self) -> bool:
        """Begin listening. Returns False when recognition is unavailable."""
        if self.listening:
            return True
        try:
            self.recognition.start()
        except RecognitionUnsupported as e:
            log(f"Cannot start listening: {e}", err=True)
            self.last_error = e
            self._notify(IpcType.ERROR, kind="unsupported", message=str(e))
            return False

        self.listening = True
        self.last_error = None
        self.state = MatchState()
        self.watchdog.record_healthy()
        self._consumer = asyncio.ensure_future(self._consume())
        self._watchdog_task = asyncio.ensure_future(self._watch())
        log("Listening started")
        self._notify(IpcType.LISTENING_STATE, listening=True)
        return True

    def stop(self) -> None:
        if not self.listening:
            return
        self.listening = False
        self.recognition.stop()
        self._teardown(self.state)
        self.state = MatchState()

        self._cancel_tasks(self._consumer, self._watchdog_task)
        self._consumer = None
        self._watchdog_task = None
        log("Listening stopped")
        self._notify(IpcType.LISTENING_STATE, listening=False)

    def _teardown(self, state: MatchState) -> None:
        state.cancel_batch()
        self.arbiter.stop_current(state)
        self.arbiter.release(state)

    async def reset(self) -> None:
        """Full reset: fresh MatchState, playback stopped, recognition restarted."""
        log("Resetting pipeline")
        self._teardown(self.state)
        self.state = MatchState()
        self._cancel_tasks()
        self.recognition.stop()
        if self.listening:
            await asyncio.sleep(self.reset_restart_delay_s)
            if self.listening:
                self._start_recognition()
        self._notify(IpcType.RESET_DONE)

    def _start_recognition(self) -> None:
        try:
            self.recognition.start()
        except RecognitionUnsupported as e:
            log(f"Recognition restart failed: {e}", err=True)
            self.last_error = e
            self._notify(IpcType.ERROR, kind="unsupported", message=str(e))
            self.stop()

    def _cancel_tasks(self, *extra) -> None:
        """Cancel in-flight match/playback tasks (and `extra`), never the caller itself."""
        current = asyncio.current_task()
        for task in (*extra, *list(self._tasks)):
            if task is not None and task is not current and not task.done():
                task.cancel()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log(f"Pipeline task failed: {task.exception()}", err=True)

    # ------------------------------------------------------------------ #
    # recognition events

    async def _consume(self) -> None:
        # stop() may run inside this task, which cannot cancel itself
        while self._consumer is asyncio.current_task():
            event = await self.recognition.events.get()
            try:
                await self.handle_event(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log(f"Event handling failed ({type(event).__name__}): {e}", err=True)

    async def handle_event(self, event: RecognitionEvent) -> None:
        if isinstance(event, InterimText):
            self._notify(IpcType.PARTIAL, text=event.text)
        elif isinstance(event, FinalText):
            self._notify(IpcType.FINAL, text=event.text)
            if self.listening and event.text.strip():
                self.handle_final(event.text)
        elif isinstance(event, RecognitionError):
            if event.permission_denied:
                self.last_error = RecognitionPermissionDenied(event.message or event.error)
                self._notify(IpcType.ERROR, kind="permission_denied", message=event.message or event.error)
                self.stop()
            else:
                log(f"Recognition error '{event.error}', session will restart")
        elif isinstance(event, Ended):
            await self._restart_after_end(event)

    async def _restart_after_end(self, event: Ended) -> None:
        if not self.listening or event.session != self.recognition.session:
            return
        log(f"Recognition ended, restarting in {self.restart_backoff_s}s")
        await asyncio.sleep(self.restart_backoff_s)
        if self.listening and not self.recognition.active:
            self._start_recognition()

    async def feed_audio(self, pcm_bytes: bytes, silent: bool = False) -> None:
        if self.listening:
            await self.recognition.feed_audio(pcm_bytes, silent=silent)

    def deny_list(self) -> List[str]:
        return list(ECHO_DENY_LIST) + self.repository.echo_phrases()

    def handle_final(self, text: str) -> bool:
        """Sanitize and debounce one final transcript; True if a batch was scheduled."""
        candidate = sanitize(text, self.deny_list())
        if candidate is None:
            return False

        state = self.state
        if state.locked:
            log(f"Busy (processing={state.is_processing_match}, audio={state.is_audio_playing}), dropping '{candidate}'")
            return False

        decision = self.debounce.check(candidate, state.last_processed_phrase, state.last_processed_at, self.monotonic())
        if not decision.proceed:
            return False

        self._schedule_batch(state, candidate)
        return True

    def _schedule_batch(self, state: MatchState, candidate: str) -> None:
        state.cancel_batch()
        loop = asyncio.get_running_loop()
        state.pending_batch_timer = loop.call_later(
            self.batch_delay_ms / 1000.0, self._on_batch_timer, state, candidate
        )

    def _on_batch_timer(self, state: MatchState, candidate: str) -> None:
        state.pending_batch_timer = None
        if state is not self.state:
            return
        self._spawn(self.process_candidate(candidate, self.clock()))

    # ------------------------------------------------------------------ #
    # matching and playback

    async def process_candidate(self, candidate: str, now: float) -> Optional[StoredQuestion]:
        state = self.state
        if state.locked:
            log(f"Processing lock held, skipping '{candidate}'")
            return None

        state.is_processing_match = True
        state.last_processed_phrase = candidate
        state.last_processed_at = self.monotonic()
        log(f"Matching '{candidate}'")

        try:
            question = self.matcher.match(candidate, now, self.repository.snapshot())
        except Exception as e:
            log(f"Matcher failed: {e}", err=True)
            self.arbiter.release(state)
            return None

        if question is None:
            self.arbiter.release(state)
            self.watchdog.record_healthy()
            return None

        self.repository.increment_trigger(question.id, now)
        self._notify(
            IpcType.MATCH,
            question_id=question.id,
            question_text=question.question_text,
            candidate=candidate,
            trigger_count=question.trigger_count,
        )

        category = question.first_recorded_response()
        if category is None:
            log(f"No recorded response for '{question.question_text}'")
            self.arbiter.release(state)
            self.watchdog.record_healthy()
            return question

        log(f"Playing {category.value} response")
        result = await self.arbiter.play(
            state, question.question_text, question.responses[category], question_id=question.id
        )
        if result is not PlaybackResult.FAILED:
            self.watchdog.record_healthy()
        return question

    async def manual_play(self) -> Optional[PlaybackResult]:
        self.state.playback_started_at = self.monotonic()
        return await self.arbiter.play_manual(self.state)

    def dismiss_prompt(self) -> bool:
        return self.arbiter.dismiss_prompt()

    # ------------------------------------------------------------------ #
    # watchdog

    async def _watch(self) -> None:
        while self.listening:
            await asyncio.sleep(self.watchdog.interval_s)
            await self.watchdog_tick()

    async def watchdog_tick(self) -> WatchdogVerdict:
        state = self.state
        verdict = self.watchdog.check(state, self.monotonic())
        if verdict is WatchdogVerdict.HEALTHY:
            return verdict

        age = self.watchdog.lock_age_ms(state, self.monotonic())
        if verdict is WatchdogVerdict.GIVE_UP:
            log(f"Pipeline stuck after {self.watchdog.max_resets} resets, stopping", err=True)
            self._notify(IpcType.ERROR, kind="pipeline_stuck", message="matching pipeline keeps locking up")
            self.stop()
            return verdict

        log(f"Watchdog: locks held for {age / 1000.0:.1f}s, resetting "
            f"({self.watchdog.consecutive_resets}/{self.watchdog.max_resets})")
        await self.reset()
        return verdict

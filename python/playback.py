"""
Single-owner audio playback for recorded responses.

The arbiter guarantees at most one response plays at a time. When the output
device refuses to start (the desktop analogue of blocked autoplay) it
releases the pipeline locks and hands a manual-playback prompt to the UI.
"""
import asyncio
import io
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ipc import IpcType
from logger import get_logger
from questions import Response

log = get_logger("playback")


class PlaybackRejected(Exception):
    """The output refused to start playback without a user gesture or device."""


class PlaybackResult(str, Enum):
    PLAYED = "played"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass
class ManualPlaybackPrompt:
    question_id: Optional[str]
    question_text: str
    response_text: str
    audio_data: bytes


class SoundDevicePlayback:
    """Handle for one in-flight sounddevice playback."""

    def __init__(self, sd, frames: int, sample_rate: int):
        self._sd = sd
        self.frames = frames
        self.sample_rate = sample_rate
        self.stopped = False

    async def wait(self) -> None:
        await asyncio.to_thread(self._sd.wait)

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        try:
            self._sd.stop()
        except Exception as e:
            log(f"sounddevice stop failed: {e}", err=True)


class SoundDevicePlayer:
    """Decodes encoded audio with soundfile and plays it through sounddevice."""

    def __init__(self, device=None):
        self.device = device
        self._sd = None

    def _ensure_loaded(self):
        if self._sd is None:
            try:
                import sounddevice as sd
            except (ImportError, OSError) as e:
                # OSError: PortAudio shared library missing
                raise PlaybackRejected(f"audio output unavailable: {e}") from e
            self._sd = sd
        return self._sd

    def start(self, audio_data: bytes) -> SoundDevicePlayback:
        import soundfile as sf

        sd = self._ensure_loaded()
        try:
            data, sample_rate = sf.read(io.BytesIO(audio_data), dtype="float32")
        except RuntimeError as e:
            raise ValueError(f"undecodable response audio: {e}") from e

        try:
            sd.play(data, sample_rate, device=self.device)
        except sd.PortAudioError as e:
            raise PlaybackRejected(str(e)) from e
        return SoundDevicePlayback(sd, len(data), sample_rate)


class PlaybackArbiter:
    def __init__(self, player=None, notify: Optional[Callable[..., None]] = None):
        """
        Args:
            player: object with start(audio_data) -> handle (handle.wait(), handle.stop())
            notify: UI callback, called as notify(IpcType, **payload)
        """
        self.player = player or SoundDevicePlayer()
        self._notify = notify or (lambda *_a, **_k: None)
        self.autoplay_unblocked = False
        self.prompt: Optional[ManualPlaybackPrompt] = None

    @staticmethod
    def release(state) -> None:
        if state.is_processing_match or state.is_audio_playing:
            log("Releasing processing/audio locks")
        state.is_processing_match = False
        state.is_audio_playing = False

    def stop_current(self, state) -> None:
        """Stop and drop the in-flight playback, if any, and release both locks."""
        handle = state.current_playback
        if handle is None:
            return
        state.current_playback = None
        log("Stopping current playback")
        handle.stop()
        self.release(state)

    async def play(
        self,
        state,
        question_text: str,
        response: Response,
        question_id: Optional[str] = None,
    ) -> PlaybackResult:
        self.stop_current(state)
        if not response.has_recording:
            self.release(state)
            return PlaybackResult.FAILED

        state.is_audio_playing = True
        try:
            handle = self.player.start(response.audio_data)
        except PlaybackRejected as e:
            log(f"Autoplay rejected: {e}")
            self.release(state)
            self.prompt = ManualPlaybackPrompt(question_id, question_text, response.text, response.audio_data)
            self._notify(
                IpcType.MANUAL_PLAYBACK_NEEDED,
                question_id=question_id,
                question_text=question_text,
                response_text=response.text,
                audio_data=response.audio_data,
            )
            return PlaybackResult.BLOCKED
        except Exception as e:
            log(f"Playback failed to start: {e}", err=True)
            self.release(state)
            return PlaybackResult.FAILED

        state.current_playback = handle
        self.autoplay_unblocked = True
        log(f"Playing response for '{question_text}'")
        self._notify(IpcType.NOW_PLAYING, question_id=question_id, text=response.text)

        result = PlaybackResult.PLAYED
        try:
            await handle.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log(f"Playback error: {e}", err=True)
            result = PlaybackResult.FAILED
        finally:
            # A newer play() or a reset may already own playback; only the owner releases
            if state.current_playback is handle:
                state.current_playback = None
                self.release(state)
                self._notify(IpcType.PLAYBACK_ENDED, question_id=question_id)
        return result

    async def play_manual(self, state) -> Optional[PlaybackResult]:
        """Caregiver asked to play the pending prompt."""
        prompt = self.prompt
        if prompt is None:
            log("Manual playback requested with no pending prompt")
            return None
        self.prompt = None
        response = Response(text=prompt.response_text, audio_data=prompt.audio_data)
        return await self.play(state, prompt.question_text, response, question_id=prompt.question_id)

    def dismiss_prompt(self) -> bool:
        if self.prompt is None:
            return False
        log(f"Manual playback prompt dismissed ('{self.prompt.question_text}')")
        self.prompt = None
        self._notify(IpcType.PROMPT_DISMISSED)
        return True

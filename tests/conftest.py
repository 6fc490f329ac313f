"""Shared fakes for the listening pipeline tests."""
import asyncio
import base64

import pytest

from audio import TranscriptStep
from playback import PlaybackRejected
from questions import Response, ResponseCategory, StoredQuestion

NOW = 1_700_000_000_000.0


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeHandle:
    def __init__(self, finished: bool = False):
        self._done = asyncio.Event()
        self.stopped = False
        if finished:
            self._done.set()

    async def wait(self) -> None:
        await self._done.wait()

    def stop(self) -> None:
        self.stopped = True
        self._done.set()

    def finish(self) -> None:
        self._done.set()


class FakePlayer:
    """Stands in for the sound device; `reject` mimics blocked autoplay."""

    def __init__(self, reject: bool = False, auto_finish: bool = True):
        self.reject = reject
        self.auto_finish = auto_finish
        self.attempts = []
        self.started = []
        self.handles = []

    def start(self, audio_data: bytes) -> FakeHandle:
        self.attempts.append(audio_data)
        if self.reject:
            raise PlaybackRejected("play() failed because the user didn't interact with the document first")
        handle = FakeHandle(finished=self.auto_finish)
        self.started.append(audio_data)
        self.handles.append(handle)
        return handle


class FakeTranscriber:
    def __init__(self, steps=()):
        self.steps = list(steps)
        self.chunks = []
        self.resets = 0
        self.hotwords = None

    def add_audio(self, pcm_bytes: bytes) -> None:
        self.chunks.append(pcm_bytes)

    def process(self) -> TranscriptStep:
        if self.steps:
            return self.steps.pop(0)
        return TranscriptStep()

    def reset(self) -> None:
        self.resets += 1

    def set_hotwords(self, keywords) -> None:
        self.hotwords = keywords


class Recorder:
    """Collects notify(event, **payload) calls."""

    def __init__(self):
        self.events = []

    def __call__(self, event, **payload) -> None:
        self.events.append((event, payload))

    def of(self, event):
        return [payload for e, payload in self.events if e is event]


def make_question(qid="keys", text="Where are my keys?", recorded=("comfort",), **kwargs) -> StoredQuestion:
    responses = {}
    for name in ("comfort", "redirect", "acknowledge"):
        audio = f"{qid}-{name}-audio".encode() if name in recorded else None
        responses[ResponseCategory(name)] = Response(
            text=f"{name} answer for {qid}", audio_data=audio, transcribed=False
        )
    return StoredQuestion(id=qid, question_text=text, responses=responses, **kwargs)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def clock():
    return FakeClock()

"""
Stored questions, their recorded responses, and the in-memory repository
the matcher reads from. Storage itself lives in the client; trigger updates
are handed back through a fire-and-forget persist callback.
"""
import asyncio
import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from config import RESPONSE_CATEGORIES, FALLBACK_RESPONSE_TEXT
from logger import get_logger

log = get_logger("questions")


class ResponseCategory(str, Enum):
    COMFORT = "comfort"
    REDIRECT = "redirect"
    ACKNOWLEDGE = "acknowledge"


@dataclass
class Response:
    text: str = FALLBACK_RESPONSE_TEXT
    audio_data: Optional[bytes] = field(default=None, repr=False)
    transcribed: bool = False

    @property
    def has_recording(self) -> bool:
        return self.audio_data is not None

    @classmethod
    def from_dict(cls, data: dict) -> "Response":
        audio = data.get("audio")
        return cls(
            text=str(data.get("text") or FALLBACK_RESPONSE_TEXT),
            audio_data=base64.b64decode(audio) if audio else None,
            transcribed=bool(data.get("transcribed")),
        )

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "has_recording": self.has_recording,
            "transcribed": self.transcribed,
        }


@dataclass
class StoredQuestion:
    id: str
    question_text: str
    responses: Dict[ResponseCategory, Response] = field(default_factory=dict)
    trigger_count: int = 0
    last_triggered_at: Optional[float] = None  # epoch ms

    def first_recorded_response(self) -> Optional[ResponseCategory]:
        """First category, in selection order, that has audio to play."""
        for name in RESPONSE_CATEGORIES:
            category = ResponseCategory(name)
            response = self.responses.get(category)
            if response is not None and response.has_recording:
                return category
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "StoredQuestion":
        responses = {}
        for name, payload in (data.get("responses") or {}).items():
            if payload is None:
                continue
            try:
                category = ResponseCategory(name)
            except ValueError:
                log(f"Ignoring unknown response category '{name}'", err=True)
                continue
            responses[category] = Response.from_dict(payload)
        last = data.get("last_triggered_at")
        return cls(
            id=str(data["id"]),
            question_text=str(data.get("question_text", "")),
            responses=responses,
            trigger_count=int(data.get("trigger_count") or 0),
            last_triggered_at=float(last) if last is not None else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "question_text": self.question_text,
            "responses": {c.value: r.to_dict() for c, r in self.responses.items()},
            "trigger_count": self.trigger_count,
            "last_triggered_at": self.last_triggered_at,
        }


PersistFn = Callable[[StoredQuestion], Awaitable[None]]


class QuestionRepository:
    def __init__(self, questions: Optional[List[StoredQuestion]] = None, persist: Optional[PersistFn] = None):
        self._questions: List[StoredQuestion] = list(questions or [])
        self._persist = persist
        self._pending: set = set()

    def load(self, questions: List[StoredQuestion]) -> None:
        self._questions = list(questions)
        log(f"Loaded {len(self._questions)} questions")

    def snapshot(self) -> List[StoredQuestion]:
        return list(self._questions)

    def get(self, question_id: str) -> Optional[StoredQuestion]:
        for q in self._questions:
            if q.id == question_id:
                return q
        return None

    def increment_trigger(self, question_id: str, timestamp: float) -> Optional[StoredQuestion]:
        """Count a detection and schedule the write; never waits on storage."""
        question = self.get(question_id)
        if question is None:
            log(f"increment_trigger: unknown question {question_id}", err=True)
            return None

        question.trigger_count += 1
        if question.last_triggered_at is None or timestamp > question.last_triggered_at:
            question.last_triggered_at = timestamp

        if self._persist is not None:
            try:
                task = asyncio.ensure_future(self._persist(question))
            except Exception as e:
                log(f"Persist scheduling failed for {question_id}: {e}", err=True)
            else:
                self._pending.add(task)
                task.add_done_callback(self._on_persisted)
        return question

    def _on_persisted(self, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log(f"Trigger update not persisted: {exc}", err=True)

    def echo_phrases(self) -> List[str]:
        """Transcribed answer texts; hearing one of these means we hear ourselves."""
        phrases = []
        for q in self._questions:
            for response in q.responses.values():
                if response.transcribed and response.text:
                    phrases.append(response.text)
        return phrases

    def hotwords(self) -> List[str]:
        seen = []
        for q in self._questions:
            for w in q.question_text.lower().replace("?", " ").split():
                if len(w) > 2 and w not in seen:
                    seen.append(w)
        return seen

    def stats(self) -> dict:
        recorded = sum(1 for q in self._questions if q.first_recorded_response() is not None)
        return {
            "recorded": recorded,
            "total": len(self._questions),
            "times_played": sum(q.trigger_count for q in self._questions),
        }

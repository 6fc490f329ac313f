"""
IPC server for listening mode: streaming recognition, question matching
and response playback. Reads JSON lines on stdin, writes JSON lines on stdout.
"""
import sys
import asyncio
import base64
import traceback
from dataclasses import dataclass, field
from typing import Optional

# ensure stdout/stderr use UTF-8 on Windows to avoid mojibake
try:
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")  # type: ignore
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")  # type: ignore
except (AttributeError, ValueError):
    pass

from config import (
    WHISPER_MODEL,
    WHISPER_DEVICE,
    WHISPER_COMPUTE_TYPE,
    AUDIO_BUFFER_SECONDS,
)
from audio import Transcriber
from ipc import IpcType, parse, send_type
from logger import get_logger
from playback import PlaybackArbiter
from questions import QuestionRepository, StoredQuestion, ResponseCategory
from recognition import RecognitionSource
from session import ListeningSession
from transcribe import transcribe_response

log = get_logger("server")


def build_whisper_model():
    """Create Whisper model with CUDA fallback to CPU; None if neither loads."""
    try:
        from faster_whisper import WhisperModel
    except ImportError as e:
        log(f"faster-whisper unavailable: {e}", err=True)
        return None

    try:
        log(f"Loading Whisper model ({WHISPER_MODEL} on {WHISPER_DEVICE})...")
        return WhisperModel(WHISPER_MODEL, device=WHISPER_DEVICE, compute_type=WHISPER_COMPUTE_TYPE)
    except Exception as e:
        log(f"Whisper init failed on {WHISPER_DEVICE}: {e}", err=True)
        log("Falling back to CPU (int8)", err=True)
    try:
        return WhisperModel(WHISPER_MODEL, device="cpu", compute_type="int8")
    except Exception as e:
        log(f"Whisper init failed on cpu: {e}", err=True)
        return None


async def persist_trigger(question: StoredQuestion) -> None:
    """Storage lives in the client; hand the new counters back to it."""
    send_type(
        IpcType.TRIGGER_UPDATED,
        id=question.id,
        trigger_count=question.trigger_count,
        last_triggered_at=question.last_triggered_at,
    )


@dataclass
class Runtime:
    model: object
    repository: QuestionRepository
    session: ListeningSession
    transcriber: Optional[Transcriber] = None
    pending: set = field(default_factory=set)


def build_runtime(model) -> Runtime:
    transcriber = Transcriber(model, buffer_seconds=AUDIO_BUFFER_SECONDS) if model is not None else None
    repository = QuestionRepository(persist=persist_trigger)
    recognition = RecognitionSource(transcriber)
    arbiter = PlaybackArbiter(notify=send_type)
    session = ListeningSession(repository, recognition, arbiter, notify=send_type)
    return Runtime(model=model, repository=repository, session=session, transcriber=transcriber)


def handle_load_questions(msg, rt: Runtime) -> None:
    log("=" * 50)
    log("LOADING QUESTIONS")
    log("=" * 50)
    questions = []
    for raw in msg.get("questions", []):
        try:
            questions.append(StoredQuestion.from_dict(raw))
        except (KeyError, TypeError, ValueError) as e:
            log(f"Skipping malformed question: {e}", err=True)
    for q in questions:
        recorded = [c.value for c, r in q.responses.items() if r.has_recording]
        log(f"  {q.id}: '{q.question_text[:40]}' recorded={recorded} triggers={q.trigger_count}")

    rt.repository.load(questions)
    if rt.transcriber:
        rt.transcriber.set_hotwords(rt.repository.hotwords())
    send_type(IpcType.QUESTIONS_READY, count=len(questions))


async def handle_transcribe_response(msg, rt: Runtime) -> None:
    audio = base64.b64decode(msg.get("data") or "")
    text, transcribed = await asyncio.to_thread(transcribe_response, rt.model, audio)

    question = rt.repository.get(str(msg.get("question_id")))
    category = msg.get("category")
    if question is not None and category:
        try:
            response = question.responses.get(ResponseCategory(category))
        except ValueError:
            response = None
        if response is not None:
            response.text = text
            response.transcribed = transcribed

    send_type(
        IpcType.RESPONSE_TRANSCRIBED,
        question_id=msg.get("question_id"),
        category=category,
        text=text,
        transcribed=transcribed,
    )


async def handle_message(msg: dict, rt: Runtime) -> None:
    session = rt.session
    msg_type = msg["type"]

    if msg_type == IpcType.AUDIO.value:
        data = msg.get("data")
        pcm = base64.b64decode(data) if data else b""
        await session.feed_audio(pcm, silent=bool(msg.get("silent")) or not pcm)

    elif msg_type == IpcType.LOAD_QUESTIONS.value:
        handle_load_questions(msg, rt)

    elif msg_type == IpcType.START_LISTENING.value:
        session.start()

    elif msg_type == IpcType.STOP_LISTENING.value:
        session.stop()

    elif msg_type == IpcType.MIC_ERROR.value:
        session.recognition.report_error(str(msg.get("error", "audio-capture")), str(msg.get("message", "")))

    elif msg_type == IpcType.MANUAL_PLAY.value:
        # Playback runs until the audio ends; keep reading messages meanwhile
        task = asyncio.ensure_future(session.manual_play())
        rt.pending.add(task)
        task.add_done_callback(rt.pending.discard)

    elif msg_type == IpcType.DISMISS_PROMPT.value:
        session.dismiss_prompt()

    elif msg_type == IpcType.RESET.value:
        await session.reset()

    elif msg_type == IpcType.TRANSCRIBE_RESPONSE.value:
        await handle_transcribe_response(msg, rt)

    elif msg_type == IpcType.GET_STATS.value:
        send_type(IpcType.STATS, **rt.repository.stats())

    else:
        log(f"Unknown message type '{msg_type}'", err=True)


async def serve() -> None:
    log("=" * 50)
    log("SERVER STARTING")
    log("=" * 50)

    model = await asyncio.to_thread(build_whisper_model)
    if model is not None:
        log("Whisper model loaded!")
    else:
        log("No speech recognition available; listening mode disabled", err=True)

    rt = build_runtime(model)
    log("Sending 'ready' to client")
    send_type(IpcType.READY, recognition=model is not None)
    log("Waiting for messages on stdin...")

    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            log("stdin closed, shutting down")
            break
        line = line.strip()
        if not line:
            continue
        try:
            await handle_message(parse(line), rt)
        except Exception as e:
            log(f"Error: {e}", err=True)
            log(traceback.format_exc(), err=True)

    rt.session.stop()


def main():
    asyncio.run(serve())


if __name__ == "__main__":
    main()

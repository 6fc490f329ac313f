"""
JSON-lines protocol between the client and the listening sidecar.
One JSON object per line on stdin (inbound) and stdout (outbound).
"""
import base64
import json
import sys
from enum import Enum

from logger import get_logger

log = get_logger("ipc")


class IpcType(str, Enum):
    # inbound
    AUDIO = "audio"
    LOAD_QUESTIONS = "load_questions"
    START_LISTENING = "start_listening"
    STOP_LISTENING = "stop_listening"
    MIC_ERROR = "mic_error"
    MANUAL_PLAY = "manual_play"
    DISMISS_PROMPT = "dismiss_prompt"
    RESET = "reset"
    TRANSCRIBE_RESPONSE = "transcribe_response"
    GET_STATS = "get_stats"
    # outbound
    READY = "ready"
    QUESTIONS_READY = "questions_ready"
    LISTENING_STATE = "listening_state"
    PARTIAL = "partial"
    FINAL = "final"
    MATCH = "match"
    TRIGGER_UPDATED = "trigger_updated"
    NOW_PLAYING = "now_playing"
    PLAYBACK_ENDED = "playback_ended"
    MANUAL_PLAYBACK_NEEDED = "manual_playback_needed"
    PROMPT_DISMISSED = "prompt_dismissed"
    RESET_DONE = "reset_done"
    RESPONSE_TRANSCRIBED = "response_transcribed"
    STATS = "stats"
    ERROR = "error"


def _encode(value):
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii")
    return value


def send(msg: dict, stream=None) -> None:
    out = stream or sys.stdout
    out.write(json.dumps(msg) + "\n")
    out.flush()


def send_type(msg_type: IpcType, **payload) -> None:
    """Write one outbound message; raw bytes are sent base64 encoded."""
    msg = {k: _encode(v) for k, v in payload.items()}
    msg["type"] = msg_type.value
    try:
        send(msg)
    except (BrokenPipeError, ValueError) as e:
        # Client went away; the read loop will see EOF and stop.
        log(f"Dropped '{msg_type.value}' message: {e}", err=True)


def parse(line: str) -> dict:
    msg = json.loads(line)
    if not isinstance(msg, dict) or "type" not in msg:
        raise ValueError(f"malformed message: {line[:80]!r}")
    return msg

import asyncio
import json
from unittest.mock import Mock

import pytest

from ipc import IpcType, parse, send_type
from server import build_runtime, handle_message
from transcribe import transcribe_response

from conftest import b64


def _lines(captured):
    return [json.loads(line) for line in captured.out.splitlines() if line.strip()]


QUESTIONS = [
    {
        "id": "1",
        "question_text": "Where are my keys?",
        "responses": {"comfort": {"text": "Your keys are safe", "audio": b64(b"RIFF"), "transcribed": True}},
        "trigger_count": 12,
    },
    {"id": "3", "question_text": "I want to go home", "responses": {}},
]


def test_send_type_base64_encodes_bytes(capsys):
    send_type(IpcType.MANUAL_PLAYBACK_NEEDED, question_text="Q", audio_data=b"abc")
    msg = _lines(capsys.readouterr())[0]
    assert msg == {"type": "manual_playback_needed", "question_text": "Q", "audio_data": "YWJj"}


def test_parse_rejects_untyped_messages():
    assert parse('{"type": "reset"}') == {"type": "reset"}
    with pytest.raises(ValueError):
        parse('{"data": 1}')


def test_load_questions_and_stats(capsys):
    async def scenario():
        rt = build_runtime(None)
        await handle_message({"type": "load_questions", "questions": QUESTIONS}, rt)
        await handle_message({"type": "get_stats"}, rt)
        return rt

    rt = asyncio.run(scenario())
    assert [q.id for q in rt.repository.snapshot()] == ["1", "3"]
    messages = _lines(capsys.readouterr())
    assert messages[0] == {"type": "questions_ready", "count": 2}
    assert messages[1] == {"type": "stats", "recorded": 1, "total": 2, "times_played": 12}


def test_start_listening_without_model_reports_error(capsys):
    async def scenario():
        rt = build_runtime(None)
        await handle_message({"type": "start_listening"}, rt)
        return rt

    rt = asyncio.run(scenario())
    assert not rt.session.listening
    assert _lines(capsys.readouterr())[0]["kind"] == "unsupported"


def test_transcribe_response_updates_question(capsys):
    async def scenario():
        rt = build_runtime(None)
        await handle_message({"type": "load_questions", "questions": QUESTIONS}, rt)
        await handle_message(
            {"type": "transcribe_response", "question_id": "1", "category": "comfort", "data": b64(b"RIFF")}, rt
        )
        return rt

    rt = asyncio.run(scenario())
    # no model loaded: placeholder text, not transcribed
    comfort = next(iter(rt.repository.get("1").responses.values()))
    assert comfort.text == "Recorded response"
    assert comfort.transcribed is False
    assert _lines(capsys.readouterr())[-1]["type"] == "response_transcribed"


def test_transcribe_response_with_model():
    model = Mock()
    model.transcribe.return_value = ([Mock(text=" Your keys are safe. "), Mock(text="They are by the door.")], None)
    assert transcribe_response(model, b"RIFF") == ("Your keys are safe. They are by the door.", True)


def test_transcribe_response_falls_back_on_failure():
    model = Mock()
    model.transcribe.side_effect = RuntimeError("bad audio")
    assert transcribe_response(model, b"RIFF") == ("Recorded response", False)
    model.transcribe.side_effect = None
    model.transcribe.return_value = ([], None)
    assert transcribe_response(model, b"RIFF") == ("Recorded response", False)

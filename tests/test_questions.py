import asyncio

from questions import QuestionRepository, Response, ResponseCategory, StoredQuestion

from conftest import NOW, b64, make_question


def test_first_recorded_response_follows_category_order():
    q = make_question(recorded=("redirect", "acknowledge"))
    assert q.first_recorded_response() is ResponseCategory.REDIRECT
    q = make_question(recorded=("acknowledge", "comfort"))
    assert q.first_recorded_response() is ResponseCategory.COMFORT
    assert make_question(recorded=()).first_recorded_response() is None


def test_has_recording_follows_audio():
    assert Response(audio_data=b"x").has_recording
    assert not Response().has_recording


def test_increment_trigger_is_monotonic():
    q = make_question()
    repo = QuestionRepository([q])
    repo.increment_trigger("keys", NOW)
    repo.increment_trigger("keys", NOW - 500)
    assert q.trigger_count == 2
    assert q.last_triggered_at == NOW


def test_increment_unknown_question():
    assert QuestionRepository([]).increment_trigger("nope", NOW) is None


def test_persist_failure_does_not_propagate():
    calls = []

    async def persist(question):
        calls.append(question.trigger_count)
        raise IOError("disk full")

    async def scenario():
        q = make_question()
        repo = QuestionRepository([q], persist=persist)
        repo.increment_trigger("keys", NOW)
        # in-memory update is immediate, the write happens later
        assert q.trigger_count == 1
        for _ in range(3):
            await asyncio.sleep(0)
        return q

    q = asyncio.run(scenario())
    assert calls == [1]
    assert q.last_triggered_at == NOW


def test_from_dict_decodes_audio():
    q = StoredQuestion.from_dict({
        "id": 7,
        "question_text": "When is dinner?",
        "responses": {
            "comfort": {"text": "Dinner is at six", "audio": b64(b"RIFF"), "transcribed": True},
            "redirect": None,
            "unknown": {"text": "?"},
        },
        "trigger_count": 3,
        "last_triggered_at": NOW,
    })
    assert q.id == "7"
    assert q.responses[ResponseCategory.COMFORT].audio_data == b"RIFF"
    assert ResponseCategory.REDIRECT not in q.responses
    assert q.trigger_count == 3
    assert q.to_dict()["responses"]["comfort"]["has_recording"] is True


def test_echo_phrases_only_use_transcribed_text():
    q = make_question()
    q.responses[ResponseCategory.COMFORT].transcribed = True
    repo = QuestionRepository([q])
    assert repo.echo_phrases() == ["comfort answer for keys"]


def test_stats():
    a = make_question("a", trigger_count=12)
    b = make_question("b", "When is dinner?", trigger_count=8)
    c = make_question("c", "I want to go home", recorded=())
    assert QuestionRepository([a, b, c]).stats() == {"recorded": 2, "total": 3, "times_played": 20}


def test_hotwords_from_question_text():
    repo = QuestionRepository([make_question(), make_question("d", "When is dinner?")])
    assert repo.hotwords() == ["where", "are", "keys", "when", "dinner"]

import asyncio

from ipc import IpcType
from playback import PlaybackArbiter, PlaybackResult
from questions import Response
from session import MatchState

from conftest import FakeHandle, FakePlayer, Recorder


def _response():
    return Response(text="Your keys are in the bowl.", audio_data=b"wav-bytes")


def test_successful_playback_releases_locks():
    player = FakePlayer()
    recorder = Recorder()
    arbiter = PlaybackArbiter(player, notify=recorder)
    state = MatchState(is_processing_match=True)

    result = asyncio.run(arbiter.play(state, "Where are my keys?", _response(), question_id="keys"))

    assert result is PlaybackResult.PLAYED
    assert player.started == [b"wav-bytes"]
    assert arbiter.autoplay_unblocked
    assert not state.is_processing_match and not state.is_audio_playing
    assert state.current_playback is None
    assert recorder.of(IpcType.NOW_PLAYING) == [{"question_id": "keys", "text": "Your keys are in the bowl."}]
    assert recorder.of(IpcType.PLAYBACK_ENDED) == [{"question_id": "keys"}]


def test_rejected_autoplay_prompts_for_manual_playback():
    player = FakePlayer(reject=True)
    recorder = Recorder()
    arbiter = PlaybackArbiter(player, notify=recorder)
    state = MatchState(is_processing_match=True)

    async def scenario():
        blocked = await arbiter.play(state, "Where are my keys?", _response(), question_id="keys")
        assert blocked is PlaybackResult.BLOCKED
        assert not state.locked
        assert not arbiter.autoplay_unblocked
        assert arbiter.prompt.response_text == "Your keys are in the bowl."

        player.reject = False
        return await arbiter.play_manual(state)

    result = asyncio.run(scenario())

    prompt = recorder.of(IpcType.MANUAL_PLAYBACK_NEEDED)[0]
    assert prompt["question_text"] == "Where are my keys?"
    assert prompt["response_text"] == "Your keys are in the bowl."
    assert prompt["audio_data"] == b"wav-bytes"
    assert result is PlaybackResult.PLAYED
    assert player.started == [b"wav-bytes"]
    assert arbiter.autoplay_unblocked
    assert arbiter.prompt is None


def test_manual_play_without_prompt_is_noop():
    arbiter = PlaybackArbiter(FakePlayer())
    assert asyncio.run(arbiter.play_manual(MatchState())) is None


def test_dismiss_prompt():
    recorder = Recorder()
    arbiter = PlaybackArbiter(FakePlayer(reject=True), notify=recorder)
    asyncio.run(arbiter.play(MatchState(), "Q", _response()))
    assert arbiter.dismiss_prompt()
    assert arbiter.prompt is None
    assert not arbiter.dismiss_prompt()
    assert len(recorder.of(IpcType.PROMPT_DISMISSED)) == 1


def test_new_playback_stops_previous_one():
    player = FakePlayer(auto_finish=False)
    arbiter = PlaybackArbiter(player)
    state = MatchState()

    async def scenario():
        first = asyncio.ensure_future(arbiter.play(state, "Q", _response()))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(arbiter.play(state, "Q", _response()))
        for _ in range(3):
            await asyncio.sleep(0)

        assert player.handles[0].stopped
        assert state.current_playback is player.handles[1]
        # the stopped playback must not release the new one's lock
        assert state.is_audio_playing

        player.handles[1].finish()
        return await asyncio.gather(first, second)

    results = asyncio.run(scenario())
    assert results == [PlaybackResult.PLAYED, PlaybackResult.PLAYED]
    assert not state.locked


def test_stop_current_with_nothing_playing_is_noop():
    arbiter = PlaybackArbiter(FakePlayer())
    state = MatchState(is_processing_match=True)
    arbiter.stop_current(state)
    assert state.is_processing_match


def test_stop_current_releases_locks():
    arbiter = PlaybackArbiter(FakePlayer())
    handle = FakeHandle()
    state = MatchState(is_processing_match=True, is_audio_playing=True, current_playback=handle)
    arbiter.stop_current(state)
    assert handle.stopped
    assert state.current_playback is None
    assert not state.locked


def test_response_without_recording_fails_fast():
    arbiter = PlaybackArbiter(FakePlayer())
    state = MatchState(is_processing_match=True)
    result = asyncio.run(arbiter.play(state, "Q", Response(text="no audio")))
    assert result is PlaybackResult.FAILED
    assert not state.locked

"""
Speech-to-text for recorded caregiver responses.
The text becomes the response label and feeds the echo deny-list.
"""
import io
import sys
import json
from typing import Tuple

from config import FALLBACK_RESPONSE_TEXT, WHISPER
from logger import get_logger

log = get_logger("transcribe")


def transcribe_response(model, audio_data: bytes) -> Tuple[str, bool]:
    """
    Returns (text, transcribed). When Whisper produces nothing usable the
    placeholder text comes back with transcribed=False.
    """
    if model is None or not audio_data:
        return FALLBACK_RESPONSE_TEXT, False
    try:
        segments, _ = model.transcribe(
            io.BytesIO(audio_data),
            beam_size=WHISPER.batch_beam_size,
            language="en",
            vad_filter=True,
        )
        text = " ".join(seg.text.strip() for seg in segments).strip()
    except Exception as e:
        log(f"Response transcription failed: {e}", err=True)
        return FALLBACK_RESPONSE_TEXT, False

    if not text:
        log("Response transcription was empty, using placeholder")
        return FALLBACK_RESPONSE_TEXT, False
    return text, True


if __name__ == "__main__":
    if len(sys.argv) > 1:
        from faster_whisper import WhisperModel

        whisper = WhisperModel("base.en", device="cpu", compute_type="int8")
        with open(sys.argv[1], "rb") as f:
            text, transcribed = transcribe_response(whisper, f.read())
        print(json.dumps({"text": text, "transcribed": transcribed}))

"""Tests for the synthesis adapters."""

from __future__ import annotations

import base64
import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

import synthesizer as synth_mod
from errors import SynthesisError
from synthesizer import HttpSynthesisService, Pyttsx3Synthesizer, SoundDevicePlayer


def _response(status: int = 200, json_body=None, content: bytes = b"", content_type: str = "application/json"):  # noqa: ANN001, ANN202
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.headers = {"Content-Type": content_type}
    response.content = content
    response.text = str(json_body)
    if json_body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_body
    return response


def _service(response) -> tuple[HttpSynthesisService, MagicMock]:  # noqa: ANN001
    session = MagicMock()
    session.post.return_value = response
    return HttpSynthesisService("https://tts.example/speak", api_key="k", session=session), session


# ---------------------------------------------------------------
# HttpSynthesisService
# ---------------------------------------------------------------

def test_json_audio_payload_is_decoded() -> None:
    encoded = base64.b64encode(b"ID3-mp3-bytes").decode("ascii")
    service, session = _service(_response(json_body={"audioData": encoded, "contentType": "audio/mpeg"}))

    audio, content_type = service.synthesize("hello", "voice-9")

    assert audio == b"ID3-mp3-bytes"
    assert content_type == "audio/mpeg"
    kwargs = session.post.call_args.kwargs
    assert kwargs["json"] == {"text": "hello", "voiceId": "voice-9"}
    assert kwargs["headers"]["Authorization"] == "Bearer k"


def test_raw_audio_body_is_returned() -> None:
    service, _ = _service(_response(content=b"\x00\x01", content_type="audio/mpeg"))

    assert service.synthesize("hello", "v") == (b"\x00\x01", "audio/mpeg")


def test_non_ok_status_raises() -> None:
    service, _ = _service(_response(status=500, json_body={"error": "quota"}))

    with pytest.raises(SynthesisError, match="500"):
        service.synthesize("hello", "v")


def test_missing_audio_payload_raises() -> None:
    service, _ = _service(_response(json_body={"error": "No text provided"}))

    with pytest.raises(SynthesisError, match="No text provided"):
        service.synthesize("hello", "v")


def test_invalid_base64_raises() -> None:
    service, _ = _service(_response(json_body={"audioData": "not base64!!"}))

    with pytest.raises(SynthesisError):
        service.synthesize("hello", "v")


def test_network_error_raises_synthesis_error() -> None:
    session = MagicMock()
    session.post.side_effect = requests.ConnectionError("offline")
    service = HttpSynthesisService("https://tts.example/speak", session=session)

    with pytest.raises(SynthesisError, match="offline"):
        service.synthesize("hello", "v")


def test_missing_endpoint_raises() -> None:
    with pytest.raises(SynthesisError):
        HttpSynthesisService("").synthesize("hello", "v")


# ---------------------------------------------------------------
# SoundDevicePlayer
# ---------------------------------------------------------------

@patch("synthesizer.sd")
def test_pcm_audio_is_played_directly(mock_sd: MagicMock) -> None:
    player = SoundDevicePlayer(pcm_sample_rate=24000)

    player.play(b"\x00\x00" * 10, "audio/pcm")

    data, sample_rate = mock_sd.play.call_args.args
    assert len(data) == 10
    assert sample_rate == 24000
    mock_sd.wait.assert_called_once()


@patch("synthesizer.sf")
@patch("synthesizer.sd")
def test_encoded_audio_is_decoded_with_soundfile(mock_sd: MagicMock, mock_sf: MagicMock) -> None:
    mock_sf.read.return_value = ("frames", 44100)

    SoundDevicePlayer().play(b"ID3", "audio/mpeg")

    mock_sd.play.assert_called_once_with("frames", 44100)


@patch("synthesizer.sf")
@patch("synthesizer.sd")
def test_decode_failure_raises_synthesis_error(mock_sd: MagicMock, mock_sf: MagicMock) -> None:
    mock_sf.read.side_effect = RuntimeError("Format not recognised")

    with pytest.raises(SynthesisError, match="playback failed"):
        SoundDevicePlayer().play(b"garbage", "audio/mpeg")
    mock_sd.play.assert_not_called()


def test_player_without_sounddevice(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(synth_mod, "sd", None)

    with pytest.raises(SynthesisError):
        SoundDevicePlayer().play(b"x", "audio/mpeg")


# ---------------------------------------------------------------
# Pyttsx3Synthesizer
# ---------------------------------------------------------------

@patch("synthesizer.pyttsx3")
def test_pyttsx3_speaks_and_signals_done(mock_tts: MagicMock) -> None:
    engine = mock_tts.init.return_value
    done = threading.Event()

    synth = Pyttsx3Synthesizer()
    synth.speak("stay calm", "voice-id", 175, 1.0, done.set)

    assert done.wait(2.0)
    engine.setProperty.assert_any_call("rate", 175)
    engine.setProperty.assert_any_call("voice", "voice-id")
    engine.say.assert_called_once_with("stay calm")
    engine.runAndWait.assert_called_once()
    engine.disconnect.assert_called_once()


@patch("synthesizer.pyttsx3")
def test_pyttsx3_failure_still_signals_done(mock_tts: MagicMock) -> None:
    mock_tts.init.return_value.runAndWait.side_effect = RuntimeError("run loop already started")
    done = threading.Event()

    Pyttsx3Synthesizer().speak("hello", None, 175, 1.0, done.set)

    assert done.wait(2.0)


@patch("synthesizer.pyttsx3")
def test_pyttsx3_voices_and_cancel(mock_tts: MagicMock) -> None:
    engine = mock_tts.init.return_value
    engine.getProperty.return_value = ["a", "b"]

    synth = Pyttsx3Synthesizer()
    assert synth.voices() == ["a", "b"]
    synth.cancel()

    engine.stop.assert_called_once()


def test_pyttsx3_missing(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(synth_mod, "pyttsx3", None)
    synth = Pyttsx3Synthesizer()

    assert synth.is_available() is False
    assert synth.voices() == []
    with pytest.raises(RuntimeError):
        synth.speak("hello", None, 175, 1.0, lambda: None)

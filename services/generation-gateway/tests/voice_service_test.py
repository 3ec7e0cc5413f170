from unittest.mock import AsyncMock

import pytest

from connections.voice_providers import ElevenLabsSynthesizer, GoogleSpeechRecognizer
from core.exceptions import ProviderError
from domain.conversation import Language, Transcription, VoiceInfo
from domain.interfaces import SpeechRecognizer, SpeechSynthesizer
from services.voice_service import VoiceService

SPEECH = "https://speech.test"
ELEVEN = "https://eleven.test"


@pytest.fixture
def synthesizer():
    return AsyncMock(spec=SpeechSynthesizer)


@pytest.fixture
def recognizer():
    return AsyncMock(spec=SpeechRecognizer)


@pytest.mark.asyncio
async def test_text_to_speech_uses_the_language_voice(synthesizer, recognizer):
    synthesizer.synthesize.return_value = b"mp3"
    service = VoiceService(synthesizer, recognizer)

    speech = await service.text_to_speech("مرحبا", Language.AR)

    synthesizer.synthesize.assert_awaited_once_with("مرحبا", "pNInz6obpgDQGcFmaJgB", "eleven_multilingual_v2")
    assert speech.audio == b"mp3"
    assert speech.voice == "Fatima"


@pytest.mark.asyncio
async def test_explicit_voice_overrides_the_default(synthesizer, recognizer):
    synthesizer.synthesize.return_value = b"mp3"

    speech = await VoiceService(synthesizer, recognizer).text_to_speech("hi", voice_id="custom")

    assert synthesizer.synthesize.await_args.args[1] == "custom"
    assert speech.voice == "custom"


@pytest.mark.asyncio
async def test_speech_to_text_without_results_is_empty(synthesizer, recognizer):
    recognizer.recognize.return_value = None

    transcription = await VoiceService(synthesizer, recognizer).speech_to_text(b"pcm", Language.AR)

    recognizer.recognize.assert_awaited_once_with(b"pcm", "ar-SA")
    assert transcription.text == ""
    assert transcription.confidence == 0.0


@pytest.mark.asyncio
async def test_detect_language_keeps_the_most_confident(synthesizer, recognizer):
    async def recognize(audio, code):
        confidence = {"en-US": 0.41, "ar-SA": 0.87}[code]
        return Transcription(text="...", language=Language(code[:2]), confidence=confidence)

    recognizer.recognize.side_effect = recognize

    detected = await VoiceService(synthesizer, recognizer).detect_language(b"pcm")

    assert detected.language == Language.AR
    assert detected.confidence == 0.87
    assert detected.is_fallback is False


@pytest.mark.asyncio
async def test_detect_language_falls_back_to_english(synthesizer, recognizer):
    recognizer.recognize.side_effect = [ProviderError("google-speech", "HTTP 503"), None]

    detected = await VoiceService(synthesizer, recognizer).detect_language(b"pcm")

    assert detected.language == Language.EN
    assert detected.is_fallback is True


@pytest.mark.asyncio
async def test_list_voices_filters_by_language(synthesizer, recognizer):
    synthesizer.list_voices.return_value = [
        VoiceInfo(id="1", name="Rachel", language="en"),
        VoiceInfo(id="2", name="Fatima", language="AR"),
        VoiceInfo(id="3", name="Unlabeled"),
    ]
    service = VoiceService(synthesizer, recognizer)

    assert [v.name for v in await service.list_voices(Language.AR)] == ["Fatima"]
    assert len(await service.list_voices()) == 3


@pytest.mark.asyncio
async def test_google_recognizer_joins_transcripts(client, transport):
    transport.on(
        "POST",
        f"{SPEECH}/v1/speech:recognize",
        (
            200,
            {
                "results": [
                    {"alternatives": [{"transcript": "hello", "confidence": 0.9}]},
                    {"alternatives": [{"transcript": "world", "confidence": 0.7}]},
                ]
            },
        ),
    )

    transcription = await GoogleSpeechRecognizer(client, "g-key", SPEECH).recognize(b"\x00\x01", "en-US")

    config = transport.json_body()["config"]
    assert config == {"encoding": "LINEAR16", "sampleRateHertz": 16000, "languageCode": "en-US"}
    assert transcription.text == "hello\nworld"
    assert transcription.language == Language.EN
    assert transcription.confidence == 0.9


@pytest.mark.asyncio
async def test_elevenlabs_voice_labels(client, transport):
    transport.on(
        "GET",
        f"{ELEVEN}/v1/voices",
        (200, {"voices": [{"voice_id": "v1", "name": "Rachel", "labels": {"gender": "female", "use case": "narration"}}]}),
    )

    voices = await ElevenLabsSynthesizer(client, "xi-key", ELEVEN).list_voices()

    assert transport.calls[0].headers["xi-api-key"] == "xi-key"
    assert voices[0].id == "v1"
    assert voices[0].use_case == "narration"

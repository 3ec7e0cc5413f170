from dataclasses import dataclass
from typing import List, Optional

import structlog
from core.exceptions import GatewayError
from domain.conversation import DetectedLanguage, Language, SynthesizedSpeech, Transcription, VoiceInfo
from domain.interfaces import SpeechRecognizer, SpeechSynthesizer

logger = structlog.get_logger()


@dataclass(frozen=True)
class LanguageProfile:
    speech_code: str
    voice: str
    voice_id: str


LANGUAGE_PROFILES = {
    Language.EN: LanguageProfile(speech_code="en-US", voice="Rachel", voice_id="21m00Tcm4TlvDq8ikWAM"),
    Language.AR: LanguageProfile(speech_code="ar-SA", voice="Fatima", voice_id="pNInz6obpgDQGcFmaJgB"),
}
TTS_MODEL = "eleven_multilingual_v2"
FALLBACK_LANGUAGE = DetectedLanguage(language=Language.EN, confidence=0.5, is_fallback=True)


class VoiceService:
    def __init__(self, synthesizer: SpeechSynthesizer, recognizer: SpeechRecognizer):
        self.synthesizer = synthesizer
        self.recognizer = recognizer

    async def speech_to_text(self, audio: bytes, language: Language = Language.EN) -> Transcription:
        transcription = await self.recognizer.recognize(audio, LANGUAGE_PROFILES[language].speech_code)
        if transcription is None:
            return Transcription(text="", language=language, confidence=0.0)
        return transcription

    async def text_to_speech(
        self, text: str, language: Language = Language.EN, voice_id: Optional[str] = None
    ) -> SynthesizedSpeech:
        profile = LANGUAGE_PROFILES[language]
        audio = await self.synthesizer.synthesize(text, voice_id or profile.voice_id, TTS_MODEL)
        logger.info("speech_synthesized", language=language.value, characters=len(text), size=len(audio))
        return SynthesizedSpeech(audio=audio, language=language, voice=voice_id or profile.voice)

    async def detect_language(self, audio: bytes) -> DetectedLanguage:
        """
        Recognizes the clip once per supported language and keeps the most confident.
        Falls back to English rather than failing; individual attempts may error.
        """
        candidates: List[DetectedLanguage] = []
        for language, profile in LANGUAGE_PROFILES.items():
            try:
                transcription = await self.recognizer.recognize(audio, profile.speech_code)
            except GatewayError as e:
                logger.warning("language_detection_attempt_failed", language=language.value, error=e.message)
                continue
            if transcription is not None:
                candidates.append(DetectedLanguage(language=language, confidence=transcription.confidence or 0.0))

        if not candidates:
            logger.warning("language_detection_fallback", language=FALLBACK_LANGUAGE.language.value)
            return FALLBACK_LANGUAGE

        return max(candidates, key=lambda c: c.confidence)

    async def list_voices(self, language: Optional[Language] = None) -> List[VoiceInfo]:
        voices = await self.synthesizer.list_voices()
        if language is None:
            return voices
        return [v for v in voices if v.language and language.value in v.language.lower()]

    async def get_voice(self, voice_id: str) -> VoiceInfo:
        return await self.synthesizer.get_voice(voice_id)

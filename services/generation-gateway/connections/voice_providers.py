import base64
from typing import Any, Dict, List, Optional

from connections.http import ProviderHTTPClient
from core.exceptions import ProviderError
from domain.conversation import Language, Transcription, VoiceInfo
from domain.interfaces import SpeechRecognizer, SpeechSynthesizer


def _voice_info(raw: Dict[str, Any]) -> VoiceInfo:
    labels = raw.get("labels") or {}
    return VoiceInfo(
        id=raw.get("voice_id") or raw.get("id"),
        name=raw.get("name", ""),
        language=labels.get("language") or raw.get("language"),
        gender=labels.get("gender"),
        age=labels.get("age"),
        description=raw.get("description") or labels.get("description"),
        use_case=labels.get("use_case") or labels.get("use case"),
    )


class ElevenLabsSynthesizer(ProviderHTTPClient, SpeechSynthesizer):
    provider_id = "elevenlabs"

    def auth_headers(self) -> Dict[str, str]:
        return {"xi-api-key": self.api_key}

    async def synthesize(self, text: str, voice_id: str, model_id: str) -> bytes:
        resp = await self.request(
            "POST",
            f"/v1/text-to-speech/{voice_id}",
            json={"text": text, "model_id": model_id},
            headers={"Accept": "audio/mpeg"},
        )
        return resp.content

    async def list_voices(self) -> List[VoiceInfo]:
        body = await self.request_json("GET", "/v1/voices")
        return [_voice_info(raw) for raw in body.get("voices", [])]

    async def get_voice(self, voice_id: str) -> VoiceInfo:
        return _voice_info(await self.request_json("GET", f"/v1/voices/{voice_id}"))


class GoogleSpeechRecognizer(ProviderHTTPClient, SpeechRecognizer):
    """Google Cloud Speech-to-Text v1 recognize. Audio is expected as 16kHz LINEAR16."""

    provider_id = "google-speech"
    SAMPLE_RATE_HERTZ = 16000

    def auth_headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    async def recognize(self, audio: bytes, language_code: str) -> Optional[Transcription]:
        body = await self.request_json(
            "POST",
            "/v1/speech:recognize",
            json={
                "config": {
                    "encoding": "LINEAR16",
                    "sampleRateHertz": self.SAMPLE_RATE_HERTZ,
                    "languageCode": language_code,
                },
                "audio": {"content": base64.b64encode(audio).decode("ascii")},
            },
        )
        results = body.get("results") or []
        if not results:
            return None

        try:
            alternatives = [result["alternatives"][0] for result in results]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.provider_id, "recognition result carried no alternatives", original_error=e)

        return Transcription(
            text="\n".join(alt.get("transcript", "") for alt in alternatives),
            language=Language(language_code.split("-")[0].lower()),
            confidence=alternatives[0].get("confidence"),
        )

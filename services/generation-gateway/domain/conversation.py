from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from domain.models import CamelModel, utcnow


class Language(str, Enum):
    EN = "en"
    AR = "ar"


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatMessage(CamelModel):
    role: ChatRole
    content: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChatOptions(CamelModel):
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=2048, gt=0)
    system_prompt: str = ""


class ChatRequest(CamelModel):
    provider: str = "openai"
    model: Optional[str] = None
    messages: List[ChatMessage] = Field(..., min_length=1)
    options: ChatOptions = Field(default_factory=ChatOptions)


class ChatReply(CamelModel):
    content: str
    role: ChatRole = ChatRole.ASSISTANT
    language: Language = Language.EN
    is_rtl: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChatCapabilities(CamelModel):
    models: List[str]
    max_tokens: int
    supports_streaming: bool
    supports_images: bool
    supports_tools: bool


class LanguageDetectionRequest(CamelModel):
    text: str = Field(..., min_length=1)


# --- Voice ---


class Transcription(CamelModel):
    text: str
    language: Language
    confidence: Optional[float] = None


class SynthesizedSpeech(CamelModel):
    audio: bytes
    language: Language
    voice: str
    content_type: str = "audio/mpeg"


class DetectedLanguage(CamelModel):
    language: Language
    confidence: float
    is_fallback: bool = False


class VoiceInfo(CamelModel):
    id: str
    name: str
    language: Optional[str] = None
    gender: Optional[str] = None
    age: Optional[str] = None
    description: Optional[str] = None
    use_case: Optional[str] = None


class SpeechToTextRequest(CamelModel):
    audio_base64: str = Field(..., min_length=1)
    language: Language = Language.EN


class TextToSpeechRequest(CamelModel):
    text: str = Field(..., min_length=1, max_length=5000)
    language: Language = Language.EN
    voice_id: Optional[str] = None

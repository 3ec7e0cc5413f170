from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel

from core.exceptions import ConfigurationError
from domain.conversation import ChatMessage, ChatOptions, Transcription, VoiceInfo
from domain.models import (
    Capabilities,
    GenerationQuery,
    GenerationRequest,
    GenerationResult,
    JobHandle,
    MediaKind,
    MediaTarget,
    Page,
    PollPolicy,
    PollStatus,
    RawProviderResponse,
)
from services.costs import calculate_cost
from services.settings_policy import apply_bounds

ProviderOutcome = Union[RawProviderResponse, JobHandle]


class MediaProviderAdapter(ABC):
    """
    One provider behind a common generate/edit/upscale interface.
    Synchronous providers return a RawProviderResponse, asynchronous ones a JobHandle
    that the poller resolves via fetch_status().
    """

    provider_id: str
    media_kind: MediaKind
    capabilities: Capabilities
    default_model: str
    # Model name an aggregator expects for this provider's family
    aggregator_model: Optional[str] = None
    poll_policy: PollPolicy = PollPolicy(interval=5.0, max_attempts=60)

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> ProviderOutcome:
        pass

    async def edit(self, target: MediaTarget, prompt: str, options: BaseModel) -> ProviderOutcome:
        raise ConfigurationError(f"Editing is not supported for provider: {self.provider_id}")

    async def upscale(self, target: MediaTarget, options: BaseModel) -> ProviderOutcome:
        raise ConfigurationError(f"Upscaling is not supported for provider: {self.provider_id}")

    async def fetch_status(self, handle: JobHandle) -> PollStatus:
        raise ConfigurationError(f"Provider {self.provider_id} has no asynchronous tasks to poll")

    def handles_model(self, model: Optional[str]) -> bool:
        if not model:
            return True
        return model in self.capabilities.models or model in (self.provider_id, self.aggregator_model)

    def resolve_model(self, model: Optional[str]) -> str:
        if model and model in self.capabilities.models:
            return model
        return self.default_model

    def bounded(self, settings: Mapping[str, Any]) -> Dict[str, Any]:
        return apply_bounds(self.provider_id, settings, self.capabilities)

    def calculate_cost(self, operation: str, params: Mapping[str, Any]) -> float:
        return calculate_cost(self.provider_id, operation, params)


class ChatProvider(ABC):
    provider_id: str
    default_model: str

    @abstractmethod
    async def complete(self, model: str, messages: List[ChatMessage], options: ChatOptions) -> Dict[str, Any]:
        """Returns {"content": str, "usage": dict}"""
        pass


class SpeechSynthesizer(ABC):
    @abstractmethod
    async def synthesize(self, text: str, voice_id: str, model_id: str) -> bytes:
        pass

    @abstractmethod
    async def list_voices(self) -> List[VoiceInfo]:
        pass

    @abstractmethod
    async def get_voice(self, voice_id: str) -> VoiceInfo:
        pass


class SpeechRecognizer(ABC):
    @abstractmethod
    async def recognize(self, audio: bytes, language_code: str) -> Optional[Transcription]:
        """Returns None when nothing was recognized."""
        pass


class GenerationRepository(ABC):
    @abstractmethod
    async def upsert(self, result: GenerationResult) -> GenerationResult:
        pass

    @abstractmethod
    async def get(self, generation_id: str) -> Optional[GenerationResult]:
        pass

    @abstractmethod
    async def delete(self, generation_id: str) -> bool:
        """Returns False if nothing was deleted."""
        pass

    @abstractmethod
    async def toggle_favorite(self, generation_id: str) -> Optional[bool]:
        """Returns the new favorite flag, or None if the generation does not exist."""
        pass

    @abstractmethod
    async def list(self, query: GenerationQuery) -> Page[GenerationResult]:
        pass

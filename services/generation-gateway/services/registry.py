from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from core.exceptions import ConfigurationError
from domain.interfaces import MediaProviderAdapter, ProviderOutcome
from domain.models import (
    Capabilities,
    GenerationRequest,
    JobHandle,
    MediaKind,
    MediaTarget,
    PollPolicy,
    PollStatus,
)
from pydantic import BaseModel


class ProviderRegistry:
    """
    Maps (media kind, provider id) onto adapters and knows which adapter,
    if any, acts as the aggregator for each media kind.
    """

    def __init__(
        self,
        adapters: Iterable[MediaProviderAdapter],
        aggregators: Optional[Mapping[MediaKind, str]] = None,
    ):
        self._adapters: Dict[Tuple[MediaKind, str], MediaProviderAdapter] = {}
        for adapter in adapters:
            self.register(adapter)
        self._aggregators = {kind: pid for kind, pid in (aggregators or {}).items() if pid}

        for kind, provider_id in self._aggregators.items():
            if not self.get(kind, provider_id).capabilities.is_aggregator:
                raise ConfigurationError(f"{provider_id} is not an aggregator and cannot front {kind.value}")

    def register(self, adapter: MediaProviderAdapter) -> None:
        self._adapters[(adapter.media_kind, adapter.provider_id)] = adapter

    def get(self, kind: MediaKind, provider_id: str) -> MediaProviderAdapter:
        try:
            return self._adapters[(kind, provider_id)]
        except KeyError:
            raise ConfigurationError(f"Unsupported {kind.value} provider: {provider_id}")

    def providers(self, kind: MediaKind) -> List[str]:
        return [pid for (k, pid) in self._adapters if k == kind]

    def capabilities(self, kind: MediaKind, provider_id: str) -> Capabilities:
        return self.get(kind, provider_id).capabilities

    def aggregator(self, kind: MediaKind) -> Optional[MediaProviderAdapter]:
        provider_id = self._aggregators.get(kind)
        return self.get(kind, provider_id) if provider_id else None

    def find_direct(self, kind: MediaKind, model: Optional[str]) -> Optional[MediaProviderAdapter]:
        for (k, _), adapter in self._adapters.items():
            if k != kind or adapter.capabilities.is_aggregator:
                continue
            if model and adapter.handles_model(model):
                return adapter
        return None

    def direct_for_model(self, kind: MediaKind, model: Optional[str]) -> MediaProviderAdapter:
        """The direct provider serving a model family (sora-2 -> sora2)."""
        adapter = self.find_direct(kind, model)
        if adapter is None:
            raise ConfigurationError(f"No direct {kind.value} provider serves model: {model}")
        return adapter

    def family_of(self, adapter: MediaProviderAdapter, model: Optional[str]) -> MediaProviderAdapter:
        if not adapter.capabilities.is_aggregator:
            return adapter
        return self.direct_for_model(adapter.media_kind, model or adapter.default_model)

    def poll_policy(self, handle: JobHandle) -> PollPolicy:
        """Tuning follows the model family, so a sora2 job submitted through an aggregator polls like sora2."""
        adapter = self.get(handle.media_kind, handle.provider)
        if adapter.capabilities.is_aggregator:
            family = self.find_direct(handle.media_kind, handle.model)
            if family is not None:
                return family.poll_policy
        return adapter.poll_policy

    async def generate(self, request: GenerationRequest) -> ProviderOutcome:
        return await self.get(request.media_kind, request.provider).generate(request)

    async def edit(
        self, kind: MediaKind, provider_id: str, target: MediaTarget, prompt: str, options: BaseModel
    ) -> ProviderOutcome:
        adapter = self.get(kind, provider_id)
        if not adapter.capabilities.supports_editing:
            raise ConfigurationError(f"Editing is not supported for provider: {provider_id}")
        return await adapter.edit(target, prompt, options)

    async def upscale(self, kind: MediaKind, provider_id: str, target: MediaTarget, options: BaseModel) -> ProviderOutcome:
        adapter = self.get(kind, provider_id)
        if not adapter.capabilities.supports_upscaling:
            raise ConfigurationError(f"Upscaling is not supported for provider: {provider_id}")
        return await adapter.upscale(target, options)

    async def fetch_status(self, handle: JobHandle) -> PollStatus:
        return await self.get(handle.media_kind, handle.provider).fetch_status(handle)

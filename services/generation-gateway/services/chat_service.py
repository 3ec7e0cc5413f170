import re
from typing import Dict

import structlog
from core.exceptions import ConfigurationError
from domain.conversation import ChatCapabilities, ChatReply, ChatRequest, Language
from domain.interfaces import ChatProvider

logger = structlog.get_logger()

ARABIC_PATTERN = re.compile(r"[؀-ۿ]")
RTL_PATTERN = re.compile(r"[֐-׿؀-ۿݐ-ݿࢠ-ࣿﭐ-﷿ﹰ-﻿]")

CAPABILITIES = {
    "openai": ChatCapabilities(
        models=["gpt-3.5-turbo", "gpt-4", "gpt-4-turbo", "gpt-4o"],
        max_tokens=128000,
        supports_streaming=True,
        supports_images=True,
        supports_tools=True,
    ),
    "anthropic": ChatCapabilities(
        models=["claude-3-opus-20240229", "claude-3-sonnet-20240229", "claude-3-haiku-20240307"],
        max_tokens=200000,
        supports_streaming=True,
        supports_images=True,
        supports_tools=True,
    ),
    "google": ChatCapabilities(
        models=["gemini-pro", "gemini-pro-vision"],
        max_tokens=32768,
        supports_streaming=True,
        supports_images=True,
        supports_tools=False,
    ),
}


def detect_language(text: str) -> Language:
    return Language.AR if ARABIC_PATTERN.search(text) else Language.EN


def is_text_rtl(text: str) -> bool:
    return bool(RTL_PATTERN.search(text))


class ChatService:
    def __init__(self, providers: Dict[str, ChatProvider]):
        self.providers = providers

    def _provider(self, provider_id: str) -> ChatProvider:
        try:
            return self.providers[provider_id]
        except KeyError:
            raise ConfigurationError(f"Unsupported AI provider: {provider_id}")

    async def complete(self, request: ChatRequest) -> ChatReply:
        provider = self._provider(request.provider)
        model = request.model or provider.default_model

        response = await provider.complete(model, request.messages, request.options)
        content = response["content"]

        logger.info("chat_completed", provider=request.provider, model=model, messages=len(request.messages))
        return ChatReply(
            content=content,
            language=detect_language(content),
            is_rtl=is_text_rtl(content),
            metadata={"provider": request.provider, "model": model, "usage": response.get("usage") or {}},
        )

    def detect_language(self, text: str) -> Language:
        return detect_language(text)

    def is_text_rtl(self, text: str) -> bool:
        return is_text_rtl(text)

    def get_capabilities(self, provider_id: str) -> ChatCapabilities:
        try:
            return CAPABILITIES[provider_id]
        except KeyError:
            raise ConfigurationError(f"Unsupported AI provider: {provider_id}")

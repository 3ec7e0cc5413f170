from typing import Any, Dict, List

import httpx
from connections.http import ProviderHTTPClient
from core.exceptions import ProviderError
from domain.conversation import ChatMessage, ChatOptions, ChatRole
from domain.interfaces import ChatProvider


class OpenAIChatProvider(ProviderHTTPClient, ChatProvider):
    provider_id = "openai"
    default_model = "gpt-4"

    async def complete(self, model: str, messages: List[ChatMessage], options: ChatOptions) -> Dict[str, Any]:
        wire_messages = [{"role": m.role.value, "content": m.content} for m in messages]
        if options.system_prompt:
            wire_messages.insert(0, {"role": "system", "content": options.system_prompt})

        body = await self.request_json(
            "POST",
            "/v1/chat/completions",
            json={
                "model": model,
                "messages": wire_messages,
                "temperature": options.temperature,
                "max_tokens": options.max_tokens,
            },
        )
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.provider_id, "completion carried no message", original_error=e)
        return {"content": content, "usage": body.get("usage") or {}}


class AnthropicChatProvider(ProviderHTTPClient, ChatProvider):
    """Anthropic messages API. System turns are lifted into the top-level `system` field."""

    provider_id = "anthropic"
    default_model = "claude-3-opus-20240229"

    def __init__(self, client: httpx.AsyncClient, api_key: str, base_url: str, api_version: str, timeout: float = 60.0):
        super().__init__(client, api_key, base_url, timeout)
        self.api_version = api_version

    def auth_headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": self.api_version}

    async def complete(self, model: str, messages: List[ChatMessage], options: ChatOptions) -> Dict[str, Any]:
        system = [m.content for m in messages if m.role == ChatRole.SYSTEM]
        if options.system_prompt:
            system.insert(0, options.system_prompt)

        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": [
                {"role": "assistant" if m.role == ChatRole.ASSISTANT else "user", "content": m.content}
                for m in messages
                if m.role != ChatRole.SYSTEM
            ],
        }
        if system:
            payload["system"] = "\n\n".join(system)

        body = await self.request_json("POST", "/v1/messages", json=payload)
        try:
            content = "".join(block["text"] for block in body["content"] if block.get("type", "text") == "text")
        except (KeyError, TypeError) as e:
            raise ProviderError(self.provider_id, "completion carried no text content", original_error=e)
        return {"content": content, "usage": body.get("usage") or {}}


class GoogleChatProvider(ProviderHTTPClient, ChatProvider):
    """Gemini generateContent. The conversation is flattened into a single prompt."""

    provider_id = "google"
    default_model = "gemini-pro"

    def auth_headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    @staticmethod
    def flatten(messages: List[ChatMessage], system_prompt: str = "") -> str:
        labels = {ChatRole.SYSTEM: "System", ChatRole.USER: "Human", ChatRole.ASSISTANT: "Assistant"}
        parts = [f"System: {system_prompt}\n\n"] if system_prompt else []
        parts.extend(f"{labels[m.role]}: {m.content}\n\n" for m in messages)
        parts.append("Assistant: ")
        return "".join(parts)

    async def complete(self, model: str, messages: List[ChatMessage], options: ChatOptions) -> Dict[str, Any]:
        body = await self.request_json(
            "POST",
            f"/v1beta/models/{model}:generateContent",
            json={
                "contents": [{"role": "user", "parts": [{"text": self.flatten(messages, options.system_prompt)}]}],
                "generationConfig": {"temperature": options.temperature, "maxOutputTokens": options.max_tokens},
            },
        )
        try:
            parts = body["candidates"][0]["content"]["parts"]
            content = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.provider_id, "response carried no candidates", original_error=e)
        return {"content": content, "usage": body.get("usageMetadata") or {}}

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import structlog
from connections.media_source import to_data_uri
from core.exceptions import ProviderError
from domain.models import GenerationResult, GenerationStatus, MediaKind, RawProviderResponse
from services.costs import calculate_cost

logger = structlog.get_logger()

# Inputs of the cost functions; stored in metadata so a result can be re-priced
COST_KEYS = ("width", "height", "quality", "samples", "steps", "duration", "resolution")
# Optional settings echoed back: response value, then requested value, then the value sent
ECHO_KEYS = ("seed", "style", "quality", "steps", "cfg_scale", "sampler", "aspect_ratio", "motion_strength")
PASSTHROUGH_KEYS = ("revised_prompt", "image_urls", "source_id", "route", "creativity")


@dataclass
class Extracted:
    media_kind: MediaKind
    urls: List[str] = field(default_factory=list)
    thumbnail_url: Optional[str] = None
    status: Optional[str] = None
    ref: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)


def _unwrap(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = payload.get("data")
    return data if isinstance(data, dict) else payload


def _number(value: Any) -> Any:
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return value
        return int(number) if number.is_integer() else number
    return value


def _generic(payload: Dict[str, Any]) -> Extracted:
    scope = _unwrap(payload)
    kind = MediaKind.VIDEO if scope.get("video_url") else MediaKind.IMAGE
    url = scope.get("video_url") or scope.get("image_url")
    return Extracted(
        media_kind=kind,
        urls=[url] if url else [],
        thumbnail_url=scope.get("thumbnail_url"),
        status=scope.get("status"),
        ref=scope.get("id"),
        fields=scope,
    )


def _openai(payload: Dict[str, Any]) -> Extracted:
    items = payload.get("data") if isinstance(payload.get("data"), list) else []
    urls = [item.get("url") or to_data_uri(item["b64_json"]) for item in items if item.get("url") or item.get("b64_json")]
    fields = {"revised_prompt": items[0].get("revised_prompt")} if items else {}
    return Extracted(media_kind=MediaKind.IMAGE, urls=urls, fields=fields)


def _midjourney(payload: Dict[str, Any]) -> Extracted:
    images = payload.get("images") or []
    urls = [img if isinstance(img, str) else img.get("url") for img in images]
    first = images[0] if images and isinstance(images[0], dict) else {}
    return Extracted(
        media_kind=MediaKind.IMAGE,
        urls=[url for url in urls if url],
        ref=first.get("id"),
        fields={"seed": first.get("seed"), "revised_prompt": first.get("revised_prompt")},
    )


def _stability(payload: Dict[str, Any]) -> Extracted:
    artifacts = payload.get("artifacts") or []
    urls = [to_data_uri(a["base64"]) if a.get("base64") else a.get("url") for a in artifacts]
    first = artifacts[0] if artifacts else {}
    return Extracted(
        media_kind=MediaKind.IMAGE,
        urls=[url for url in urls if url],
        ref=first.get("id"),
        fields={"seed": first.get("seed")},
    )


def _banana(payload: Dict[str, Any]) -> Extracted:
    outputs = payload.get("outputs") or {}
    images = outputs.get("images") or []
    return Extracted(
        media_kind=MediaKind.IMAGE,
        urls=[to_data_uri(img) for img in images if img],
        status=payload.get("status"),
        ref=payload.get("callID"),
        fields={"seed": outputs.get("seed")},
    )


def _flat_video(payload: Dict[str, Any]) -> Extracted:
    scope = _unwrap(payload)
    return Extracted(
        media_kind=MediaKind.VIDEO,
        urls=[scope["video_url"]] if scope.get("video_url") else [],
        thumbnail_url=scope.get("thumbnail_url"),
        status=scope.get("status"),
        ref=scope.get("id") or scope.get("task_id"),
        fields=scope,
    )


def _sora2(payload: Dict[str, Any]) -> Extracted:
    scope = _unwrap(payload)
    output = scope.get("output") if isinstance(scope.get("output"), dict) else {}
    url = output.get("video_url") or output.get("url")
    return Extracted(
        media_kind=MediaKind.VIDEO,
        urls=[url] if url else [],
        thumbnail_url=output.get("thumbnail_url"),
        status=scope.get("status"),
        ref=scope.get("id"),
        fields={**scope, **output},
    )


def _kling(payload: Dict[str, Any]) -> Extracted:
    scope = _unwrap(payload)
    videos = (scope.get("task_result") or {}).get("videos") or []
    first = videos[0] if videos else {}
    return Extracted(
        media_kind=MediaKind.VIDEO,
        urls=[first["url"]] if first.get("url") else [],
        thumbnail_url=first.get("cover_image_url"),
        status=scope.get("task_status"),
        ref=scope.get("task_id"),
        fields={"duration": first.get("duration")},
    )


EXTRACTORS: Dict[str, Callable[[Dict[str, Any]], Extracted]] = {
    "dall-e-3": _openai,
    "midjourney": _midjourney,
    "stable-diffusion": _stability,
    "banana": _banana,
    "kie": _flat_video,
    "veo3": _flat_video,
    "sora2": _sora2,
    "kling": _kling,
}


class ResponseNormalizer:
    """
    Turns whatever a provider returned into one GenerationResult.
    Cost is always recomputed locally; upstream billing fields are ignored.
    normalize() is idempotent: a stored result fed back through
    RawProviderResponse.from_result() normalizes to the same values.
    """

    def extract(self, provider_id: str, payload: Dict[str, Any]) -> Extracted:
        extractor = EXTRACTORS.get(provider_id)
        try:
            extracted = extractor(payload) if extractor else None
        except (AttributeError, KeyError, TypeError) as e:
            raise ProviderError(provider_id, "unexpected response shape", original_error=e) from e
        if extracted is None or not extracted.urls:
            generic = _generic(payload)
            if generic.urls or extracted is None:
                return generic
        return extracted

    def normalize(self, provider_id: str, raw: RawProviderResponse) -> GenerationResult:
        extracted = self.extract(provider_id, raw.payload)
        if not extracted.urls:
            raise ProviderError(provider_id, "completed response carried no media URL")

        fields = extracted.fields

        def resolve(key: str, *fallbacks: Dict[str, Any]) -> Any:
            for source in (fields, *fallbacks):
                value = source.get(key)
                if value is not None:
                    return _number(value) if key in COST_KEYS else value
            return None

        cost_params = {key: resolve(key, raw.params) for key in COST_KEYS}
        model = raw.model or fields.get("model") or raw.params.get("model") or provider_id
        cost_params["model"] = model

        metadata: Dict[str, Any] = {"operation": raw.operation, "route": fields.get("route") or raw.provider}
        for key in PASSTHROUGH_KEYS:
            value = resolve(key, raw.params)
            if key != "route" and value is not None:
                metadata[key] = value
        if len(extracted.urls) > 1:
            metadata["image_urls"] = extracted.urls[1:]
        for key in COST_KEYS:
            if cost_params[key] is not None:
                metadata[key] = cost_params[key]
        for key in ECHO_KEYS:
            value = resolve(key, raw.requested, raw.params)
            if value is not None:
                metadata[key] = value

        url = extracted.urls[0]
        result = GenerationResult(
            media_kind=extracted.media_kind,
            image_url=url if extracted.media_kind == MediaKind.IMAGE else None,
            video_url=url if extracted.media_kind == MediaKind.VIDEO else None,
            thumbnail_url=extracted.thumbnail_url,
            status=GenerationStatus.from_upstream(extracted.status),
            prompt=raw.prompt or fields.get("prompt") or "",
            negative_prompt=raw.negative_prompt,
            provider=provider_id,
            model=model,
            cost=calculate_cost(provider_id, raw.operation, cost_params),
            metadata=metadata,
            provider_ref=raw.provider_ref or extracted.ref,
        )
        logger.debug("response_normalized", provider=provider_id, model=model, cost=result.cost)
        return result

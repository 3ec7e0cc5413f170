"""
Local, deterministic cost estimates per provider.

Costs are a function of (dimensions | duration, resolution, model, operation) only;
whatever billing fields a provider returns are never consulted.
"""

from typing import Any, Callable, Dict, Mapping, Optional

from core.exceptions import ConfigurationError

REFERENCE_AREA = 1024 * 1024
WIDE_SIZES = {(1792, 1024), (1024, 1792)}

DALLE3_BASE = 0.04
MIDJOURNEY_BASE = 0.03
STABLE_DIFFUSION_BASE = {"generate": 0.01, "edit": 0.015, "upscale": 0.02}
BANANA_BASE = 0.02
BANANA_OPERATION_MULTIPLIER = {"generate": 1.0, "edit": 1.2, "upscale": 1.5}

VIDEO_RATE_PER_SECOND = 0.08
RESOLUTION_MULTIPLIERS = {"720p": 1.0, "1080p": 1.5, "4k": 3.0}
VIDEO_MODEL_MULTIPLIERS = {"veo3": 1.2, "sora2": 1.5, "kling": 1.0}

CostFunction = Callable[[str, Mapping[str, Any]], float]


def _area_multiplier(params: Mapping[str, Any], default: int = 1024) -> float:
    width = params.get("width") or default
    height = params.get("height") or default
    return (width * height) / REFERENCE_AREA


def dalle3_cost(operation: str, params: Mapping[str, Any]) -> float:
    size = (params.get("width") or 1024, params.get("height") or 1024)
    size_multiplier = 1.5 if size in WIDE_SIZES else 1.0
    samples = params.get("samples") or 1
    if operation == "edit":
        return DALLE3_BASE * size_multiplier * samples
    hd_multiplier = 2.0 if params.get("quality") == "hd" else 1.0
    return DALLE3_BASE * hd_multiplier * size_multiplier * samples


def midjourney_cost(operation: str, params: Mapping[str, Any]) -> float:
    quality_multiplier = 1.5 if params.get("quality") == "hd" else 1.0
    return MIDJOURNEY_BASE * _area_multiplier(params) * quality_multiplier * (params.get("samples") or 1)


def stable_diffusion_cost(operation: str, params: Mapping[str, Any]) -> float:
    if operation == "upscale":
        return STABLE_DIFFUSION_BASE["upscale"] * _area_multiplier(params, default=2048)
    steps_multiplier = (params.get("steps") or 20) / 20
    return (
        STABLE_DIFFUSION_BASE.get(operation, STABLE_DIFFUSION_BASE["generate"])
        * _area_multiplier(params)
        * steps_multiplier
        * (params.get("samples") or 1)
    )


def banana_cost(operation: str, params: Mapping[str, Any]) -> float:
    model = params.get("model") or ""
    if "upscale" in model:
        operation = "upscale"
    elif "edit" in model:
        operation = "edit"
    default_side = 2048 if operation == "upscale" else 1024
    return (
        BANANA_BASE
        * _area_multiplier(params, default=default_side)
        * BANANA_OPERATION_MULTIPLIER.get(operation, 1.0)
        * (params.get("samples") or 1)
    )


def video_family(model: Optional[str]) -> Optional[str]:
    """Maps a model name onto the family used for pricing (sora-2 -> sora2)."""
    if not model:
        return None
    name = model.lower()
    for family in VIDEO_MODEL_MULTIPLIERS:
        if name.startswith(family[:4]):
            return family
    return None


def video_cost(duration: float, resolution: Optional[str], family: Optional[str]) -> float:
    return (
        VIDEO_RATE_PER_SECOND
        * duration
        * RESOLUTION_MULTIPLIERS.get(resolution or "", 1.0)
        * VIDEO_MODEL_MULTIPLIERS.get(family or "", 1.0)
    )


def _video_cost_for(provider_id: str) -> CostFunction:
    def calculate(operation: str, params: Mapping[str, Any]) -> float:
        family = provider_id if provider_id in VIDEO_MODEL_MULTIPLIERS else video_family(params.get("model"))
        return video_cost(params.get("duration") or 0, params.get("resolution"), family)

    return calculate


COST_FUNCTIONS: Dict[str, CostFunction] = {
    "dall-e-3": dalle3_cost,
    "midjourney": midjourney_cost,
    "stable-diffusion": stable_diffusion_cost,
    "banana": banana_cost,
    "kie": _video_cost_for("kie"),
    "veo3": _video_cost_for("veo3"),
    "sora2": _video_cost_for("sora2"),
    "kling": _video_cost_for("kling"),
}


def calculate_cost(provider_id: str, operation: str, params: Mapping[str, Any]) -> float:
    try:
        cost_fn = COST_FUNCTIONS[provider_id]
    except KeyError:
        raise ConfigurationError(f"No cost model for provider: {provider_id}")
    return round(cost_fn(operation, params), 6)

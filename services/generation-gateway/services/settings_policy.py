from typing import Any, Dict, List, Mapping, Tuple

import structlog
from core.exceptions import ValidationException
from domain.models import Capabilities

logger = structlog.get_logger()

# setting name -> Capabilities field listing its allowed values
CATEGORICAL_SETTINGS = {
    "quality": "qualities",
    "style": "styles",
    "resolution": "supported_resolutions",
    "aspect_ratio": "supported_aspect_ratios",
    "size": "supported_sizes",
}

IMAGE_BOUNDS = {
    "width": (256, 2048),
    "height": (256, 2048),
    "steps": (1, 150),
    "cfg_scale": (1, 20),
    "samples": (1, 4),
    "creativity": (0, 1),
}


def video_bounds(max_duration: int) -> Dict[str, Tuple[float, float]]:
    return {"duration": (1, max_duration), "motion_strength": (0, 1)}


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def apply_bounds(provider_id: str, settings: Mapping[str, Any], capabilities: Capabilities) -> Dict[str, Any]:
    """
    Enforces a provider's declared bounds before dispatch.
    Numeric settings are clamped into range; categorical settings the provider
    does not list are rejected.
    """
    result = dict(settings)

    for key, (lo, hi) in capabilities.bounds.items():
        value = result.get(key)
        if value is None:
            continue
        bounded = clamp(value, lo, hi)
        if isinstance(value, int) and not isinstance(value, bool):
            bounded = int(bounded)
        if bounded != value:
            logger.warning("settings_clamped", provider=provider_id, setting=key, requested=value, applied=bounded)
            result[key] = bounded

    for key, capability_field in CATEGORICAL_SETTINGS.items():
        value = result.get(key)
        allowed: List[str] = getattr(capabilities, capability_field)
        if value is None or not allowed:
            continue
        if value not in allowed:
            raise ValidationException(
                f"{provider_id} does not support {key}={value!r}; expected one of {', '.join(allowed)}"
            )

    return result

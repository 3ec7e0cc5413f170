from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Generic, List, Literal, Optional, Tuple, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Accepts camelCase (UI) and snake_case (Python) field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Standard Error Struct
class ErrorDetails(BaseModel):
    code: str
    message: str
    provider: Optional[str] = None
    trace_id: Optional[str] = None


class APIResponse(BaseModel, Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[ErrorDetails] = None


# --- Enums ---


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class GenerationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_upstream(cls, status: Optional[str]) -> "GenerationStatus":
        """Maps a provider status string; a missing status means the provider answered synchronously."""
        if not status:
            return cls.COMPLETED
        return _STATUS_BY_STATE[JobState.from_upstream(status)]


class JobState(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @classmethod
    def from_upstream(cls, status: Optional[str]) -> "JobState":
        if not status:
            return cls.UNKNOWN
        return _UPSTREAM_STATES.get(status.strip().lower().replace("-", "_"), cls.UNKNOWN)


_UPSTREAM_STATES = {
    "queued": JobState.QUEUED,
    "pending": JobState.QUEUED,
    "submitted": JobState.QUEUED,
    "in_queue": JobState.QUEUED,
    "waiting": JobState.QUEUED,
    "processing": JobState.PROCESSING,
    "running": JobState.PROCESSING,
    "in_progress": JobState.PROCESSING,
    "generating": JobState.PROCESSING,
    "completed": JobState.SUCCEEDED,
    "complete": JobState.SUCCEEDED,
    "succeeded": JobState.SUCCEEDED,
    "succeed": JobState.SUCCEEDED,
    "success": JobState.SUCCEEDED,
    "done": JobState.SUCCEEDED,
    "failed": JobState.FAILED,
    "failure": JobState.FAILED,
    "error": JobState.FAILED,
    "rejected": JobState.FAILED,
    "cancelled": JobState.CANCELLED,
    "canceled": JobState.CANCELLED,
}

_STATUS_BY_STATE = {
    JobState.QUEUED: GenerationStatus.PENDING,
    JobState.PROCESSING: GenerationStatus.PROCESSING,
    JobState.SUCCEEDED: GenerationStatus.COMPLETED,
    JobState.FAILED: GenerationStatus.FAILED,
    JobState.CANCELLED: GenerationStatus.FAILED,
    JobState.UNKNOWN: GenerationStatus.PROCESSING,
}


# --- Provider Settings ---


class ImageSettings(CamelModel):
    model_config = ConfigDict(frozen=True)

    width: Optional[int] = None
    height: Optional[int] = None
    quality: Optional[str] = None
    style: Optional[str] = None
    steps: Optional[int] = None
    cfg_scale: Optional[float] = None
    seed: Optional[int] = None
    samples: Optional[int] = None
    sampler: Optional[str] = None
    style_preset: Optional[str] = None


class VideoSettings(CamelModel):
    model_config = ConfigDict(frozen=True)

    duration: Optional[int] = None
    resolution: Optional[str] = None
    style: Optional[str] = None
    aspect_ratio: Optional[str] = None
    motion_strength: Optional[float] = None
    seed: Optional[int] = None


# --- Requests (immutable once submitted) ---


class GenerationRequest(CamelModel):
    model_config = ConfigDict(frozen=True)

    media_kind: ClassVar[MediaKind]

    prompt: str = Field(..., min_length=1, max_length=4000)
    negative_prompt: Optional[str] = Field(default=None, max_length=4000)
    provider: str
    model: Optional[str] = None

    # Persisted alongside the result, never sent upstream
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    is_public: bool = False

    def requested_settings(self) -> Dict[str, Any]:
        """Settings the caller actually set, in snake_case."""
        settings = getattr(self, "settings", None)
        return settings.model_dump(exclude_none=True) if settings is not None else {}


class ImageGenerationRequest(GenerationRequest):
    media_kind: ClassVar[MediaKind] = MediaKind.IMAGE

    settings: ImageSettings = Field(default_factory=ImageSettings)


class VideoGenerationRequest(GenerationRequest):
    media_kind: ClassVar[MediaKind] = MediaKind.VIDEO

    settings: VideoSettings = Field(default_factory=VideoSettings)


class ImageEditRequest(CamelModel):
    prompt: str = Field(..., min_length=1, max_length=4000)
    provider: Optional[str] = None
    negative_prompt: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    size: Optional[str] = None
    steps: Optional[int] = None
    cfg_scale: Optional[float] = None
    seed: Optional[int] = None
    samples: Optional[int] = None
    sampler: Optional[str] = None
    mask_image: Optional[str] = None


class VideoEditRequest(CamelModel):
    prompt: str = Field(..., min_length=1, max_length=4000)
    strength: Optional[float] = Field(default=None, ge=0, le=1)
    guidance_scale: Optional[float] = None
    seed: Optional[int] = None


class UpscaleOptions(CamelModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    creativity: Optional[float] = Field(default=None, ge=0, le=1)
    sampler: Optional[str] = None


class ProcessImageOptions(CamelModel):
    width: Optional[int] = Field(default=None, gt=0, le=8192)
    height: Optional[int] = Field(default=None, gt=0, le=8192)
    fit: Literal["cover", "contain", "fill"] = "cover"
    format: Literal["png", "jpeg", "webp"] = "png"
    quality: int = Field(default=90, ge=1, le=100)
    optimize: bool = True


class VideoUploadRequest(CamelModel):
    source: str = Field(..., min_length=1)


# --- Internal, ephemeral provider shapes ---


@dataclass(frozen=True)
class MediaTarget:
    """The existing generation an edit or upscale works on."""

    source_url: Optional[str] = None
    provider_ref: Optional[str] = None
    model: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[int] = None
    resolution: Optional[str] = None


@dataclass(frozen=True)
class JobHandle:
    """Reference to an in-flight provider task. Lives only for one poll loop."""

    task_id: str
    provider: str
    media_kind: MediaKind
    submitted_at: datetime = field(default_factory=utcnow)
    model: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RawProviderResponse:
    provider: str
    payload: Dict[str, Any]
    model: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    provider_ref: Optional[str] = None

    # Normalization context, attached by the router
    operation: str = "generate"
    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    requested: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: "GenerationResult") -> "RawProviderResponse":
        return cls(
            provider=result.provider,
            payload=result.to_raw(),
            model=result.model,
            provider_ref=result.provider_ref,
            operation=result.metadata.get("operation", "generate"),
            prompt=result.prompt,
            negative_prompt=result.negative_prompt,
        )


@dataclass
class PollStatus:
    state: JobState
    upstream_status: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PollPolicy:
    interval: float
    max_attempts: int


# --- Results ---


class GenerationResult(CamelModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    media_kind: MediaKind
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    status: GenerationStatus
    prompt: str
    negative_prompt: Optional[str] = None
    provider: str
    model: str
    cost: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    # Owned by the persistence layer
    provider_ref: Optional[str] = None
    user_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    is_public: bool = False
    is_favorite: bool = False
    error: Optional[str] = None
    processing_time: Optional[float] = None

    def to_raw(self) -> Dict[str, Any]:
        """Serializes back into the flat shape a provider could have returned."""
        raw: Dict[str, Any] = {
            key: value for key, value in self.metadata.items() if not isinstance(value, dict)
        }
        raw.update(
            {
                "id": self.provider_ref,
                "status": self.status.value,
                "prompt": self.prompt,
                "model": self.model,
                "thumbnail_url": self.thumbnail_url,
            }
        )
        if self.media_kind == MediaKind.IMAGE:
            raw["image_url"] = self.image_url
        else:
            raw["video_url"] = self.video_url
        return raw


class Capabilities(CamelModel):
    media_kind: MediaKind
    models: List[str]
    max_resolution: Optional[str] = None
    max_duration: Optional[int] = None
    supported_sizes: List[str] = Field(default_factory=list)
    qualities: List[str] = Field(default_factory=list)
    styles: List[str] = Field(default_factory=list)
    supported_resolutions: List[str] = Field(default_factory=list)
    supported_aspect_ratios: List[str] = Field(default_factory=list)
    supports_editing: bool = False
    supports_upscaling: bool = False
    max_prompt_length: int = 4000
    is_async: bool = False
    is_aggregator: bool = False
    bounds: Dict[str, Tuple[float, float]] = Field(default_factory=dict)


# --- Listing ---


class GenerationQuery(CamelModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    user_id: Optional[str] = None
    media_kind: Optional[MediaKind] = None
    provider: Optional[str] = None
    status: Optional[GenerationStatus] = None
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    is_public: Optional[bool] = None
    is_favorite: Optional[bool] = None
    search: Optional[str] = None
    sort_order: Literal["asc", "desc"] = "desc"


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class Page(CamelModel, Generic[T]):
    data: List[T]
    pagination: Pagination


# --- Background jobs ---


class JobSubmission(CamelModel):
    media_kind: MediaKind
    image: Optional[ImageGenerationRequest] = None
    video: Optional[VideoGenerationRequest] = None


class JobStatus(CamelModel):
    job_id: str
    status: GenerationStatus
    result: Optional[GenerationResult] = None
    error: Optional[str] = None

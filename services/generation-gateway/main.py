import base64
import binascii
from contextlib import asynccontextmanager
from typing import Annotated, Optional

import structlog
import taskiq_fastapi

# Internal Imports
from core.cancellation import run_until_disconnect
from core.config import settings
from core.dependencies import (
    close_resources,
    get_chat_service,
    get_image_service,
    get_registry,
    get_video_service,
    get_voice_service,
    init_repository,
)
from core.exceptions import (
    ConfigurationError,
    GatewayError,
    GenerationFailedError,
    GenerationNotFoundError,
    GenerationTimeoutError,
    JobNotFoundError,
    PollCancelledError,
    ProviderError,
    ValidationException,
)
from core.logging import configure_logging
from core.taskiq import broker
from core.telemetry import setup_telemetry
from domain.conversation import (
    ChatRequest,
    Language,
    LanguageDetectionRequest,
    SpeechToTextRequest,
    TextToSpeechRequest,
)
from domain.models import (
    APIResponse,
    ErrorDetails,
    GenerationQuery,
    ImageEditRequest,
    ImageGenerationRequest,
    JobSubmission,
    MediaKind,
    ProcessImageOptions,
    UpscaleOptions,
    VideoEditRequest,
    VideoGenerationRequest,
    VideoSettings,
    VideoUploadRequest,
)
from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.responses import JSONResponse

# MCP Imports
from fastmcp import FastMCP
from opentelemetry import trace
from services.chat_service import ChatService
from services.generation_service import ImageGenerationService, VideoGenerationService
from services.job_service import JobService
from services.voice_service import VoiceService

# 1. Configure Logging
configure_logging(json_logs=(settings.ENV == "production"), log_level=settings.LOG_LEVEL)
logger = structlog.get_logger()

UserId = Annotated[Optional[str], Header(alias="X-User-Id")]

# 2. MCP Server Setup
mcp = FastMCP(settings.APP_NAME)


@mcp.tool(name="generate_image")
async def generate_image_tool(prompt: str, provider: str = "dall-e-3", model: Optional[str] = None) -> str:
    """
    Generates an image from a text prompt. Returns the image URL.
    """
    logger.info("mcp_tool_called", tool="generate_image", provider=provider)
    result = await get_image_service().generate_image(
        ImageGenerationRequest(prompt=prompt, provider=provider, model=model)
    )
    return result.image_url or ""


@mcp.tool(name="generate_video")
async def generate_video_tool(
    prompt: str, provider: str = "kie", model: Optional[str] = None, duration: Optional[int] = None
) -> str:
    """
    Generates a video from a text prompt. Waits for the provider to finish and returns the video URL.
    """
    logger.info("mcp_tool_called", tool="generate_video", provider=provider, model=model)
    result = await get_video_service().generate_video(
        VideoGenerationRequest(prompt=prompt, provider=provider, model=model, settings=VideoSettings(duration=duration))
    )
    return result.video_url or ""


# 3. Lifespan (Startup/Shutdown)
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("startup_initiated", env=settings.ENV)
    if settings.TELEMETRY_ENABLED:
        setup_telemetry()

    # Initialize global services
    repository = await init_repository()
    app.state.image_service = get_image_service()
    app.state.video_service = get_video_service()
    app.state.job_service = JobService(get_registry(), repository)
    app.state.chat_service = get_chat_service()
    app.state.voice_service = get_voice_service()

    yield

    logger.info("shutdown_initiated")
    await close_resources()


# 4. Create Main App
app = FastAPI(title=settings.APP_NAME, lifespan=lifespan, version="1.0.0")

taskiq_fastapi.init(broker, app)  # Taskiq-FastAPI Integration


# 5. Exception Handlers
ERROR_STATUS = (
    (GenerationNotFoundError, 404),
    (JobNotFoundError, 404),
    (ValidationException, 422),  # includes MediaSourceError
    (ConfigurationError, 400),
    (GenerationTimeoutError, 504),
    (PollCancelledError, 499),
    (ProviderError, 502),
    (GenerationFailedError, 502),
)


def _trace_id() -> Optional[str]:
    ctx = trace.get_current_span().get_span_context()
    return format(ctx.trace_id, "032x") if ctx.is_valid else None


def error_response(status_code: int, code: str, message: str, provider: Optional[str] = None) -> JSONResponse:
    body = APIResponse(
        success=False,
        error=ErrorDetails(code=code, message=message, provider=provider, trace_id=_trace_id()),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    status_code = next((status for cls, status in ERROR_STATUS if isinstance(exc, cls)), 500)
    log = logger.warning if status_code < 500 else logger.error
    log("request_failed", code=exc.code, error=exc.message, path=request.url.path, status_code=status_code)
    return error_response(status_code, exc.code, exc.message, getattr(exc, "provider", None))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception", error=str(exc), path=request.url.path)
    return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred.")


# 6. Mount MCP
app.mount("/mcp", mcp.http_app())


def _image_service(request: Request) -> ImageGenerationService:
    return request.app.state.image_service


def _video_service(request: Request) -> VideoGenerationService:
    return request.app.state.video_service


def _chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def _voice_service(request: Request) -> VoiceService:
    return request.app.state.voice_service


def _decode_audio(encoded: str) -> bytes:
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationException("audioBase64 is not valid base64", original_error=e)


# 7. REST Endpoints

# --- Images ---


@app.post("/api/v1/images/generate")
async def generate_image_endpoint(request: Request, body: ImageGenerationRequest, user_id: UserId = None):
    service = _image_service(request)
    result = await run_until_disconnect(request, lambda cancel: service.generate_image(body, user_id, cancel))
    return APIResponse(success=True, data=result)


@app.post("/api/v1/images/{generation_id}/edit")
async def edit_image_endpoint(request: Request, generation_id: str, body: ImageEditRequest, user_id: UserId = None):
    service = _image_service(request)
    result = await run_until_disconnect(request, lambda cancel: service.edit_image(generation_id, body, user_id, cancel))
    return APIResponse(success=True, data=result)


@app.post("/api/v1/images/{generation_id}/upscale")
async def upscale_image_endpoint(request: Request, generation_id: str, body: UpscaleOptions, user_id: UserId = None):
    service = _image_service(request)
    result = await run_until_disconnect(
        request, lambda cancel: service.upscale_image(generation_id, body, user_id, cancel)
    )
    return APIResponse(success=True, data=result)


@app.post("/api/v1/images/{generation_id}/process")
async def process_image_endpoint(request: Request, generation_id: str, body: ProcessImageOptions):
    processed = await _image_service(request).process_image(generation_id, body)
    return APIResponse(success=True, data=processed)


@app.get("/api/v1/images")
async def list_images_endpoint(request: Request, query: Annotated[GenerationQuery, Query()]):
    return APIResponse(success=True, data=await _image_service(request).get_generations(query))


@app.get("/api/v1/images/providers/{provider}/capabilities")
async def image_capabilities_endpoint(request: Request, provider: str):
    return APIResponse(success=True, data=_image_service(request).get_capabilities(provider))


@app.get("/api/v1/images/{generation_id}")
async def get_image_endpoint(request: Request, generation_id: str):
    return APIResponse(success=True, data=await _image_service(request).get_generation(generation_id))


@app.delete("/api/v1/images/{generation_id}")
async def delete_image_endpoint(request: Request, generation_id: str):
    await _image_service(request).delete_generation(generation_id)
    return APIResponse(success=True, data={"id": generation_id})


@app.post("/api/v1/images/{generation_id}/favorite")
async def favorite_image_endpoint(request: Request, generation_id: str):
    favorite = await _image_service(request).toggle_favorite(generation_id)
    return APIResponse(success=True, data={"id": generation_id, "isFavorite": favorite})


# --- Videos ---


@app.post("/api/v1/videos/generate")
async def generate_video_endpoint(request: Request, body: VideoGenerationRequest, user_id: UserId = None):
    service = _video_service(request)
    result = await run_until_disconnect(request, lambda cancel: service.generate_video(body, user_id, cancel))
    return APIResponse(success=True, data=result)


@app.post("/api/v1/videos/upload")
async def upload_video_endpoint(request: Request, body: VideoUploadRequest):
    return APIResponse(success=True, data=await _video_service(request).upload_video(body.source))


@app.get("/api/v1/videos/models")
async def video_models_endpoint(request: Request):
    return APIResponse(success=True, data=await _video_service(request).get_available_models())


@app.post("/api/v1/videos/{generation_id}/edit")
async def edit_video_endpoint(request: Request, generation_id: str, body: VideoEditRequest, user_id: UserId = None):
    service = _video_service(request)
    result = await run_until_disconnect(request, lambda cancel: service.edit_video(generation_id, body, user_id, cancel))
    return APIResponse(success=True, data=result)


@app.get("/api/v1/videos")
async def list_videos_endpoint(request: Request, query: Annotated[GenerationQuery, Query()]):
    return APIResponse(success=True, data=await _video_service(request).get_generations(query))


@app.get("/api/v1/videos/providers/{provider}/capabilities")
async def video_capabilities_endpoint(request: Request, provider: str):
    return APIResponse(success=True, data=_video_service(request).get_capabilities(provider))


@app.get("/api/v1/videos/{generation_id}")
async def get_video_endpoint(request: Request, generation_id: str):
    return APIResponse(success=True, data=await _video_service(request).get_generation(generation_id))


@app.delete("/api/v1/videos/{generation_id}")
async def delete_video_endpoint(request: Request, generation_id: str):
    await _video_service(request).delete_generation(generation_id)
    return APIResponse(success=True, data={"id": generation_id})


@app.post("/api/v1/videos/{generation_id}/favorite")
async def favorite_video_endpoint(request: Request, generation_id: str):
    favorite = await _video_service(request).toggle_favorite(generation_id)
    return APIResponse(success=True, data={"id": generation_id, "isFavorite": favorite})


# --- Background Jobs ---


@app.post("/api/v1/jobs", status_code=202)
async def submit_job_endpoint(request: Request, body: JobSubmission, user_id: UserId = None):
    """
    Submit a job. The client polls the status URL until it completes.
    """
    service: JobService = request.app.state.job_service
    status = await service.submit_job(body, user_id)
    interval = settings.VIDEO_POLL_INTERVAL if body.media_kind == MediaKind.VIDEO else settings.IMAGE_POLL_INTERVAL
    return APIResponse(
        success=True,
        data={
            **status.model_dump(mode="json", by_alias=True),
            "statusUrl": f"/api/v1/jobs/{status.job_id}",
            "pollingInterval": interval,
        },
    )


@app.get("/api/v1/jobs/{job_id}")
async def job_status_endpoint(request: Request, job_id: str):
    service: JobService = request.app.state.job_service
    return APIResponse(success=True, data=await service.get_job_status(job_id))


# --- Chat ---


@app.post("/api/v1/chat/completions")
async def chat_completion_endpoint(request: Request, body: ChatRequest):
    return APIResponse(success=True, data=await _chat_service(request).complete(body))


@app.post("/api/v1/chat/detect-language")
async def detect_text_language_endpoint(request: Request, body: LanguageDetectionRequest):
    service = _chat_service(request)
    return APIResponse(
        success=True,
        data={"language": service.detect_language(body.text).value, "isRtl": service.is_text_rtl(body.text)},
    )


@app.get("/api/v1/chat/providers/{provider}/capabilities")
async def chat_capabilities_endpoint(request: Request, provider: str):
    return APIResponse(success=True, data=_chat_service(request).get_capabilities(provider))


# --- Voice ---


@app.post("/api/v1/voice/tts")
async def text_to_speech_endpoint(request: Request, body: TextToSpeechRequest):
    speech = await _voice_service(request).text_to_speech(body.text, body.language, body.voice_id)
    return Response(
        content=speech.audio,
        media_type=speech.content_type,
        headers={"X-Voice": speech.voice, "Content-Language": speech.language.value},
    )


@app.post("/api/v1/voice/stt")
async def speech_to_text_endpoint(request: Request, body: SpeechToTextRequest):
    audio = _decode_audio(body.audio_base64)
    return APIResponse(success=True, data=await _voice_service(request).speech_to_text(audio, body.language))


@app.post("/api/v1/voice/detect-language")
async def detect_speech_language_endpoint(request: Request, body: SpeechToTextRequest):
    audio = _decode_audio(body.audio_base64)
    return APIResponse(success=True, data=await _voice_service(request).detect_language(audio))


@app.get("/api/v1/voice/voices")
async def list_voices_endpoint(request: Request, language: Optional[Language] = None):
    return APIResponse(success=True, data=await _voice_service(request).list_voices(language))


@app.get("/api/v1/voice/voices/{voice_id}")
async def get_voice_endpoint(request: Request, voice_id: str):
    return APIResponse(success=True, data=await _voice_service(request).get_voice(voice_id))


# --- Health Check ---
@app.get("/health")
def health_check():
    return {"status": "ok", "env": settings.ENV}

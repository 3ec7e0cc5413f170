from typing import Any, Dict, Optional

import structlog
from core.dependencies import get_image_service, get_video_service
from core.exceptions import GatewayError
from core.taskiq import broker
from domain.models import ImageGenerationRequest, VideoGenerationRequest
from services.generation_service import ImageGenerationService, VideoGenerationService
from taskiq import TaskiqDepends

logger = structlog.get_logger()


@broker.task(task_name="generate_image")
async def generate_image_task(
    job_id: str,
    request: Dict[str, Any],
    user_id: Optional[str] = None,
    service: ImageGenerationService = TaskiqDepends(get_image_service),
) -> dict:
    """
    Background image generation. The service persists the record under job_id,
    completed or failed, so the status endpoint only ever reads the repository.
    """
    logger.info("worker_task_started", job_id=job_id, media_kind="image")
    try:
        result = await service.generate_image(
            ImageGenerationRequest.model_validate(request), user_id=user_id, generation_id=job_id
        )
    except GatewayError as e:
        logger.error("worker_task_failed", job_id=job_id, error=e.message)
        # Re-raising lets Taskiq mark the task as failed
        raise

    logger.info("worker_task_success", job_id=job_id, url=result.image_url)
    return {"status": result.status.value, "url": result.image_url}


@broker.task(task_name="generate_video")
async def generate_video_task(
    job_id: str,
    request: Dict[str, Any],
    user_id: Optional[str] = None,
    service: VideoGenerationService = TaskiqDepends(get_video_service),
) -> dict:
    logger.info("worker_task_started", job_id=job_id, media_kind="video")
    try:
        result = await service.generate_video(
            VideoGenerationRequest.model_validate(request), user_id=user_id, generation_id=job_id
        )
    except GatewayError as e:
        logger.error("worker_task_failed", job_id=job_id, error=e.message)
        raise

    logger.info("worker_task_success", job_id=job_id, url=result.video_url)
    return {"status": result.status.value, "url": result.video_url}

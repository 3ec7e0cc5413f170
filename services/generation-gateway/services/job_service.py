from typing import Optional
from uuid import uuid4

import structlog
from core.exceptions import JobNotFoundError, ValidationException
from core.taskiq import broker
from domain.interfaces import GenerationRepository
from domain.models import GenerationResult, GenerationStatus, JobStatus, JobSubmission, MediaKind
from services.generation_service import default_model
from services.registry import ProviderRegistry

# Import the task definitions directly
from worker import generate_image_task, generate_video_task

logger = structlog.get_logger()


class JobService:
    """
    Background generation. Works the same for Local (Memory) and Production (Redis)
    because the broker handles the infrastructure; the job's state lives in the
    generations table under id == job_id.
    """

    def __init__(self, registry: ProviderRegistry, repository: GenerationRepository):
        self.registry = registry
        self.repository = repository

    async def submit_job(self, submission: JobSubmission, user_id: Optional[str] = None) -> JobStatus:
        request = submission.image if submission.media_kind == MediaKind.IMAGE else submission.video
        if request is None:
            raise ValidationException(f"A {submission.media_kind.value} request is required for this job")

        # 1. Generate a consistent Business ID for the job
        job_id = uuid4().hex

        # 2. Record it as pending so status reads never race the worker
        pending = GenerationResult(
            id=job_id,
            media_kind=submission.media_kind,
            status=GenerationStatus.PENDING,
            prompt=request.prompt,
            negative_prompt=request.negative_prompt,
            provider=request.provider,
            model=default_model(self.registry, submission.media_kind, request),
            user_id=user_id,
            tags=list(request.tags),
            category=request.category,
            is_public=request.is_public,
            metadata={"operation": "generate"},
        )
        await self.repository.upsert(pending)

        # 3. Dispatch Task, with task_id=job_id so it can be tracked later
        task = generate_image_task if submission.media_kind == MediaKind.IMAGE else generate_video_task
        dispatched = await task.kicker().with_task_id(job_id).kiq(
            job_id=job_id, request=request.model_dump(mode="json"), user_id=user_id
        )

        logger.info(
            "job_dispatched",
            job_id=job_id,
            task_id=dispatched.task_id,
            media_kind=submission.media_kind.value,
            broker=broker.__class__.__name__,  # "InMemoryBroker" or "ListQueueBroker"
        )
        return JobStatus(job_id=job_id, status=GenerationStatus.PENDING)

    async def get_job_status(self, job_id: str) -> JobStatus:
        record = await self.repository.get(job_id)
        if record is None:
            raise JobNotFoundError(f"Job not found: {job_id}")

        return JobStatus(
            job_id=job_id,
            status=record.status,
            result=record if record.status == GenerationStatus.COMPLETED else None,
            error=record.error,
        )

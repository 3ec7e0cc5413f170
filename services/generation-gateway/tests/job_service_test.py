from unittest.mock import AsyncMock, MagicMock

import pytest

from connections.openai_images import DallE3Adapter
from core.exceptions import JobNotFoundError, ValidationException
from domain.models import (
    GenerationStatus,
    ImageGenerationRequest,
    JobSubmission,
    MediaKind,
)
from repository.in_memory_repository import InMemoryGenerationRepository
from services import job_service
from services.job_service import JobService
from services.registry import ProviderRegistry


@pytest.fixture
def repository():
    return InMemoryGenerationRepository()


@pytest.fixture
def service(client, repository):
    return JobService(ProviderRegistry([DallE3Adapter(client, "sk-test", "https://openai.test")]), repository)


@pytest.fixture
def image_task(monkeypatch):
    task = MagicMock()
    kicker = task.kicker.return_value.with_task_id.return_value
    kicker.kiq = AsyncMock(return_value=MagicMock(task_id="ignored"))
    monkeypatch.setattr(job_service, "generate_image_task", task)
    return task


@pytest.mark.asyncio
async def test_submit_records_pending_job_and_dispatches(service, repository, image_task):
    submission = JobSubmission(
        media_kind=MediaKind.IMAGE, image=ImageGenerationRequest(prompt="a kite", provider="dall-e-3", tags=["sky"])
    )

    status = await service.submit_job(submission, user_id="user-1")

    assert status.status == GenerationStatus.PENDING
    pending = await repository.get(status.job_id)
    assert pending.status == GenerationStatus.PENDING
    assert pending.model == "dall-e-3"
    assert pending.user_id == "user-1"
    assert pending.tags == ["sky"]

    image_task.kicker.return_value.with_task_id.assert_called_once_with(status.job_id)
    kwargs = image_task.kicker.return_value.with_task_id.return_value.kiq.await_args.kwargs
    assert kwargs["job_id"] == status.job_id
    assert kwargs["request"]["prompt"] == "a kite"
    assert kwargs["user_id"] == "user-1"


@pytest.mark.asyncio
async def test_submission_without_a_request_is_rejected(service, repository, image_task):
    with pytest.raises(ValidationException):
        await service.submit_job(JobSubmission(media_kind=MediaKind.VIDEO))

    assert repository.generations == {}
    image_task.kicker.assert_not_called()


@pytest.mark.asyncio
async def test_status_only_carries_result_when_completed(service, repository, image_task):
    status = await service.submit_job(
        JobSubmission(media_kind=MediaKind.IMAGE, image=ImageGenerationRequest(prompt="a kite", provider="dall-e-3"))
    )

    assert (await service.get_job_status(status.job_id)).result is None

    record = repository.generations[status.job_id]
    record.status = GenerationStatus.COMPLETED
    record.image_url = "https://img/kite.png"

    done = await service.get_job_status(status.job_id)
    assert done.status == GenerationStatus.COMPLETED
    assert done.result.image_url == "https://img/kite.png"


@pytest.mark.asyncio
async def test_unknown_job(service):
    with pytest.raises(JobNotFoundError):
        await service.get_job_status("missing")

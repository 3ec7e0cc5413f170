from datetime import datetime, timedelta, timezone

import pytest

from domain.models import GenerationQuery, GenerationResult, GenerationStatus, MediaKind
from repository.in_memory_repository import InMemoryGenerationRepository

EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _result(prompt: str, minutes: int, **overrides) -> GenerationResult:
    fields = dict(
        media_kind=MediaKind.IMAGE,
        status=GenerationStatus.COMPLETED,
        image_url=f"https://img/{minutes}.png",
        prompt=prompt,
        provider="dall-e-3",
        model="dall-e-3",
        created_at=EPOCH + timedelta(minutes=minutes),
    )
    fields.update(overrides)
    return GenerationResult(**fields)


@pytest.mark.asyncio
async def test_upsert_keeps_creation_time_and_favorite_flag():
    repo = InMemoryGenerationRepository()
    original = _result("a red barn", 0)
    repo.seed(original)
    await repo.toggle_favorite(original.id)

    # A later write of the same id, e.g. the worker finishing a pending job
    update = original.model_copy(update={"created_at": EPOCH + timedelta(days=3), "is_favorite": False, "cost": 0.08})
    stored = await repo.upsert(update)

    assert stored.created_at == EPOCH
    assert stored.is_favorite is True
    assert stored.cost == 0.08


@pytest.mark.asyncio
async def test_returned_records_are_copies():
    repo = InMemoryGenerationRepository()
    original = _result("a red barn", 0, tags=["farm"])
    repo.seed(original)

    fetched = await repo.get(original.id)
    fetched.tags.append("mutated")

    assert repo.generations[original.id].tags == ["farm"]


@pytest.mark.asyncio
async def test_list_filters_by_tags_subset_and_search():
    repo = InMemoryGenerationRepository()
    repo.seed(
        _result("A Red Barn at dawn", 0, tags=["farm", "dawn"]),
        _result("a red tractor", 1, tags=["farm"]),
        _result("a blue barn", 2, tags=["dawn"]),
    )

    page = await repo.list(GenerationQuery(tags=["farm", "dawn"]))
    assert [r.prompt for r in page.data] == ["A Red Barn at dawn"]

    page = await repo.list(GenerationQuery(search="red"))
    assert {r.prompt for r in page.data} == {"A Red Barn at dawn", "a red tractor"}


@pytest.mark.asyncio
async def test_list_sorts_and_paginates():
    repo = InMemoryGenerationRepository()
    repo.seed(*[_result(f"prompt {i}", i) for i in range(5)])

    newest = await repo.list(GenerationQuery(limit=2))
    oldest = await repo.list(GenerationQuery(limit=2, page=3, sort_order="asc"))

    assert [r.prompt for r in newest.data] == ["prompt 4", "prompt 3"]
    assert [r.prompt for r in oldest.data] == ["prompt 4"]
    assert newest.pagination.total == 5
    assert newest.pagination.total_pages == 3


@pytest.mark.asyncio
async def test_empty_listing_has_no_pages():
    page = await InMemoryGenerationRepository().list(GenerationQuery(user_id="nobody"))

    assert page.data == []
    assert page.pagination.total_pages == 0


@pytest.mark.asyncio
async def test_delete_and_toggle_on_unknown_id():
    repo = InMemoryGenerationRepository()

    assert await repo.delete("missing") is False
    assert await repo.toggle_favorite("missing") is None

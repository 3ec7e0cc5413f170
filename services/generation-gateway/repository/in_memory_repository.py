import math
from typing import Dict, List, Optional

from domain.interfaces import GenerationRepository
from domain.models import GenerationQuery, GenerationResult, Page, Pagination, utcnow


def paginate(items: List[GenerationResult], query: GenerationQuery, total: int) -> Page[GenerationResult]:
    return Page[GenerationResult](
        data=items,
        pagination=Pagination(
            page=query.page, limit=query.limit, total=total, total_pages=math.ceil(total / query.limit) if total else 0
        ),
    )


class InMemoryGenerationRepository(GenerationRepository):
    def __init__(self):
        # generation_id -> GenerationResult, mimicking the generations table
        self.generations: Dict[str, GenerationResult] = {}

    def seed(self, *results: GenerationResult):
        """
        Helper method to setup test state
        """
        for result in results:
            self.generations[result.id] = result

    async def upsert(self, result: GenerationResult) -> GenerationResult:
        existing = self.generations.get(result.id)
        update = {"updated_at": utcnow()}
        if existing is not None:
            # Mimic the ON CONFLICT clause: creation time and favorite flag survive
            update.update(created_at=existing.created_at, is_favorite=existing.is_favorite)

        stored = result.model_copy(update=update, deep=True)
        self.generations[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get(self, generation_id: str) -> Optional[GenerationResult]:
        stored = self.generations.get(generation_id)
        return stored.model_copy(deep=True) if stored else None

    async def delete(self, generation_id: str) -> bool:
        return self.generations.pop(generation_id, None) is not None

    async def toggle_favorite(self, generation_id: str) -> Optional[bool]:
        stored = self.generations.get(generation_id)
        if stored is None:
            return None
        stored.is_favorite = not stored.is_favorite
        stored.updated_at = utcnow()
        return stored.is_favorite

    def _matches(self, result: GenerationResult, query: GenerationQuery) -> bool:
        if query.user_id is not None and result.user_id != query.user_id:
            return False
        if query.media_kind is not None and result.media_kind != query.media_kind:
            return False
        if query.provider is not None and result.provider != query.provider:
            return False
        if query.status is not None and result.status != query.status:
            return False
        if query.category is not None and result.category != query.category:
            return False
        if query.is_public is not None and result.is_public != query.is_public:
            return False
        if query.is_favorite is not None and result.is_favorite != query.is_favorite:
            return False
        if query.tags and not set(query.tags).issubset(result.tags):
            return False
        if query.search and query.search.lower() not in result.prompt.lower():
            return False
        return True

    async def list(self, query: GenerationQuery) -> Page[GenerationResult]:
        matches = [r for r in self.generations.values() if self._matches(r, query)]
        matches.sort(key=lambda r: r.created_at, reverse=query.sort_order == "desc")

        start = (query.page - 1) * query.limit
        items = [r.model_copy(deep=True) for r in matches[start : start + query.limit]]
        return paginate(items, query, len(matches))

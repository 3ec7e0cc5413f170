import json
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from domain.interfaces import GenerationRepository
from domain.models import GenerationQuery, GenerationResult, Page
from repository.in_memory_repository import paginate

SCHEMA = """
CREATE TABLE IF NOT EXISTS generations (
    id TEXT PRIMARY KEY,
    media_kind TEXT NOT NULL,
    user_id TEXT,
    image_url TEXT,
    video_url TEXT,
    thumbnail_url TEXT,
    status TEXT NOT NULL,
    prompt TEXT NOT NULL,
    negative_prompt TEXT,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    cost DOUBLE PRECISION NOT NULL DEFAULT 0,
    provider_ref TEXT,
    tags TEXT[] NOT NULL DEFAULT '{}',
    category TEXT,
    is_public BOOLEAN NOT NULL DEFAULT FALSE,
    is_favorite BOOLEAN NOT NULL DEFAULT FALSE,
    error TEXT,
    processing_time DOUBLE PRECISION,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS generations_user_created_idx ON generations (user_id, created_at DESC);
CREATE INDEX IF NOT EXISTS generations_provider_idx ON generations (provider);
CREATE INDEX IF NOT EXISTS generations_status_idx ON generations (status);
CREATE INDEX IF NOT EXISTS generations_tags_idx ON generations USING GIN (tags);
CREATE INDEX IF NOT EXISTS generations_category_idx ON generations (category);
CREATE INDEX IF NOT EXISTS generations_public_created_idx ON generations (is_public, created_at DESC);
"""

UPSERT_SQL = """
INSERT INTO generations (
    id, media_kind, user_id, image_url, video_url, thumbnail_url, status, prompt, negative_prompt,
    provider, model, cost, provider_ref, tags, category, is_public, is_favorite, error,
    processing_time, metadata, created_at, updated_at
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $18, $19, $20::jsonb, $21, now())
ON CONFLICT (id) DO UPDATE SET
    image_url = EXCLUDED.image_url,
    video_url = EXCLUDED.video_url,
    thumbnail_url = EXCLUDED.thumbnail_url,
    status = EXCLUDED.status,
    provider = EXCLUDED.provider,
    model = EXCLUDED.model,
    cost = EXCLUDED.cost,
    provider_ref = EXCLUDED.provider_ref,
    tags = EXCLUDED.tags,
    category = EXCLUDED.category,
    is_public = EXCLUDED.is_public,
    error = EXCLUDED.error,
    processing_time = EXCLUDED.processing_time,
    metadata = EXCLUDED.metadata,
    updated_at = now()
RETURNING *
"""


def _to_result(row: Any) -> GenerationResult:
    data = dict(row)
    if isinstance(data.get("metadata"), str):
        data["metadata"] = json.loads(data["metadata"])
    data["tags"] = list(data.get("tags") or [])
    return GenerationResult.model_validate(data)


class PostgresGenerationRepository(GenerationRepository):
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def init_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA)

    async def upsert(self, result: GenerationResult) -> GenerationResult:
        row = await self.pool.fetchrow(
            UPSERT_SQL,
            result.id,
            result.media_kind.value,
            result.user_id,
            result.image_url,
            result.video_url,
            result.thumbnail_url,
            result.status.value,
            result.prompt,
            result.negative_prompt,
            result.provider,
            result.model,
            result.cost,
            result.provider_ref,
            result.tags,
            result.category,
            result.is_public,
            result.is_favorite,
            result.error,
            result.processing_time,
            json.dumps(result.metadata, default=str),
            result.created_at,
        )
        return _to_result(row) if row else result

    async def get(self, generation_id: str) -> Optional[GenerationResult]:
        row = await self.pool.fetchrow("SELECT * FROM generations WHERE id=$1", generation_id)
        return _to_result(row) if row else None

    async def delete(self, generation_id: str) -> bool:
        status = await self.pool.execute("DELETE FROM generations WHERE id=$1", generation_id)
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return status != "DELETE 0"

    async def toggle_favorite(self, generation_id: str) -> Optional[bool]:
        return await self.pool.fetchval(
            "UPDATE generations SET is_favorite = NOT is_favorite, updated_at = now() WHERE id=$1 RETURNING is_favorite",
            generation_id,
        )

    def _where(self, query: GenerationQuery) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        args: List[Any] = []

        def add(sql: str, value: Any):
            args.append(value)
            clauses.append(sql.format(n=len(args)))

        filters: Dict[str, Any] = {
            "user_id": query.user_id,
            "media_kind": query.media_kind.value if query.media_kind else None,
            "provider": query.provider,
            "status": query.status.value if query.status else None,
            "category": query.category,
            "is_public": query.is_public,
            "is_favorite": query.is_favorite,
        }
        for column, value in filters.items():
            if value is not None:
                add(f"{column} = ${{n}}", value)
        if query.tags:
            add("tags @> ${n}::text[]", query.tags)
        if query.search:
            add("prompt ILIKE ${n}", f"%{query.search}%")

        return (" WHERE " + " AND ".join(clauses)) if clauses else "", args

    async def list(self, query: GenerationQuery) -> Page[GenerationResult]:
        where, args = self._where(query)
        order = "ASC" if query.sort_order == "asc" else "DESC"

        total = await self.pool.fetchval(f"SELECT count(*) FROM generations{where}", *args)
        rows = await self.pool.fetch(
            f"SELECT * FROM generations{where} ORDER BY created_at {order} "
            f"LIMIT ${len(args) + 1} OFFSET ${len(args) + 2}",
            *args,
            query.limit,
            (query.page - 1) * query.limit,
        )
        return paginate([_to_result(row) for row in rows], query, total or 0)

"""PostgreSQL research store using asyncpg."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID

import asyncpg

from app.config import settings
from app.errors import StoreError
from app.models.research import (
    AnalysisResult,
    FollowupQuestion,
    ResearchRequest,
    ResearchResult,
    ResearchStatus,
)
from app.services import logger as log_service

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "db" / "schema.sql"

_REQUEST_COLUMNS = "id, user_id, url, title, status, created_at, started_at, completed_at"
_QUESTION_COLUMNS = "id, request_id, question, answer, created_at"
_RESULT_COLUMNS = (
    "id, request_id, summary, left_perspective, center_perspective, "
    "right_perspective, factual_accuracy, sources, created_at"
)


def _coerce_json_list(value: Any) -> list[str]:
    """Normalize JSONB values (returned as text by asyncpg) into a list of strings."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    if isinstance(value, list):
        return [str(item) for item in value]
    return []


def _row_to_request(row: asyncpg.Record) -> ResearchRequest:
    return ResearchRequest(
        id=row["id"],
        user_id=row["user_id"],
        url=row["url"],
        title=row["title"],
        status=ResearchStatus(row["status"]),
        created_at=row["created_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
    )


def _row_to_question(row: asyncpg.Record) -> FollowupQuestion:
    return FollowupQuestion(
        id=row["id"],
        request_id=row["request_id"],
        question=row["question"],
        answer=row["answer"],
        created_at=row["created_at"],
    )


def _row_to_result(row: asyncpg.Record) -> ResearchResult:
    return ResearchResult(
        id=row["id"],
        request_id=row["request_id"],
        summary=row["summary"],
        left_perspective=row["left_perspective"],
        center_perspective=row["center_perspective"],
        right_perspective=row["right_perspective"],
        factual_accuracy=row["factual_accuracy"],
        sources=_coerce_json_list(row["sources"]),
        created_at=row["created_at"],
    )


class PostgresResearchStore:
    """Research store backed by a lazily created asyncpg pool."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if not self._dsn:
            raise StoreError("Database not configured. Set DATABASE_URL in .env")
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self._dsn,
                    min_size=settings.database_pool_min_size,
                    max_size=settings.database_pool_max_size,
                )
            except (OSError, asyncpg.PostgresError) as e:
                log_service.log_db_operation("connect", "research_requests", "error", error=str(e))
                raise StoreError(f"Could not connect to database: {e}") from e
        return self._pool

    async def close(self) -> None:
        """Close the database connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        """Apply the idempotent schema script."""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
        log_service.log_db_operation("ensure_schema", "research_requests", "success")

    # --- Requests ---

    async def create_request(self, user_id: str, url: str, title: str | None = None) -> ResearchRequest:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO research_requests (user_id, url, title, status)
                VALUES ($1, $2, $3, 'pending')
                RETURNING {_REQUEST_COLUMNS}
                """,
                user_id,
                url,
                title,
            )
        log_service.log_db_operation("insert", "research_requests", "success", details=str(row["id"]))
        return _row_to_request(row)

    async def get_request(self, request_id: UUID) -> ResearchRequest | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_REQUEST_COLUMNS} FROM research_requests WHERE id = $1",
                request_id,
            )
        return _row_to_request(row) if row else None

    async def list_requests(self, user_id: str) -> list[ResearchRequest]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_REQUEST_COLUMNS}
                FROM research_requests
                WHERE user_id = $1
                ORDER BY created_at DESC
                """,
                user_id,
            )
        return [_row_to_request(r) for r in rows]

    async def set_title_if_missing(self, request_id: UUID, title: str) -> bool:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE research_requests
                SET title = $2
                WHERE id = $1 AND (title IS NULL OR title = '')
                """,
                request_id,
                title,
            )
        return status == "UPDATE 1"

    async def transition_status(
        self,
        request_id: UUID,
        from_status: ResearchStatus,
        to_status: ResearchStatus,
        *,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> bool:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE research_requests
                SET status = $3,
                    started_at = COALESCE($4, started_at),
                    completed_at = COALESCE($5, completed_at)
                WHERE id = $1 AND status = $2
                """,
                request_id,
                from_status.value,
                to_status.value,
                started_at,
                completed_at,
            )
        changed = status == "UPDATE 1"
        log_service.log_db_operation(
            "transition",
            "research_requests",
            "success" if changed else "skipped",
            details=f"{request_id}: {from_status.value} -> {to_status.value}",
        )
        return changed

    async def complete_with_result(self, request_id: UUID, analysis: AnalysisResult) -> ResearchResult | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                status = await conn.execute(
                    """
                    UPDATE research_requests
                    SET status = 'completed', completed_at = now()
                    WHERE id = $1 AND status = 'in_progress'
                    """,
                    request_id,
                )
                if status != "UPDATE 1":
                    return None
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO research_results (
                        request_id, summary, left_perspective, center_perspective,
                        right_perspective, factual_accuracy, sources
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    RETURNING {_RESULT_COLUMNS}
                    """,
                    request_id,
                    analysis.summary,
                    analysis.left_perspective,
                    analysis.center_perspective,
                    analysis.right_perspective,
                    analysis.factual_accuracy,
                    json.dumps(analysis.sources),
                )
        log_service.log_db_operation("insert", "research_results", "success", details=str(request_id))
        return _row_to_result(row)

    async def fail_stale_requests(self, started_before: datetime) -> list[UUID]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                UPDATE research_requests
                SET status = 'failed'
                WHERE status = 'in_progress'
                  AND (started_at IS NULL OR started_at < $1)
                RETURNING id
                """,
                started_before,
            )
        return [r["id"] for r in rows]

    async def delete_request(self, request_id: UUID) -> bool:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute("DELETE FROM research_requests WHERE id = $1", request_id)
        return status == "DELETE 1"

    # --- Follow-up questions ---

    async def create_followup_questions(self, request_id: UUID, questions: list[str]) -> list[FollowupQuestion]:
        if not questions:
            return []
        pool = await self._get_pool()
        created: list[FollowupQuestion] = []
        async with pool.acquire() as conn:
            async with conn.transaction():
                for text in questions:
                    row = await conn.fetchrow(
                        f"""
                        INSERT INTO research_followup_questions (request_id, question, answer)
                        VALUES ($1, $2, NULL)
                        RETURNING {_QUESTION_COLUMNS}
                        """,
                        request_id,
                        text,
                    )
                    created.append(_row_to_question(row))
        return created

    async def get_followup_questions(self, request_id: UUID) -> list[FollowupQuestion]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_QUESTION_COLUMNS}
                FROM research_followup_questions
                WHERE request_id = $1
                ORDER BY created_at
                """,
                request_id,
            )
        return [_row_to_question(r) for r in rows]

    async def get_followup_question(self, question_id: UUID) -> FollowupQuestion | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_QUESTION_COLUMNS} FROM research_followup_questions WHERE id = $1",
                question_id,
            )
        return _row_to_question(row) if row else None

    async def answer_followup_question(self, question_id: UUID, answer: str) -> FollowupQuestion | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE research_followup_questions
                SET answer = $2
                WHERE id = $1
                RETURNING {_QUESTION_COLUMNS}
                """,
                question_id,
                answer,
            )
        return _row_to_question(row) if row else None

    # --- Results ---

    async def get_result(self, request_id: UUID) -> ResearchResult | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_RESULT_COLUMNS} FROM research_results WHERE request_id = $1",
                request_id,
            )
        return _row_to_result(row) if row else None

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol
from uuid import UUID

from app.config import settings
from app.models.research import (
    AnalysisResult,
    FollowupQuestion,
    ResearchRequest,
    ResearchResult,
    ResearchStatus,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ResearchStore(Protocol):
    """Passive persistence for research requests, questions and results.

    Conditional updates (`transition_status`, `complete_with_result`,
    `set_title_if_missing`) must be atomic: they report whether the row
    matched the expected state at write time.
    """

    async def create_request(self, user_id: str, url: str, title: str | None = None) -> ResearchRequest: ...
    async def get_request(self, request_id: UUID) -> ResearchRequest | None: ...
    async def list_requests(self, user_id: str) -> list[ResearchRequest]: ...
    async def set_title_if_missing(self, request_id: UUID, title: str) -> bool: ...
    async def transition_status(
        self,
        request_id: UUID,
        from_status: ResearchStatus,
        to_status: ResearchStatus,
        *,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> bool: ...
    async def complete_with_result(self, request_id: UUID, analysis: AnalysisResult) -> ResearchResult | None: ...
    async def create_followup_questions(self, request_id: UUID, questions: list[str]) -> list[FollowupQuestion]: ...
    async def get_followup_questions(self, request_id: UUID) -> list[FollowupQuestion]: ...
    async def get_followup_question(self, question_id: UUID) -> FollowupQuestion | None: ...
    async def answer_followup_question(self, question_id: UUID, answer: str) -> FollowupQuestion | None: ...
    async def get_result(self, request_id: UUID) -> ResearchResult | None: ...
    async def fail_stale_requests(self, started_before: datetime) -> list[UUID]: ...
    async def delete_request(self, request_id: UUID) -> bool: ...


class MemoryResearchStore:
    """Process-local store. Every mutation runs under one asyncio lock."""

    def __init__(self) -> None:
        self._requests: dict[UUID, ResearchRequest] = {}
        self._questions: dict[UUID, FollowupQuestion] = {}
        self._results: dict[UUID, ResearchResult] = {}
        self._lock = asyncio.Lock()

    async def create_request(self, user_id: str, url: str, title: str | None = None) -> ResearchRequest:
        request = ResearchRequest(
            id=uuid.uuid4(),
            user_id=user_id,
            url=url,
            title=title,
            status=ResearchStatus.PENDING,
            created_at=_now(),
        )
        async with self._lock:
            self._requests[request.id] = request
        return replace(request)

    async def get_request(self, request_id: UUID) -> ResearchRequest | None:
        request = self._requests.get(request_id)
        return replace(request) if request else None

    async def list_requests(self, user_id: str) -> list[ResearchRequest]:
        owned = [replace(r) for r in self._requests.values() if r.user_id == user_id]
        return sorted(owned, key=lambda r: r.created_at, reverse=True)

    async def set_title_if_missing(self, request_id: UUID, title: str) -> bool:
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.title:
                return False
            request.title = title
            return True

    async def transition_status(
        self,
        request_id: UUID,
        from_status: ResearchStatus,
        to_status: ResearchStatus,
        *,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> bool:
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.status != from_status:
                return False
            request.status = to_status
            if started_at is not None:
                request.started_at = started_at
            if completed_at is not None:
                request.completed_at = completed_at
            return True

    async def complete_with_result(self, request_id: UUID, analysis: AnalysisResult) -> ResearchResult | None:
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.status != ResearchStatus.IN_PROGRESS:
                return None
            if request_id in self._results:
                return None
            now = _now()
            result = ResearchResult(
                id=uuid.uuid4(),
                request_id=request_id,
                summary=analysis.summary,
                left_perspective=analysis.left_perspective,
                center_perspective=analysis.center_perspective,
                right_perspective=analysis.right_perspective,
                factual_accuracy=analysis.factual_accuracy,
                sources=list(analysis.sources),
                created_at=now,
            )
            self._results[request_id] = result
            request.status = ResearchStatus.COMPLETED
            request.completed_at = now
            return replace(result, sources=list(result.sources))

    async def create_followup_questions(self, request_id: UUID, questions: list[str]) -> list[FollowupQuestion]:
        created: list[FollowupQuestion] = []
        async with self._lock:
            for text in questions:
                question = FollowupQuestion(
                    id=uuid.uuid4(),
                    request_id=request_id,
                    question=text,
                    answer=None,
                    created_at=_now(),
                )
                self._questions[question.id] = question
                created.append(replace(question))
        return created

    async def get_followup_questions(self, request_id: UUID) -> list[FollowupQuestion]:
        rows = [replace(q) for q in self._questions.values() if q.request_id == request_id]
        return sorted(rows, key=lambda q: q.created_at or _now())

    async def get_followup_question(self, question_id: UUID) -> FollowupQuestion | None:
        question = self._questions.get(question_id)
        return replace(question) if question else None

    async def answer_followup_question(self, question_id: UUID, answer: str) -> FollowupQuestion | None:
        async with self._lock:
            question = self._questions.get(question_id)
            if question is None:
                return None
            question.answer = answer
            return replace(question)

    async def get_result(self, request_id: UUID) -> ResearchResult | None:
        result = self._results.get(request_id)
        return replace(result, sources=list(result.sources)) if result else None

    async def fail_stale_requests(self, started_before: datetime) -> list[UUID]:
        failed: list[UUID] = []
        async with self._lock:
            for request in self._requests.values():
                if request.status != ResearchStatus.IN_PROGRESS:
                    continue
                if request.started_at is None or request.started_at < started_before:
                    request.status = ResearchStatus.FAILED
                    failed.append(request.id)
        return failed

    async def delete_request(self, request_id: UUID) -> bool:
        async with self._lock:
            if self._requests.pop(request_id, None) is None:
                return False
            self._results.pop(request_id, None)
            for question_id in [q.id for q in self._questions.values() if q.request_id == request_id]:
                del self._questions[question_id]
            return True


_store: ResearchStore | None = None


def get_research_store() -> ResearchStore:
    global _store
    if _store is None:
        backend = settings.store_backend.lower().strip()
        if backend == "memory":
            _store = MemoryResearchStore()
        elif backend == "postgres":
            from app.services.database import PostgresResearchStore

            _store = PostgresResearchStore(settings.database_url)
        else:
            raise ValueError(f"Unsupported STORE_BACKEND: {settings.store_backend}")
    return _store


def reset_research_store() -> None:
    global _store
    _store = None

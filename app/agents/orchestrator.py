from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol
from uuid import UUID

from loguru import logger

from app.agents.perspective_analyzer import PerspectiveAnalyzer, coerce_factual_accuracy
from app.config import settings
from app.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models.research import (
    AnalysisResult,
    CreatedResearch,
    FollowupQuestion,
    ResearchDetail,
    ResearchRequest,
    ResearchStatus,
)
from app.services import logger as log_service
from app.services.research_store import ResearchStore, get_research_store
from app.tools import web_utils
from app.tools.content_extractor import PLACEHOLDER_TITLE, ContentExtractor, ExtractedContent

MAX_FOLLOWUP_QUESTIONS = 3


class Extractor(Protocol):
    async def extract(self, url: str) -> ExtractedContent: ...


class Analyzer(Protocol):
    async def propose_questions(self, text: str) -> list[str]: ...
    async def analyze(self, context: str) -> AnalysisResult: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def build_research_context(text: str, questions: list[FollowupQuestion]) -> str:
    """Extracted text followed by one Q/A block per answered follow-up question."""
    answered = [q for q in questions if q.answer]
    if not answered:
        return text
    blocks = "".join(f"Q: {q.question}\nA: {q.answer}\n\n" for q in answered)
    return f"{text}\n\nAdditional context from user:\n{blocks}"


class ResearchOrchestrator:
    """Owns the research request state machine.

    pending -> in_progress -> completed | failed

    Creation extracts content and determines follow-up questions
    synchronously. `start_research` flips pending -> in_progress with a
    conditional update, then runs the analysis as a task this object keeps
    a handle to until it resolves into a terminal state.
    """

    def __init__(
        self,
        store: ResearchStore | None = None,
        extractor: Extractor | None = None,
        analyzer: Analyzer | None = None,
        *,
        analysis_timeout: float | None = None,
        max_concurrent_analyses: int | None = None,
        hide_foreign_requests: bool | None = None,
    ):
        self.store = store or get_research_store()
        self.extractor = extractor or ContentExtractor()
        self.analyzer = analyzer or PerspectiveAnalyzer()
        self.analysis_timeout = float(
            analysis_timeout if analysis_timeout is not None else settings.analysis_timeout_seconds
        )
        self.max_concurrent_analyses = max(
            int(max_concurrent_analyses if max_concurrent_analyses is not None else settings.max_concurrent_analyses),
            1,
        )
        self.hide_foreign_requests = (
            settings.hide_foreign_requests if hide_foreign_requests is None else hide_foreign_requests
        )
        self.max_followup_questions = max(min(int(settings.followup_max_questions), MAX_FOLLOWUP_QUESTIONS), 0)
        self._semaphore = asyncio.Semaphore(self.max_concurrent_analyses)
        self._tasks: dict[UUID, asyncio.Task[None]] = {}

    # --- Helpers ---

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def _load_owned(self, request_id: UUID, caller_user_id: str) -> ResearchRequest:
        request = await self.store.get_request(request_id)
        if request is None:
            raise NotFoundError("Research request not found")
        if request.user_id != caller_user_id:
            if self.hide_foreign_requests:
                raise NotFoundError("Research request not found")
            raise ForbiddenError("You do not have access to this research request")
        return request

    async def _extract_safely(self, url: str) -> tuple[ExtractedContent, bool]:
        try:
            return await self.extractor.extract(url), True
        except Exception as e:
            log_service.log_event(
                event_type="extraction_failed",
                message="Content extraction failed; continuing with placeholder content",
                url=url,
                error=str(e),
            )
            return ExtractedContent(url=url, title=PLACEHOLDER_TITLE, text="", method="error"), False

    # --- Creation ---

    async def create_request(self, user_id: str, url: str, title: str | None = None) -> CreatedResearch:
        url = (url or "").strip()
        if not web_utils.is_valid_url(url):
            raise ValidationError(
                "Validation failed",
                {"url": ["Must be an absolute http(s) URL"]},
            )
        title = (title or "").strip() or None

        request = await self.store.create_request(user_id=user_id, url=url, title=title)
        log_service.log_event(
            event_type="research_request_created",
            message="Research request created",
            request_id=str(request.id),
            user_id=user_id,
        )

        content, extracted = await self._extract_safely(url)
        if extracted and request.title is None and content.title:
            if await self.store.set_title_if_missing(request.id, content.title):
                request = replace(request, title=content.title)

        questions = await self.determine_followups(content.text, request.id)
        return CreatedResearch(
            request=request,
            followup_questions=questions,
            estimated_time=self.estimate_completion_time(),
        )

    async def determine_followups(self, text: str, request_id: UUID) -> list[FollowupQuestion]:
        """Ask the analyzer for at most three clarifying questions. Failures yield none."""
        if self.max_followup_questions == 0:
            return []
        try:
            proposed = await self.analyzer.propose_questions(text)
        except Exception as e:
            log_service.log_event(
                event_type="followups_failed",
                message="Follow-up question generation failed; continuing without questions",
                request_id=str(request_id),
                error=str(e),
            )
            return []

        if not isinstance(proposed, list):
            return []
        cleaned = [q.strip() for q in proposed if isinstance(q, str) and q.strip()]
        cleaned = cleaned[: self.max_followup_questions]
        if not cleaned:
            return []
        return await self.store.create_followup_questions(request_id, cleaned)

    # --- Follow-up answers ---

    async def answer_followup(
        self,
        question_id: UUID,
        answer: str,
        caller_user_id: str | None = None,
    ) -> FollowupQuestion:
        answer = (answer or "").strip()
        if not answer:
            raise ValidationError("Validation failed", {"answer": ["Answer must not be empty"]})

        question = await self.store.get_followup_question(question_id)
        if question is None:
            raise NotFoundError("Follow-up question not found")
        if caller_user_id is not None:
            parent = await self._load_owned(question.request_id, caller_user_id)
            if parent.status != ResearchStatus.PENDING:
                logger.debug(
                    f"Answer for question {question_id} recorded after request {parent.id} left pending"
                )

        updated = await self.store.answer_followup_question(question_id, answer)
        if updated is None:
            raise NotFoundError("Follow-up question not found")
        return updated

    # --- State machine ---

    async def start_research(self, request_id: UUID, caller_user_id: str) -> int:
        """Move a pending request to in_progress and schedule its analysis.

        Returns the estimated completion time in seconds. Raises
        `InvalidTransitionError` when the request is not pending, including
        when a concurrent call won the transition.
        """
        request = await self._load_owned(request_id, caller_user_id)
        if request.status != ResearchStatus.PENDING:
            raise InvalidTransitionError(
                f"Research request is already {request.status.value}",
                current_status=request.status.value,
            )

        started = await self.store.transition_status(
            request_id,
            ResearchStatus.PENDING,
            ResearchStatus.IN_PROGRESS,
            started_at=_now(),
        )
        if not started:
            current = await self.store.get_request(request_id)
            current_status = current.status.value if current else None
            raise InvalidTransitionError(
                f"Research request is already {current_status or 'gone'}",
                current_status=current_status,
            )
        log_service.log_state_transition(
            str(request_id), ResearchStatus.PENDING.value, ResearchStatus.IN_PROGRESS.value
        )

        self._schedule(request_id)
        return self.estimate_completion_time()

    def _schedule(self, request_id: UUID) -> None:
        task = asyncio.create_task(self._run_analysis(request_id), name=f"research-{request_id}")
        self._tasks[request_id] = task

        def _forget(_task: asyncio.Task[None]) -> None:
            if self._tasks.get(request_id) is _task:
                del self._tasks[request_id]

        task.add_done_callback(_forget)

    async def _run_analysis(self, request_id: UUID) -> None:
        async with self._semaphore:
            try:
                request = await self.store.get_request(request_id)
                if request is None or request.status != ResearchStatus.IN_PROGRESS:
                    logger.warning(f"Skipping analysis for {request_id}: request no longer in progress")
                    return

                content, extracted = await self._extract_safely(request.url)
                if extracted and not request.title and content.title:
                    await self.store.set_title_if_missing(request_id, content.title)

                questions = await self.store.get_followup_questions(request_id)
                context = build_research_context(content.text, questions)
                analysis = await asyncio.wait_for(self.analyzer.analyze(context), timeout=self.analysis_timeout)
                analysis = replace(analysis, factual_accuracy=coerce_factual_accuracy(analysis.factual_accuracy))

                result = await self.store.complete_with_result(request_id, analysis)
            except asyncio.CancelledError:
                logger.warning(f"Analysis for {request_id} cancelled; request left in_progress")
                raise
            except Exception as e:
                reason = "timeout" if isinstance(e, asyncio.TimeoutError) else type(e).__name__
                logger.error(f"Research analysis failed for {request_id}: {reason}: {e}")
                await self._mark_failed(request_id, reason)
                return

        if result is None:
            logger.warning(f"Analysis for {request_id} finished but request was no longer in progress")
            return
        log_service.log_state_transition(
            str(request_id),
            ResearchStatus.IN_PROGRESS.value,
            ResearchStatus.COMPLETED.value,
            factual_accuracy=result.factual_accuracy,
        )

    async def _mark_failed(self, request_id: UUID, reason: str) -> None:
        try:
            failed = await self.store.transition_status(
                request_id, ResearchStatus.IN_PROGRESS, ResearchStatus.FAILED
            )
        except Exception as e:
            # The stale sweep picks this request up later.
            logger.error(f"Could not record failure for {request_id}: {e}")
            return
        if failed:
            log_service.log_state_transition(
                str(request_id), ResearchStatus.IN_PROGRESS.value, ResearchStatus.FAILED.value, reason=reason
            )

    # --- Queries ---

    async def get_request(self, request_id: UUID, caller_user_id: str) -> ResearchDetail:
        request = await self._load_owned(request_id, caller_user_id)
        questions = await self.store.get_followup_questions(request_id)
        result = None
        if request.status == ResearchStatus.COMPLETED:
            result = await self.store.get_result(request_id)
            if result is None:
                logger.warning(f"Consistency warning: request {request_id} is completed but has no result")
                request = replace(request, status=ResearchStatus.FAILED)
        return ResearchDetail(request=request, followup_questions=questions, result=result)

    async def list_requests(self, user_id: str) -> list[ResearchRequest]:
        return await self.store.list_requests(user_id)

    async def delete_request(self, request_id: UUID, caller_user_id: str) -> None:
        await self._load_owned(request_id, caller_user_id)
        if not await self.store.delete_request(request_id):
            raise NotFoundError("Research request not found")
        log_service.log_event(
            event_type="research_request_deleted",
            message="Research request deleted",
            request_id=str(request_id),
        )

    def estimate_completion_time(self) -> int:
        """Coarse, advisory estimate in seconds that grows with queued analyses."""
        base = max(int(settings.base_estimate_seconds), 1)
        return base * (1 + self.in_flight // self.max_concurrent_analyses)

    # --- Lifecycle ---

    async def reconcile_stale_requests(self, max_age_seconds: int | None = None) -> list[UUID]:
        """Fail in_progress requests whose analysis started too long ago."""
        age = int(max_age_seconds if max_age_seconds is not None else settings.stale_request_timeout_seconds)
        cutoff = _now() - timedelta(seconds=max(age, 0))
        failed = await self.store.fail_stale_requests(cutoff)
        for request_id in failed:
            log_service.log_state_transition(
                str(request_id),
                ResearchStatus.IN_PROGRESS.value,
                ResearchStatus.FAILED.value,
                reason="stale",
            )
        return failed

    async def wait_for(self, request_id: UUID) -> None:
        task = self._tasks.get(request_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self, grace_seconds: float | None = None) -> int:
        """Give in-flight analyses a grace period, then cancel the rest.

        Returns the number of cancelled analyses; their requests stay
        in_progress until the stale sweep fails them.
        """
        tasks = list(self._tasks.values())
        if not tasks:
            return 0
        grace = float(grace_seconds if grace_seconds is not None else settings.shutdown_grace_seconds)
        _done, pending = await asyncio.wait(tasks, timeout=max(grace, 0.0))
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Shutdown cancelled {len(pending)} in-flight analyses")
        return len(pending)

    def snapshot(self) -> dict[str, Any]:
        return {
            "in_flight": self.in_flight,
            "max_concurrent_analyses": self.max_concurrent_analyses,
            "estimated_time": self.estimate_completion_time(),
        }

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from app.agents.orchestrator import ResearchOrchestrator
from app.api.deps import get_current_user_id, get_orchestrator
from app.models.schemas import AnswerFollowupBody, FollowupQuestionResponse

router = APIRouter(prefix="/api/research-followup-questions", tags=["research"])


async def _answer(
    question_id: UUID,
    body: AnswerFollowupBody,
    user_id: str,
    orchestrator: ResearchOrchestrator,
) -> FollowupQuestionResponse:
    question = await orchestrator.answer_followup(question_id, body.answer, caller_user_id=user_id)
    return FollowupQuestionResponse.from_record(question)


@router.patch("/{question_id}", response_model=FollowupQuestionResponse)
async def answer_followup_question(
    question_id: UUID,
    body: AnswerFollowupBody,
    user_id: str = Depends(get_current_user_id),
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """Record (or overwrite) the answer to a follow-up question."""
    return await _answer(question_id, body, user_id, orchestrator)


@router.post("/{question_id}/answer", response_model=FollowupQuestionResponse)
async def post_followup_answer(
    question_id: UUID,
    body: AnswerFollowupBody,
    user_id: str = Depends(get_current_user_id),
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    return await _answer(question_id, body, user_id, orchestrator)

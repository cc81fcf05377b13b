from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status

from app.agents.orchestrator import ResearchOrchestrator
from app.api.deps import get_current_user_id, get_orchestrator
from app.models.schemas import (
    CreateResearchRequestBody,
    CreateResearchResponse,
    ResearchDetailResponse,
    ResearchRequestResponse,
    StartResearchResponse,
)

router = APIRouter(prefix="/api/research-requests", tags=["research"])


@router.post("", response_model=CreateResearchResponse, status_code=status.HTTP_201_CREATED)
async def create_research_request(
    body: CreateResearchRequestBody,
    user_id: str = Depends(get_current_user_id),
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """Submit a URL. Extracts content and returns any follow-up questions."""
    created = await orchestrator.create_request(user_id=user_id, url=body.url, title=body.title)
    return CreateResearchResponse.from_created(created)


@router.get("", response_model=list[ResearchRequestResponse])
async def list_research_requests(
    user_id: str = Depends(get_current_user_id),
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """List the caller's research requests, newest first."""
    requests = await orchestrator.list_requests(user_id)
    return [ResearchRequestResponse.from_record(r) for r in requests]


@router.get("/{request_id}", response_model=ResearchDetailResponse)
async def get_research_request(
    request_id: UUID,
    user_id: str = Depends(get_current_user_id),
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """Poll a request with its follow-up questions and, once completed, its result."""
    detail = await orchestrator.get_request(request_id, user_id)
    return ResearchDetailResponse.from_detail(detail)


@router.post(
    "/{request_id}/start",
    response_model=StartResearchResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_research(
    request_id: UUID,
    user_id: str = Depends(get_current_user_id),
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """Start the perspective analysis. Returns immediately; poll the request for progress."""
    estimate = await orchestrator.start_research(request_id, user_id)
    return StartResearchResponse(message="Research started", estimated_time_seconds=estimate)


@router.delete("/{request_id}")
async def delete_research_request(
    request_id: UUID,
    user_id: str = Depends(get_current_user_id),
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """Delete a research request together with its questions and result."""
    await orchestrator.delete_request(request_id, user_id)
    return {"status": "deleted"}

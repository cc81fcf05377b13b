from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID


class ResearchStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class ResearchRequest:
    id: UUID
    user_id: str
    url: str
    title: str | None
    status: ResearchStatus
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(slots=True)
class FollowupQuestion:
    id: UUID
    request_id: UUID
    question: str
    answer: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class AnalysisResult:
    """Coerced analyzer output, ready to be persisted as a ResearchResult."""

    summary: str
    left_perspective: str
    center_perspective: str
    right_perspective: str
    factual_accuracy: int
    sources: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ResearchResult:
    id: UUID
    request_id: UUID
    summary: str
    left_perspective: str
    center_perspective: str
    right_perspective: str
    factual_accuracy: int
    sources: list[str]
    created_at: datetime


@dataclass(slots=True)
class ResearchDetail:
    request: ResearchRequest
    followup_questions: list[FollowupQuestion]
    result: ResearchResult | None = None


@dataclass(slots=True)
class CreatedResearch:
    request: ResearchRequest
    followup_questions: list[FollowupQuestion]
    estimated_time: int

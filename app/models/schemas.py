from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from app.models.research import (
    CreatedResearch,
    FollowupQuestion,
    ResearchDetail,
    ResearchRequest,
    ResearchResult,
    ResearchStatus,
)
from app.tools import web_utils


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# --- Requests ---


class CreateResearchRequestBody(CamelModel):
    url: str
    title: str | None = None

    @field_validator("url")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        value = value.strip()
        if not web_utils.is_valid_url(value):
            raise ValueError("Must be an absolute http(s) URL")
        return value


class AnswerFollowupBody(CamelModel):
    answer: str

    @field_validator("answer")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Answer must not be empty")
        return value


# --- Responses ---


class ResearchRequestResponse(CamelModel):
    id: UUID
    user_id: str
    url: str
    title: str | None
    status: ResearchStatus
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_record(cls, request: ResearchRequest) -> "ResearchRequestResponse":
        return cls.model_validate(request)


class FollowupQuestionResponse(CamelModel):
    id: UUID
    request_id: UUID
    question: str
    answer: str | None

    @classmethod
    def from_record(cls, question: FollowupQuestion) -> "FollowupQuestionResponse":
        return cls.model_validate(question)


class ResearchResultResponse(CamelModel):
    id: UUID
    request_id: UUID
    summary: str
    left_perspective: str
    center_perspective: str
    right_perspective: str
    factual_accuracy: int
    sources: list[str]
    created_at: datetime

    @classmethod
    def from_record(cls, result: ResearchResult) -> "ResearchResultResponse":
        return cls.model_validate(result)


class CreateResearchResponse(CamelModel):
    request: ResearchRequestResponse
    followup_questions: list[FollowupQuestionResponse]
    estimated_time: int

    @classmethod
    def from_created(cls, created: CreatedResearch) -> "CreateResearchResponse":
        return cls(
            request=ResearchRequestResponse.from_record(created.request),
            followup_questions=[FollowupQuestionResponse.from_record(q) for q in created.followup_questions],
            estimated_time=created.estimated_time,
        )


class ResearchDetailResponse(CamelModel):
    request: ResearchRequestResponse
    followup_questions: list[FollowupQuestionResponse]
    result: ResearchResultResponse | None = None

    @classmethod
    def from_detail(cls, detail: ResearchDetail) -> "ResearchDetailResponse":
        return cls(
            request=ResearchRequestResponse.from_record(detail.request),
            followup_questions=[FollowupQuestionResponse.from_record(q) for q in detail.followup_questions],
            result=ResearchResultResponse.from_record(detail.result) if detail.result else None,
        )


class StartResearchResponse(CamelModel):
    message: str
    estimated_time_seconds: int

from __future__ import annotations

import math
from datetime import date
from typing import Any

from app.agents.base import BaseAgent
from app.config import settings
from app.models.research import AnalysisResult
from app.services.prompt_store import render_prompt

NEUTRAL_ACCURACY = 5
MIN_ACCURACY = 1
MAX_ACCURACY = 10

# Keys the model is asked for, plus snake_case variants some models return.
_FIELD_ALIASES = {
    "summary": ("summary", "factualSummary", "factual_summary"),
    "left_perspective": ("leftPerspective", "left_perspective", "left"),
    "center_perspective": ("centerPerspective", "center_perspective", "center"),
    "right_perspective": ("rightPerspective", "right_perspective", "right"),
    "factual_accuracy": ("factualAccuracy", "factual_accuracy", "accuracy"),
    "sources": ("sources",),
}

_FIELD_FALLBACKS = {
    "summary": "No summary provided",
    "left_perspective": "No left perspective provided",
    "center_perspective": "No center perspective provided",
    "right_perspective": "No right perspective provided",
}


def _pick(payload: dict[str, Any], field_name: str) -> Any:
    for key in _FIELD_ALIASES[field_name]:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def coerce_factual_accuracy(value: Any) -> int:
    """Clamp to [1, 10]; anything missing or non-numeric becomes the neutral midpoint."""
    if isinstance(value, bool) or value is None:
        return NEUTRAL_ACCURACY
    if isinstance(value, str):
        value = value.strip().split("/")[0].strip()
        try:
            value = float(value)
        except ValueError:
            return NEUTRAL_ACCURACY
    if not isinstance(value, (int, float)) or math.isnan(value):
        return NEUTRAL_ACCURACY
    if math.isinf(value):
        return MAX_ACCURACY if value > 0 else MIN_ACCURACY
    return max(MIN_ACCURACY, min(MAX_ACCURACY, int(round(value))))


def coerce_sources(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        return []
    sources: list[str] = []
    for item in value:
        if isinstance(item, str):
            text = item.strip()
        elif isinstance(item, dict):
            text = ""
            for key in ("title", "name", "url"):
                candidate = item.get(key)
                if isinstance(candidate, str) and candidate.strip():
                    text = candidate.strip()
                    break
        else:
            text = ""
        if text:
            sources.append(text)
    return sources


def _coerce_text(value: Any, fallback: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, (dict, list)) and value:
        return str(value)
    return fallback


def coerce_analysis(payload: dict[str, Any]) -> AnalysisResult:
    """Turn a loosely-shaped analyzer payload into an `AnalysisResult`."""
    return AnalysisResult(
        summary=_coerce_text(_pick(payload, "summary"), _FIELD_FALLBACKS["summary"]),
        left_perspective=_coerce_text(_pick(payload, "left_perspective"), _FIELD_FALLBACKS["left_perspective"]),
        center_perspective=_coerce_text(_pick(payload, "center_perspective"), _FIELD_FALLBACKS["center_perspective"]),
        right_perspective=_coerce_text(_pick(payload, "right_perspective"), _FIELD_FALLBACKS["right_perspective"]),
        factual_accuracy=coerce_factual_accuracy(_pick(payload, "factual_accuracy")),
        sources=coerce_sources(_pick(payload, "sources")),
    )


def parse_questions(payload: Any, limit: int) -> list[str]:
    """Accept `{"questions": [...]}` or a bare list; items may be strings or `{"question": ...}`."""
    raw = payload.get("questions") if isinstance(payload, dict) else payload
    if not isinstance(raw, list):
        return []
    questions: list[str] = []
    for item in raw:
        if isinstance(item, dict):
            item = item.get("question")
        if isinstance(item, str) and item.strip():
            questions.append(item.strip())
        if len(questions) >= limit:
            break
    return questions


class PerspectiveAnalyzer(BaseAgent):
    """Produces follow-up questions and left/center/right analyses for a piece of content."""

    name = "perspective_analyzer"
    max_tokens = 4096

    def __init__(self, model: str | None = None, client: Any | None = None, *, max_questions: int | None = None):
        super().__init__(model=model or (settings.analysis_model.strip() or None), client=client)
        self.max_questions = max(int(max_questions if max_questions is not None else settings.followup_max_questions), 0)

    async def propose_questions(self, text: str) -> list[str]:
        if self.max_questions == 0 or not text.strip():
            return []
        payload = await self.complete_json(
            render_prompt("perspective_analyzer.questions_system_prompt", max_questions=self.max_questions),
            render_prompt("perspective_analyzer.questions_user_prompt", content=text),
        )
        return parse_questions(payload, self.max_questions)

    async def analyze(self, context: str) -> AnalysisResult:
        payload = await self.complete_json(
            render_prompt("perspective_analyzer.analysis_system_prompt", today_iso=date.today().isoformat()),
            render_prompt("perspective_analyzer.analysis_user_prompt", context=context),
        )
        return coerce_analysis(payload)

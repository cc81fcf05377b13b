"""Shared fixtures: an in-memory store and scripted extractor/analyzer fakes."""
import asyncio
import os
import tempfile

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "perspective-research-test-logs"))
os.environ.setdefault("OPENROUTER_API_KEY", "test")

import pytest

from app.agents.orchestrator import ResearchOrchestrator
from app.errors import UpstreamError
from app.models.research import AnalysisResult
from app.services.research_store import MemoryResearchStore
from app.tools.content_extractor import ExtractedContent

ARTICLE_URL = "https://news.example.com/articles/water-policy"
ARTICLE_TEXT = "The city council voted 7-2 to raise water rates by 12 percent next year."


def make_analysis(**overrides) -> AnalysisResult:
    values = {
        "summary": "Council raised water rates.",
        "left_perspective": "Rates burden low-income households.",
        "center_perspective": "Infrastructure costs justify a moderate increase.",
        "right_perspective": "The council should cut spending instead.",
        "factual_accuracy": 8,
        "sources": ["City council minutes"],
    }
    values.update(overrides)
    return AnalysisResult(**values)


class FakeExtractor:
    def __init__(self, title: str = "Water Rates Rise", text: str = ARTICLE_TEXT, fail: bool = False):
        self.title = title
        self.text = text
        self.fail = fail
        self.calls: list[str] = []

    async def extract(self, url: str) -> ExtractedContent:
        self.calls.append(url)
        if self.fail:
            raise UpstreamError("connection refused", service="extractor")
        return ExtractedContent(url=url, title=self.title, text=self.text, method="trafilatura")


class FakeAnalyzer:
    """Scripted analyzer. `gate` holds `analyze` until the test sets it."""

    def __init__(
        self,
        questions: list[str] | None = None,
        analysis: AnalysisResult | None = None,
        *,
        questions_error: Exception | None = None,
        analysis_error: Exception | None = None,
        delay: float = 0.0,
    ):
        self.questions = ["Which neighborhoods are affected?"] if questions is None else questions
        self.analysis = analysis or make_analysis()
        self.questions_error = questions_error
        self.analysis_error = analysis_error
        self.delay = delay
        self.gate: asyncio.Event | None = None
        self.question_inputs: list[str] = []
        self.contexts: list[str] = []

    async def propose_questions(self, text: str) -> list[str]:
        self.question_inputs.append(text)
        if self.questions_error:
            raise self.questions_error
        return list(self.questions)

    async def analyze(self, context: str) -> AnalysisResult:
        self.contexts.append(context)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.analysis_error:
            raise self.analysis_error
        return self.analysis


@pytest.fixture
def store():
    return MemoryResearchStore()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def orchestrator(store, extractor, analyzer):
    return ResearchOrchestrator(
        store=store,
        extractor=extractor,
        analyzer=analyzer,
        analysis_timeout=5.0,
        max_concurrent_analyses=2,
        hide_foreign_requests=False,
    )

"""Tests for the in-memory research store's conditional updates."""
import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from conftest import make_analysis
from app.models.research import ResearchStatus
from app.services.research_store import MemoryResearchStore, get_research_store, reset_research_store


@pytest.mark.asyncio
async def test_create_request_starts_pending():
    store = MemoryResearchStore()

    request = await store.create_request("alice", "https://example.com/a")

    assert request.status == ResearchStatus.PENDING
    assert request.title is None
    assert request.started_at is None
    assert request.completed_at is None


@pytest.mark.asyncio
async def test_returned_records_are_copies():
    store = MemoryResearchStore()
    request = await store.create_request("alice", "https://example.com/a")

    request.status = ResearchStatus.FAILED

    assert (await store.get_request(request.id)).status == ResearchStatus.PENDING


@pytest.mark.asyncio
async def test_transition_requires_expected_status():
    store = MemoryResearchStore()
    request = await store.create_request("alice", "https://example.com/a")
    started_at = datetime.now(timezone.utc)

    assert await store.transition_status(
        request.id, ResearchStatus.PENDING, ResearchStatus.IN_PROGRESS, started_at=started_at
    )
    assert not await store.transition_status(request.id, ResearchStatus.PENDING, ResearchStatus.IN_PROGRESS)
    assert not await store.transition_status(uuid4(), ResearchStatus.PENDING, ResearchStatus.IN_PROGRESS)

    stored = await store.get_request(request.id)
    assert stored.status == ResearchStatus.IN_PROGRESS
    assert stored.started_at == started_at


@pytest.mark.asyncio
async def test_concurrent_transitions_have_one_winner():
    store = MemoryResearchStore()
    request = await store.create_request("alice", "https://example.com/a")

    outcomes = await asyncio.gather(
        *(store.transition_status(request.id, ResearchStatus.PENDING, ResearchStatus.IN_PROGRESS) for _ in range(10))
    )

    assert outcomes.count(True) == 1


@pytest.mark.asyncio
async def test_complete_with_result_only_once():
    store = MemoryResearchStore()
    request = await store.create_request("alice", "https://example.com/a")
    await store.transition_status(request.id, ResearchStatus.PENDING, ResearchStatus.IN_PROGRESS)

    first = await store.complete_with_result(request.id, make_analysis())
    second = await store.complete_with_result(request.id, make_analysis(summary="Other"))

    assert first is not None
    assert second is None
    stored = await store.get_request(request.id)
    assert stored.status == ResearchStatus.COMPLETED
    assert stored.completed_at == first.created_at
    assert (await store.get_result(request.id)).summary == "Council raised water rates."


@pytest.mark.asyncio
async def test_complete_with_result_rejects_pending():
    store = MemoryResearchStore()
    request = await store.create_request("alice", "https://example.com/a")

    assert await store.complete_with_result(request.id, make_analysis()) is None
    assert await store.get_result(request.id) is None


@pytest.mark.asyncio
async def test_set_title_if_missing_only_fills_once():
    store = MemoryResearchStore()
    request = await store.create_request("alice", "https://example.com/a")

    assert await store.set_title_if_missing(request.id, "First")
    assert not await store.set_title_if_missing(request.id, "Second")
    assert (await store.get_request(request.id)).title == "First"


@pytest.mark.asyncio
async def test_followup_questions_keep_insertion_order():
    store = MemoryResearchStore()
    request = await store.create_request("alice", "https://example.com/a")

    created = await store.create_followup_questions(request.id, ["One?", "Two?", "Three?"])
    answered = await store.answer_followup_question(created[1].id, "Yes")

    assert [q.question for q in await store.get_followup_questions(request.id)] == ["One?", "Two?", "Three?"]
    assert answered.answer == "Yes"
    assert await store.answer_followup_question(uuid4(), "No") is None


@pytest.mark.asyncio
async def test_fail_stale_requests_uses_started_at():
    store = MemoryResearchStore()
    old = await store.create_request("alice", "https://example.com/old")
    fresh = await store.create_request("alice", "https://example.com/fresh")
    pending = await store.create_request("alice", "https://example.com/pending")
    now = datetime.now(timezone.utc)
    await store.transition_status(
        old.id, ResearchStatus.PENDING, ResearchStatus.IN_PROGRESS, started_at=now - timedelta(minutes=30)
    )
    await store.transition_status(fresh.id, ResearchStatus.PENDING, ResearchStatus.IN_PROGRESS, started_at=now)

    failed = await store.fail_stale_requests(now - timedelta(minutes=10))

    assert failed == [old.id]
    assert (await store.get_request(old.id)).status == ResearchStatus.FAILED
    assert (await store.get_request(old.id)).completed_at is None
    assert (await store.get_request(fresh.id)).status == ResearchStatus.IN_PROGRESS
    assert (await store.get_request(pending.id)).status == ResearchStatus.PENDING


@pytest.mark.asyncio
async def test_delete_cascades():
    store = MemoryResearchStore()
    request = await store.create_request("alice", "https://example.com/a")
    questions = await store.create_followup_questions(request.id, ["One?"])
    await store.transition_status(request.id, ResearchStatus.PENDING, ResearchStatus.IN_PROGRESS)
    await store.complete_with_result(request.id, make_analysis())

    assert await store.delete_request(request.id)
    assert not await store.delete_request(request.id)
    assert await store.get_request(request.id) is None
    assert await store.get_followup_question(questions[0].id) is None
    assert await store.get_result(request.id) is None


def test_factory_honours_memory_backend(monkeypatch):
    from app.services import research_store

    monkeypatch.setattr(research_store.settings, "store_backend", "memory")
    reset_research_store()
    try:
        assert isinstance(get_research_store(), MemoryResearchStore)
        assert get_research_store() is get_research_store()
    finally:
        reset_research_store()


def test_factory_rejects_unknown_backend(monkeypatch):
    from app.services import research_store

    monkeypatch.setattr(research_store.settings, "store_backend", "sqlite")
    reset_research_store()
    try:
        with pytest.raises(ValueError):
            get_research_store()
    finally:
        reset_research_store()

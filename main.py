"""Perspective Research - multi-perspective analysis of a single URL

Simple CLI that runs one research request end to end against an in-process store.
"""

import argparse
import asyncio
import sys

from app.agents.orchestrator import ResearchOrchestrator
from app.errors import ResearchServiceError
from app.models.research import ResearchStatus
from app.services.research_store import MemoryResearchStore


async def run_research(url: str, title: str | None, answers: list[str], user_id: str) -> int:
    """Create, answer, start and await a research request."""
    print(f"Research URL: {url}")
    print("-" * 50)

    orchestrator = ResearchOrchestrator(store=MemoryResearchStore())

    try:
        created = await orchestrator.create_request(user_id=user_id, url=url, title=title)
    except ResearchServiceError as e:
        print(f"[!] Error: {e.message}")
        return 1

    request = created.request
    print(f"[*] Request {request.id} ({request.title or 'untitled'})")

    if created.followup_questions:
        print(f"\n[?] Follow-up questions ({len(created.followup_questions)}):")
        for i, question in enumerate(created.followup_questions, 1):
            print(f"  {i}. {question.question}")
            if i <= len(answers):
                await orchestrator.answer_followup(question.id, answers[i - 1], caller_user_id=user_id)
                print(f"     -> {answers[i - 1]}")

    estimate = await orchestrator.start_research(request.id, user_id)
    print(f"\n[~] Analysis started, estimated {estimate}s...")
    await orchestrator.drain()

    detail = await orchestrator.get_request(request.id, user_id)
    if detail.request.status != ResearchStatus.COMPLETED or detail.result is None:
        print(f"\n[!] Research {detail.request.status.value}")
        return 1

    result = detail.result
    print("\n[*] Research Complete!")
    print(f"   Factual accuracy: {result.factual_accuracy}/10")
    print(f"   Sources: {len(result.sources)}")
    print(f"\n{'='*50}")
    print("SUMMARY:")
    print(f"{'='*50}")
    print(result.summary)
    for label, text in (
        ("LEFT", result.left_perspective),
        ("CENTER", result.center_perspective),
        ("RIGHT", result.right_perspective),
    ):
        print(f"\n--- {label} ---")
        print(text)
    if result.sources:
        print("\nSOURCES:")
        for source in result.sources:
            print(f"  - {source}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Perspective Research Tool")
    parser.add_argument("--url", "-u", required=True, help="Article URL to research")
    parser.add_argument("--title", "-t", help="Optional title (default: extracted from the page)")
    parser.add_argument(
        "--answer",
        "-a",
        action="append",
        default=[],
        help="Answer to the next follow-up question (repeatable)",
    )
    parser.add_argument("--user", default="cli", help="User id to own the request")

    args = parser.parse_args()

    sys.exit(asyncio.run(run_research(args.url, args.title, args.answer, args.user)))


if __name__ == "__main__":
    main()

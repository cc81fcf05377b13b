from __future__ import annotations

import json
import time
from typing import Any

from app.errors import UpstreamError
from app.llm_client import MessageResponse, client as llm_client, get_model
from app.services import logger as log_service


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse the outermost JSON object in `text`, tolerating surrounding prose or fences."""
    text = (text or "").strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("No JSON object found in model response")
        parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("Model response is not a JSON object")
    return parsed


class BaseAgent:
    """Single-shot LLM agent.

    Subclasses build prompts and interpret the reply; this class owns the
    call itself, its timing, and its logging. Any transport or provider
    failure is re-raised as `UpstreamError`.
    """

    name: str = "base"
    max_tokens: int = 2048

    def __init__(self, model: str | None = None, client: Any | None = None):
        self.model = model or get_model()
        self.client = client

    async def complete(self, system: str, user_message: str, *, json_mode: bool = False) -> MessageResponse:
        active_client = self.client or llm_client()
        t0 = time.monotonic()
        try:
            response = await active_client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=[{"role": "user", "content": user_message}],
                json_mode=json_mode,
            )
        except Exception as e:
            log_service.log_llm_call(
                model=self.model,
                caller=self.name,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise UpstreamError(f"{self.name} call failed: {e}", service=self.name) from e

        usage = response.usage
        log_service.log_llm_call(
            model=self.model,
            caller=self.name,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return response

    async def complete_json(self, system: str, user_message: str) -> dict[str, Any]:
        response = await self.complete(system, user_message, json_mode=True)
        try:
            return parse_json_object(response.text)
        except ValueError as e:
            raise UpstreamError(f"{self.name} returned malformed JSON: {e}", service=self.name) from e

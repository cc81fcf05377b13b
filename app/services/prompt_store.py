from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any


PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"
_cache: dict[str, Any] = {"mtime_ns": None, "catalog": None}


def _catalog() -> dict[str, Any]:
    """Load the prompt catalog, re-reading it when the file changes on disk."""
    mtime_ns = PROMPTS_PATH.stat().st_mtime_ns
    if _cache["catalog"] is not None and _cache["mtime_ns"] == mtime_ns:
        return _cache["catalog"]

    payload = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Prompt catalog must be a JSON object.")
    _cache.update(mtime_ns=mtime_ns, catalog=payload)
    return payload


def _lookup(key: str) -> str:
    node: Any = _catalog()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if isinstance(node, list) and all(isinstance(line, str) for line in node):
        return "\n".join(node)
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to a string or list of lines: {key}")
    return node


def render_prompt(key: str, **values: Any) -> str:
    """Render prompt `key` with `$name` placeholders filled from `values`."""
    template = Template(_lookup(key))
    try:
        return template.substitute(**values)
    except KeyError as exc:
        missing = str(exc.args[0])
        raise KeyError(f"Missing template value '{missing}' for prompt '{key}'") from exc


def clear_prompt_cache() -> None:
    _cache.update(mtime_ns=None, catalog=None)

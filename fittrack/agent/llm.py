from __future__ import annotations
import json
import os
import re
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI

# Load environment variables from .env file
load_dotenv()

MODEL = os.getenv("ASSISTANT_MODEL", "gpt-4o-mini")
VISION_MODEL = os.getenv("FOOD_SCAN_MODEL", MODEL)

_FENCED = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
_BRACES = re.compile(r"\{[\s\S]*\}")


def is_configured() -> bool:
    return bool(os.getenv("OPENAI_API_KEY"))


def get_llm(model: Optional[str] = None, temperature: float = 0.0) -> ChatOpenAI:
    # temperature low for tool-calling determinism
    return ChatOpenAI(model=model or MODEL, temperature=temperature)


def message_text(res: Any) -> str:
    """Plain text of a chat reply; multimodal replies come back as content parts."""
    content = getattr(res, "content", res)
    if isinstance(content, list):
        parts = []
        for p in content:
            if isinstance(p, dict):
                parts.append(str(p.get("text", "")))
            else:
                parts.append(str(p))
        content = "".join(parts)
    return (content or "").strip() if isinstance(content, str) else str(content)


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Pull a JSON object out of model output.

    Tries the whole text, then a ```json fenced block, then the outermost
    brace span. Returns None when nothing parses to a dict.
    """
    if not text:
        return None
    candidates = [text.strip()]
    m = _FENCED.search(text)
    if m:
        candidates.append(m.group(1))
    m = _BRACES.search(text)
    if m:
        candidates.append(m.group(0))
    for c in candidates:
        try:
            obj = json.loads(c)
        except ValueError:
            continue
        if isinstance(obj, dict):
            return obj
    return None


def tool_calls_of(res: Any) -> list:
    """Tool calls from a chat reply, wherever this langchain version put them."""
    tcalls = getattr(res, "tool_calls", None)
    if not tcalls:
        # some versions stash them in additional_kwargs
        ak = getattr(res, "additional_kwargs", None)
        if isinstance(ak, dict):
            tcalls = ak.get("tool_calls") or []
    return list(tcalls or [])

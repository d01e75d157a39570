from __future__ import annotations

import ast
import json
import re
from typing import Any, Dict, List, Optional

from openai import BadRequestError

from examprep.core.config import settings
from examprep.services.embedding_service import create_openai_client, provider_configured


_client = None

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


PLACEHOLDER_KEY_MARKERS = [
    "your_api_key",
    "your api key",
    "your-api-key",
    "replace_me",
    "replace-me",
    "changeme",
    "change_me",
    "sk-xxxxxxxx",
    "your_openai_api_key",
]


def _looks_like_placeholder_key(k: str | None) -> bool:
    if not k:
        return False
    ks = (k or "").strip().lower()
    if not ks:
        return False
    if any(m in ks for m in PLACEHOLDER_KEY_MARKERS):
        return True
    # common placeholder pattern like 'xxxxxx'
    if "xxxx" in ks:
        return True
    return False


def llm_available() -> bool:
    """Return True if we can call an LLM from this backend.

    Supported providers:
    - OpenAI API: set OPENAI_API_KEY
    - OpenAI-compatible local servers (Ollama/LM Studio): set OPENAI_BASE_URL (key can be blank)
    - Azure OpenAI: AZURE_OPENAI_ENDPOINT + AZURE_OPENAI_API_KEY
    """
    if not provider_configured():
        return False

    # Placeholder keys always fail auth.
    if (settings.AZURE_OPENAI_ENDPOINT or "").strip():
        return not _looks_like_placeholder_key(settings.AZURE_OPENAI_API_KEY)
    if not (settings.OPENAI_BASE_URL or "").strip() and _looks_like_placeholder_key(settings.OPENAI_API_KEY):
        return False
    return True


def _get_client():
    global _client
    if _client is not None:
        return _client
    if not llm_available():
        raise RuntimeError(
            "LLM is not configured. Set OPENAI_API_KEY (OpenAI) or OPENAI_BASE_URL (Ollama/LM Studio) "
            "or AZURE_OPENAI_ENDPOINT+AZURE_OPENAI_API_KEY (Azure OpenAI) in backend/.env"
        )
    _client = create_openai_client()
    return _client


def _preprocess_llm_text(s: str) -> str:
    """Strip <think>...</think> blocks and markdown fences around JSON."""
    s = (s or "").strip()
    if not s:
        return ""
    s = _THINK_RE.sub("", s).strip()
    if "```" in s:
        s = _FENCE_RE.sub("", s).strip()
    return s


def _extract_last_json_object(s: str) -> Dict[str, Any] | None:
    """Return the last valid JSON object found in text, or None."""
    dec = json.JSONDecoder()
    last_obj: Dict[str, Any] | None = None
    i = 0
    while True:
        i = s.find("{", i)
        if i < 0:
            break
        try:
            obj, end = dec.raw_decode(s[i:])
            if isinstance(obj, dict):
                last_obj = obj
            i = i + max(1, end)
        except ValueError:
            i += 1
    return last_obj


def _safe_json_loads(s: str) -> Dict[str, Any]:
    s2 = _preprocess_llm_text(s)
    if not s2:
        raise ValueError("Empty LLM response (expected JSON).")

    def _try_json(text: str) -> Dict[str, Any] | None:
        try:
            obj = json.loads(text)
            return obj if isinstance(obj, dict) else None
        except ValueError:
            return None

    # 1) exact JSON
    obj = _try_json(s2)
    if obj is not None:
        return obj

    # 2) trailing commas before '}' or ']'
    s3 = re.sub(r",\s*([}\]])", r"\1", s2)
    obj = _try_json(s3)
    if obj is not None:
        return obj

    # 3) last valid JSON object embedded in prose
    obj = _extract_last_json_object(s3)
    if obj is not None:
        return obj

    # 4) quasi-JSON (single quotes, True/False/None); literal_eval never executes code
    s4 = re.sub(r"\bnull\b", "None", s3, flags=re.IGNORECASE)
    s4 = re.sub(r"\btrue\b", "True", s4, flags=re.IGNORECASE)
    s4 = re.sub(r"\bfalse\b", "False", s4, flags=re.IGNORECASE)
    try:
        lit = ast.literal_eval(s4)
    except (ValueError, SyntaxError):
        lit = None
    if isinstance(lit, dict):
        return lit

    raise ValueError(f"Could not parse JSON from LLM output. Head={s2[:200]!r}")


def _extract_chat_completion_text(res: Any) -> str:
    choices = getattr(res, "choices", None) or []
    if not choices:
        return ""
    msg = getattr(choices[0], "message", None)
    content = getattr(msg, "content", None)
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for p in content:
            t = p.get("text") if isinstance(p, dict) else getattr(p, "text", None)
            if isinstance(t, str) and t.strip():
                parts.append(t.strip())
        return "\n".join(parts).strip()
    return ""


def chat_json(
    *,
    messages: List[Dict[str, str]],
    model: Optional[str] = None,
    temperature: float = 0.3,
    max_tokens: int = 1200,
    timeout_sec: float | None = None,
) -> Dict[str, Any]:
    """Call the chat model in JSON mode and return the parsed object.

    Transport errors propagate to the caller, which owns the retry policy.
    Some OpenAI-compatible gateways reject ``response_format``; the call is then
    repeated without it (the system message still asks for JSON).
    """
    client = _get_client()
    m = model or settings.OPENAI_CHAT_MODEL

    json_guard = {
        "role": "system",
        "content": (
            "You are a strict JSON generator. "
            "Output exactly ONE valid JSON object and nothing else. "
            "Do NOT include explanations, markdown fences, or <think> blocks."
        ),
    }
    kwargs: Dict[str, Any] = {
        "model": m,
        "messages": [json_guard] + (messages or []),
        "temperature": float(temperature),
        "max_tokens": int(max_tokens),
    }
    if timeout_sec is not None:
        kwargs["timeout"] = float(timeout_sec)

    try:
        res = client.chat.completions.create(**kwargs, response_format={"type": "json_object"})
    except BadRequestError:
        res = client.chat.completions.create(**kwargs)

    return _safe_json_loads(_extract_chat_completion_text(res))

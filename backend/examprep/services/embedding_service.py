from __future__ import annotations

import hashlib
import json
import logging
import re
from functools import lru_cache
from typing import Any, Dict, List

import numpy as np
from openai import AzureOpenAI, OpenAI
from tenacity import Retrying, before_sleep_log, stop_after_attempt, wait_exponential

from examprep.core.config import settings
from examprep.core.contracts import QuestionRecord, TopicContext
from examprep.core.errors import EmbeddingUnavailable


logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[\w']+", re.UNICODE)


def _norm_text(text: str) -> str:
    return " ".join((text or "").split())


def _parse_json_object_env(name: str, value: str | None) -> Dict[str, Any] | None:
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        obj = json.loads(raw)
    except ValueError as e:
        raise RuntimeError(
            f"{name} must be a valid JSON object string. Example: {name}={{\"foo\":\"bar\"}}. Error: {type(e).__name__}: {str(e)[:120]}"
        ) from e
    if not isinstance(obj, dict):
        raise RuntimeError(f"{name} must be a JSON object ({{...}}), got {type(obj).__name__}.")
    return obj


def provider_configured() -> bool:
    """True when an OpenAI-compatible embeddings endpoint is configured."""
    return bool(
        (settings.OPENAI_API_KEY or "").strip()
        or (settings.OPENAI_BASE_URL or "").strip()
        or (settings.AZURE_OPENAI_ENDPOINT or "").strip()
    )


def create_openai_client(timeout: float | None = None):
    """Build an OpenAI / Azure OpenAI / gateway client from settings.

    Provider selection priority:
    1) Azure OpenAI (AZURE_OPENAI_ENDPOINT)
    2) OpenAI-compatible gateway/local server (OPENAI_BASE_URL)
    3) OpenAI cloud (OPENAI_API_KEY)
    """
    timeout = float(timeout if timeout is not None else settings.OPENAI_HTTP_TIMEOUT_SEC)
    default_headers = _parse_json_object_env("OPENAI_EXTRA_HEADERS_JSON", settings.OPENAI_EXTRA_HEADERS_JSON)

    azure_endpoint = (settings.AZURE_OPENAI_ENDPOINT or "").strip() or None
    azure_key = (settings.AZURE_OPENAI_API_KEY or "").strip() or None
    if azure_endpoint:
        if not azure_key:
            raise RuntimeError(
                "Azure OpenAI is selected (AZURE_OPENAI_ENDPOINT is set) but AZURE_OPENAI_API_KEY is missing."
            )
        return AzureOpenAI(
            azure_endpoint=azure_endpoint,
            api_key=azure_key,
            api_version=settings.AZURE_OPENAI_API_VERSION,
            timeout=timeout,
            max_retries=0,
            default_headers=default_headers,
        )

    base_url = (settings.OPENAI_BASE_URL or "").strip() or None
    # Local gateways usually accept any key.
    api_key = settings.OPENAI_API_KEY or ("not-needed" if base_url else None)
    if not api_key:
        raise RuntimeError("LLM provider is not configured. Set OPENAI_API_KEY, OPENAI_BASE_URL or AZURE_OPENAI_ENDPOINT in backend/.env")
    return OpenAI(
        api_key=api_key,
        base_url=base_url,
        timeout=timeout,
        max_retries=0,
        default_headers=default_headers,
    )


def adapter_retrying(max_attempts: int | None = None, backoff_base: float | None = None) -> Retrying:
    """Bounded retry with exponential backoff shared by the external adapters."""
    attempts = int(max_attempts if max_attempts is not None else settings.ADAPTER_MAX_ATTEMPTS)
    base = float(backoff_base if backoff_base is not None else settings.ADAPTER_BACKOFF_BASE_SEC)
    return Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=base, max=float(settings.ADAPTER_BACKOFF_MAX_SEC)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


class EmbeddingProvider:
    """Turns text into a fixed-length vector.

    Implementations must be deterministic for a given backend/model and must
    raise ``EmbeddingUnavailable`` instead of returning a zero vector.
    """

    name: str = "base"

    def __init__(self, dimension: int):
        if int(dimension) <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = int(dimension)

    def embed(self, text: str) -> List[float]:  # pragma: no cover
        raise NotImplementedError

    def embed_question(self, record: QuestionRecord) -> List[float]:
        return self.embed(f"{record.question_text} {record.syllabus_reference}")

    def embed_topic(self, context: TopicContext) -> List[float]:
        return self.embed(context.grounding_text() or context.topic_name)

    @property
    def model_id(self) -> str:
        return f"{self.name}:{self.dimension}"


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-tokens embedding (feature hashing).

    Each lower-cased token is hashed with sha1 into a bucket and a sign; the
    counts are L2-normalised. Not semantically strong, but stable across
    processes and dimensionally compatible with the real provider.
    """

    name = "hashing"

    def _bucket(self, token: str) -> tuple[int, float]:
        digest = hashlib.sha1(token.encode("utf-8", errors="ignore")).digest()
        idx = int.from_bytes(digest[:4], "big") % self.dimension
        sign = 1.0 if digest[4] & 1 else -1.0
        return idx, sign

    def embed(self, text: str) -> List[float]:
        tokens = _TOKEN_RE.findall(_norm_text(text).lower())
        vec = np.zeros(self.dimension, dtype=np.float64)
        for tok in tokens:
            idx, sign = self._bucket(tok)
            vec[idx] += sign
        norm = float(np.linalg.norm(vec))
        if norm == 0.0:
            # No tokens (or perfectly cancelling ones): fixed non-zero vector.
            idx, sign = self._bucket("\x00empty")
            vec[idx] = sign
            norm = 1.0
        return (vec / norm).tolist()


class OpenAIEmbeddingProvider(EmbeddingProvider):
    name = "openai"

    def __init__(
        self,
        dimension: int | None = None,
        model: str | None = None,
        client: Any = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        cache_size: int = 256,
    ):
        super().__init__(dimension or settings.EMBEDDING_DIM)
        self.model = (model or settings.OPENAI_EMBEDDING_MODEL or "text-embedding-3-small").strip()
        self._client = client
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._embed_cached = lru_cache(maxsize=cache_size)(self._embed_uncached)

    @property
    def model_id(self) -> str:
        return f"{self.name}:{self.model}:{self.dimension}"

    def _get_client(self):
        if self._client is None:
            self._client = create_openai_client()
        return self._client

    def _request(self, text: str) -> List[float]:
        kwargs: Dict[str, Any] = {"model": self.model, "input": [text]}
        # Only the text-embedding-3 family can shorten vectors server-side.
        if self.model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimension
        res = self._get_client().embeddings.create(**kwargs)
        data = sorted(res.data, key=lambda x: x.index)
        if not data:
            raise ValueError("empty embeddings response")
        return [float(x) for x in data[0].embedding]

    def _embed_uncached(self, text: str) -> tuple[float, ...]:
        try:
            for attempt in adapter_retrying(self.max_attempts, self.backoff_base):
                with attempt:
                    vec = self._request(text)
        except Exception as e:
            logger.error("Embedding request failed after retries: %s", e)
            raise EmbeddingUnavailable(f"{type(e).__name__}: {str(e)[:200]}") from e

        if len(vec) != self.dimension:
            raise EmbeddingUnavailable(f"model {self.model} returned {len(vec)} dims, index expects {self.dimension}")
        if not any(vec):
            raise EmbeddingUnavailable(f"model {self.model} returned a zero vector")
        return tuple(vec)

    def embed(self, text: str) -> List[float]:
        return list(self._embed_cached(_norm_text(text)))


def get_embedding_provider(backend: str | None = None) -> EmbeddingProvider:
    b = (backend or settings.EMBEDDING_BACKEND or "auto").strip().lower()
    if b == "auto":
        b = "openai" if provider_configured() else "hashing"
    if b == "openai":
        return OpenAIEmbeddingProvider(dimension=settings.EMBEDDING_DIM)
    if b == "hashing":
        return HashingEmbeddingProvider(dimension=settings.EMBEDDING_DIM)
    raise ValueError(f"Unknown EMBEDDING_BACKEND: {backend!r}")

from types import SimpleNamespace

import numpy as np
import pytest

from examprep.core.errors import EmbeddingUnavailable
from examprep.services.embedding_service import (
    HashingEmbeddingProvider,
    OpenAIEmbeddingProvider,
    get_embedding_provider,
)


class _FakeEmbeddings:
    def __init__(self, vectors=None, failures=0, dim=8):
        self.vectors = vectors
        self.failures = failures
        self.dim = dim
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if len(self.calls) <= self.failures:
            raise ConnectionError("gateway timeout")
        vec = self.vectors if self.vectors is not None else [0.5] * self.dim
        return SimpleNamespace(data=[SimpleNamespace(index=0, embedding=vec)])


def _provider(fake, dim=8, model="text-embedding-3-small"):
    client = SimpleNamespace(embeddings=fake)
    return OpenAIEmbeddingProvider(dimension=dim, model=model, client=client, max_attempts=3, backoff_base=0)


def test_hashing_embedding_is_deterministic_and_unit_norm():
    p = HashingEmbeddingProvider(dimension=32)
    a = p.embed("Photosynthesis happens in the chloroplast")
    b = p.embed("photosynthesis   happens in the CHLOROPLAST")

    assert len(a) == 32
    assert a == b
    assert abs(float(np.linalg.norm(a)) - 1.0) < 1e-9


def test_hashing_embedding_never_returns_zero_vector():
    p = HashingEmbeddingProvider(dimension=16)
    vec = p.embed("")
    assert any(vec)
    assert abs(float(np.linalg.norm(vec)) - 1.0) < 1e-9


def test_hashing_embedding_rejects_non_positive_dimension():
    with pytest.raises(ValueError):
        HashingEmbeddingProvider(dimension=0)


def test_openai_provider_requests_shortened_vectors():
    fake = _FakeEmbeddings(dim=8)
    p = _provider(fake)

    vec = p.embed("What is osmosis?")

    assert vec == [0.5] * 8
    assert fake.calls[0]["dimensions"] == 8
    assert fake.calls[0]["input"] == ["What is osmosis?"]
    assert p.model_id == "openai:text-embedding-3-small:8"


def test_openai_provider_caches_repeated_texts():
    fake = _FakeEmbeddings(dim=8)
    p = _provider(fake)

    p.embed("same text")
    p.embed("same   text")

    assert len(fake.calls) == 1


def test_openai_provider_retries_transient_failures():
    fake = _FakeEmbeddings(failures=2, dim=8)
    p = _provider(fake)

    assert len(p.embed("retry me")) == 8
    assert len(fake.calls) == 3


def test_openai_provider_gives_up_after_max_attempts():
    fake = _FakeEmbeddings(failures=10, dim=8)
    p = _provider(fake)

    with pytest.raises(EmbeddingUnavailable) as ei:
        p.embed("never works")

    assert len(fake.calls) == 3
    assert ei.value.transient is True
    assert "ConnectionError" in ei.value.reason


def test_openai_provider_rejects_wrong_dimension_and_zero_vectors():
    with pytest.raises(EmbeddingUnavailable):
        _provider(_FakeEmbeddings(vectors=[0.1] * 4), dim=8).embed("short vector")

    with pytest.raises(EmbeddingUnavailable):
        _provider(_FakeEmbeddings(vectors=[0.0] * 8), dim=8).embed("zero vector")


def test_other_models_are_not_sent_a_dimensions_argument():
    fake = _FakeEmbeddings(dim=8)
    _provider(fake, model="nomic-embed-text").embed("local gateway")
    assert "dimensions" not in fake.calls[0]


def test_get_embedding_provider_backends():
    assert isinstance(get_embedding_provider("hashing"), HashingEmbeddingProvider)
    assert isinstance(get_embedding_provider("openai"), OpenAIEmbeddingProvider)
    with pytest.raises(ValueError):
        get_embedding_provider("word2vec")


def test_auto_backend_falls_back_to_hashing_without_provider(monkeypatch):
    monkeypatch.setattr("examprep.services.embedding_service.provider_configured", lambda: False)
    assert isinstance(get_embedding_provider("auto"), HashingEmbeddingProvider)


def test_question_and_topic_embeddings_use_their_text():
    from conftest import make_record
    from examprep.core.contracts import TopicContext

    p = HashingEmbeddingProvider(dimension=32)
    rec = make_record("a", text="What is transpiration?", ref="6.3")
    ctx = TopicContext(topic_id="T1", topic_name="Water transport", content="Xylem moves water", related_concepts=("xylem",))

    assert p.embed_question(rec) == p.embed("What is transpiration? 6.3")
    assert p.embed_topic(ctx) == p.embed("Xylem moves water xylem")
    assert p.model_id == "hashing:32"

import pytest

from conftest import seed_topic
from examprep.core.errors import TopicNotFound
from examprep.services.topic_context_service import (
    find_unknown_topics,
    get_topic_context,
    get_topic_contexts,
    is_synthetic_topic,
    parse_synthetic_topic,
)


def test_synthetic_topic_is_parsed_from_its_id():
    ctx = parse_synthetic_topic("llm-cbse-8-social-studies-2")

    assert ctx.curriculum == "CBSE"
    assert ctx.grade == 8
    assert ctx.subject == "social studies"
    assert ctx.topic_name == "Social studies Topic 3"
    assert "CBSE" in ctx.content
    assert "social studies fundamentals" in ctx.related_concepts
    assert is_synthetic_topic("llm-cbse-8-maths-0")
    assert not is_synthetic_topic("T1")


@pytest.mark.parametrize("bad", ["llm-cbse", "llm-cbse-eight-maths-1", "llm-cbse-8-maths-x", "llm-cbse-8--1"])
def test_malformed_synthetic_topics_are_not_found(bad):
    with pytest.raises(TopicNotFound):
        parse_synthetic_topic(bad)


def test_stored_topic_context(db):
    seed_topic(db, "T1", "Plant nutrition")

    ctx = get_topic_context(db, "T1")

    assert ctx.topic_name == "Plant nutrition"
    assert ctx.content.startswith("Plant nutrition: Photosynthesis")
    assert ctx.related_concepts == ("photosynthesis", "chlorophyll", "stomata")
    assert ctx.syllabus_section == "T1 Plant nutrition"
    assert "chlorophyll" in ctx.grounding_text()


def test_unknown_topics_are_reported(db):
    seed_topic(db, "T1")

    assert find_unknown_topics(db, ["T1", "nope", "llm-cbse-8-maths-0"]) == ["nope"]
    with pytest.raises(TopicNotFound) as ei:
        get_topic_contexts(db, ["T1", "nope"])
    assert ei.value.topic_id == "nope"
    assert list(get_topic_contexts(db, ["T1", "T1"])) == ["T1"]

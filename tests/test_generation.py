# tests/test_generation.py
import json

import httpx
import pytest
from conftest import make_course

from course_tutor.errors import GenerationFailure
from course_tutor.generation import CourseConstraints, GenerationRequest, LLMGenerator, QuestionKind
from course_tutor.models import ConversationEntry, Role, TimeBudget, UnderstandingLevel


def _reply(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def _generator(handler):
    client = httpx.Client(base_url="http://llm.test/v1", transport=httpx.MockTransport(handler))
    return LLMGenerator(base_url="http://llm.test/v1", api_key="k", model="test-model", client=client)


def _request(**kwargs):
    course = make_course()
    defaults = dict(kind=QuestionKind.CONCEPT, course=course, concept=course.concepts[0],
                    topics={"Structure": 2, "Function": 0})
    defaults.update(kwargs)
    return GenerationRequest(**defaults)


def test_generate_question_sends_context():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return _reply("  What does the mitochondrion produce?  ")

    request = _request(history=[ConversationEntry(role=Role.LEARNER, text="ATP maybe")])
    question = _generator(handler).generate_question(request)

    assert question == "What does the mitochondrion produce?"
    body = seen[0]
    assert body["model"] == "test-model"
    assert "Organelles" in body["messages"][1]["content"]
    assert "Structure: 2/5" in body["messages"][1]["content"]
    assert "learner: ATP maybe" in body["messages"][0]["content"]


def test_evaluate_parses_topic_scores():
    payload = {
        "comprehension": 4,
        "feedback": "Solid",
        "target_topic": "Structure",
        "topic_scores": [{"topic": "Structure", "score": 4}, {"topic": "Function", "score": 3}],
        "follow_up": "",
    }
    evaluation = _generator(lambda r: _reply(json.dumps(payload))).evaluate("answer", _request())
    assert evaluation.comprehension == 4
    assert [(s.topic, s.score) for s in evaluation.topic_scores] == [("Structure", 4), ("Function", 3)]
    assert evaluation.follow_up is None


def test_evaluate_rejects_out_of_range_score():
    payload = {"comprehension": 9, "feedback": "?"}
    with pytest.raises(GenerationFailure):
        _generator(lambda r: _reply(json.dumps(payload))).evaluate("answer", _request())


def test_evaluate_rejects_non_json():
    with pytest.raises(GenerationFailure):
        _generator(lambda r: _reply("Great answer!")).evaluate("answer", _request())


def test_timeout_becomes_generation_failure():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(GenerationFailure):
        _generator(handler).generate_question(_request())


def test_http_error_becomes_generation_failure():
    with pytest.raises(GenerationFailure):
        _generator(lambda r: httpx.Response(503, json={"error": "busy"})).generate_question(_request())


def test_malformed_envelope_becomes_generation_failure():
    with pytest.raises(GenerationFailure):
        _generator(lambda r: httpx.Response(200, json={"choices": []})).generate_question(_request())


def test_generate_course():
    payload = {
        "name": "Cell Biology",
        "background_topics": ["Cell theory"],
        "concepts": [{"name": "Organelles", "topics": ["Structure"], "memorize_fields": ["Role"],
                      "memorize_items": ["Ribosome"]}],
        "connection_topics": ["Energy"],
    }
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return _reply(json.dumps(payload))

    constraints = CourseConstraints(time_budget=TimeBudget.QUICK, understanding=UnderstandingLevel.BEGINNER,
                                    document="Cells are the unit of life.")
    course = _generator(handler).generate_course("cells", constraints)

    assert course.concepts[0].memorize_items == ["Ribosome"]
    assert course.connection_topics == ["Energy"]
    prompt = seen[0]["messages"][1]["content"]
    assert "Quick session" in prompt
    assert "Cells are the unit of life." in prompt


def test_generate_course_without_concepts_fails():
    payload = {"name": "Empty", "concepts": []}
    with pytest.raises(GenerationFailure):
        _generator(lambda r: _reply(json.dumps(payload))).generate_course("x", CourseConstraints())


def test_generate_course_with_duplicate_concepts_fails():
    payload = {"name": "Dup", "concepts": [{"name": "A", "topics": ["t"]}, {"name": "A", "topics": ["u"]}]}
    with pytest.raises(GenerationFailure):
        _generator(lambda r: _reply(json.dumps(payload))).generate_course("x", CourseConstraints())

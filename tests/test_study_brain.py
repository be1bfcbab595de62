import json
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from brain.errors import ClaudeUnavailable, ExtractionFailed, ParseFailed
from brain.schemas import QuizRequest, ResourceSearchRequest
from brain.study_brain import StudyBrain, WEB_SEARCH_TOOL
from fakes import FakeClaude, claude_message


def connection_error():
    return anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))


def quiz_request(**overrides):
    payload = {
        "courseId": "course-1",
        "topics": [{"id": "topic-graphs", "title": "Graphs",
                    "microTopics": [{"id": "micro-dijkstra", "title": "Dijkstra"}]}],
        "difficulty": "exam",
        "length": 2,
        "questionType": "mcq",
    }
    payload.update(overrides)
    return QuizRequest.model_validate(payload)


def resource_request(**overrides):
    payload = {"courseTitle": "Algorithms", "topicTitle": "Dijkstra", "resourceType": "learn"}
    payload.update(overrides)
    return ResourceSearchRequest.model_validate(payload)


# ─── Readiness ───────────────────────────────────────────────

def test_unconfigured_brain_is_unavailable():
    status = StudyBrain(client=None).check_availability()
    assert status["available"] is False
    assert "ANTHROPIC_API_KEY" in status["error"]


def test_availability_is_cached_until_forced():
    fake = FakeClaude(claude_message("OK"), claude_message("ok."))
    brain = StudyBrain(client=fake, health_ttl=300)

    assert brain.check_availability()["available"]
    assert brain.check_availability()["available"]
    assert len(fake.messages.calls) == 1

    assert brain.check_availability(force=True)["available"]
    assert len(fake.messages.calls) == 2


def test_probe_failure_is_reported_not_raised():
    brain = StudyBrain(client=FakeClaude(connection_error()))
    status = brain.check_availability()
    assert status["available"] is False
    assert status["error"]


def test_unexpected_probe_reply():
    status = StudyBrain(client=FakeClaude(claude_message("Hello there"))).check_availability()
    assert status == {"available": False, "checkedAt": status["checkedAt"], "error": "Unexpected Claude response."}


# ─── Study map ───────────────────────────────────────────────

def test_study_map_from_text_excerpt(course):
    fake = FakeClaude(claude_message('{"topics": [{"id": "t1", "title": "Intro"}], "assignments": null}'))
    study_map = StudyBrain(client=fake).generate_study_map(
        course, syllabus_text="Week 1: intro", deadline_summary="Midterm Oct 2"
    )

    assert [t.id for t in study_map.topics] == ["t1"]
    assert study_map.assignments == []
    (call,) = fake.messages.calls
    prompt = call["messages"][0]["content"][0]["text"]
    assert "Week 1: intro" in prompt
    assert "Known deadlines:\nMidterm Oct 2" in prompt
    assert call["temperature"] == 0.2


def test_study_map_drops_invalid_entries(course):
    text = '{"topics": [{"id": "t1", "title": "Intro"}, {"title": "no id"}], "resources": {"t1": [{"id": "r1"}]}}'
    study_map = StudyBrain(client=FakeClaude(claude_message(text))).generate_study_map(course, syllabus_text="x")
    assert [t.id for t in study_map.topics] == ["t1"]
    assert study_map.resources == {"t1": []}


def test_study_map_needs_content(course):
    with pytest.raises(ExtractionFailed):
        StudyBrain(client=FakeClaude()).generate_study_map(course)


def test_study_map_requires_client(course):
    with pytest.raises(ClaudeUnavailable):
        StudyBrain(client=None).generate_study_map(course, syllabus_text="x")


def test_empty_response_text(course):
    fake = FakeClaude(claude_message("", blocks=[]))
    with pytest.raises(ExtractionFailed, match="missing text payload"):
        StudyBrain(client=fake).generate_study_map(course, syllabus_text="x")


def test_unrecoverable_json_raises_parse_failed(course):
    fake = FakeClaude(claude_message('{"topics": [} oops'))
    with pytest.raises(ParseFailed):
        StudyBrain(client=fake).generate_study_map(course, syllabus_text="x")


# ─── Quiz ────────────────────────────────────────────────────

def test_quiz_uses_message_id_and_reconciles_answers():
    records = [
        {"id": "q1", "prompt": "Greedy?", "choices": ["A) Dijkstra", "B) Bellman-Ford"], "answer": "A",
         "explanation": "Greedy choice", "relatedMicroTopicIds": ["micro-dijkstra"], "topicId": "topic-graphs"},
        {"id": "q2", "prompt": "Negative edges?", "choices": ["A) Dijkstra", "B) Bellman-Ford"],
         "answer": "Bellman-Ford"},
    ]
    text = "Here is your quiz:\n```json\n" + json.dumps(records) + "\n```"
    fake = FakeClaude(claude_message(text, message_id="msg_quiz_42"))

    quiz = StudyBrain(client=fake).generate_quiz(quiz_request())

    assert quiz.quiz_id == "msg_quiz_42"
    assert [[c.correct for c in q.choices] for q in quiz.questions] == [[True, False], [False, True]]
    assert fake.messages.calls[0]["temperature"] == 0.3
    assert "micro-dijkstra" in fake.messages.calls[0]["messages"][0]["content"][0]["text"]


def test_intro_quiz_runs_warmer():
    fake = FakeClaude(claude_message('[{"prompt": "?", "choices": ["A) a"], "answer": "A"}]'))
    StudyBrain(client=fake).generate_quiz(quiz_request(difficulty="intro"))
    assert fake.messages.calls[0]["temperature"] == 0.6


def test_truncated_quiz_keeps_complete_questions():
    text = '[{"prompt": "One?", "choices": ["A) x", "B) y"], "answer": "B"}, {"prompt": "Tw'
    fake = FakeClaude(claude_message(text, stop_reason="max_tokens"))
    quiz = StudyBrain(client=fake).generate_quiz(quiz_request())
    assert quiz.questions[0].prompt == "One?"
    assert quiz.questions[1].prompt == "Tw"


def test_quiz_without_client_falls_back():
    quiz = StudyBrain(client=None).generate_quiz(quiz_request(length=3))
    assert quiz.quiz_id.startswith("quiz-")
    assert len(quiz.questions) == 3
    assert all(sum(c.correct for c in q.choices) == 1 for q in quiz.questions)


# ─── Resources ───────────────────────────────────────────────

def test_resource_search_follows_up_after_tool_use():
    search_turn = claude_message(
        "", stop_reason="tool_use",
        blocks=[SimpleNamespace(type="server_tool_use", id="srvtoolu_1", name="web_search", input={"query": "x"})],
    )
    answer = {
        "resources": [
            {"link": "https://example.com/dijkstra", "name": "Dijkstra visualised", "description": "Animation",
             "quality": "high", "type": "interactive"},
            {"url": "https://example.com/missing-summary", "title": "No summary"},
        ],
        "searchQuality": "excellent",
    }
    final_turn = claude_message("Found these:\n" + json.dumps(answer))
    fake = FakeClaude(search_turn, final_turn)

    response = StudyBrain(client=fake).find_resources(resource_request())

    first, follow_up = fake.messages.calls
    assert first["tools"] == [WEB_SEARCH_TOOL]
    assert follow_up["messages"][1] == {"role": "assistant", "content": search_turn.content}
    assert [r.url for r in response.resources] == ["https://example.com/dijkstra"]
    result = response.resources[0]
    assert (result.summary, result.quality, result.content_type, result.resource_type) == (
        "Animation", "high", "interactive", "learn"
    )
    assert response.search_quality == "excellent"
    assert response.message == "Found 1 resource"


def test_resources_capped_and_quality_derived():
    data = {"resources": [
        {"url": f"https://example.com/{idx}", "title": f"R{idx}", "summary": "s", "quality": "stellar"}
        for idx in range(8)
    ]}
    response = StudyBrain.resources_from_json(data, resource_request(maxResults=6))
    assert len(response.resources) == 6
    assert response.search_quality == "good"
    assert {r.quality for r in response.resources} == {"medium"}


def test_missing_resource_list_is_poor():
    response = StudyBrain.resources_from_json({"message": "nothing"}, resource_request())
    assert response.resources == []
    assert response.search_quality == "poor"
    assert response.message == "No valid resources found"


def test_resource_search_requires_client():
    with pytest.raises(ClaudeUnavailable):
        StudyBrain(client=None).find_resources(resource_request())


# ─── Chat ────────────────────────────────────────────────────

def test_chat_returns_stripped_text():
    fake = FakeClaude(claude_message("  Try the practice quiz.  "))
    reply = StudyBrain(client=fake).chat("system", [{"role": "user", "content": "help"}])
    assert reply == "Try the practice quiz."
    assert fake.messages.calls[0]["system"] == "system"


def test_chat_stream_yields_chunks():
    fake = FakeClaude(stream_chunks=["Dijkstra ", "is greedy."])
    chunks = list(StudyBrain(client=fake).chat_stream("system", [{"role": "user", "content": "?"}]))
    assert chunks == ["Dijkstra ", "is greedy."]

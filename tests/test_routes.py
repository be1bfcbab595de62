import json

import anthropic
import fitz
import httpx

from brain.chat import UNAVAILABLE_REPLY
from fakes import FakeClaude, claude_message

QUIZ_BODY = {
    "courseId": "course-1",
    "topics": [{"id": "topic-graphs", "title": "Graphs",
                "microTopics": [{"id": "micro-dijkstra", "title": "Dijkstra", "description": "Greedy SSSP"}]}],
    "difficulty": "auto",
    "length": 2,
    "questionType": "mcq",
}


def chat_body(study_map_payload, **overrides):
    body = {
        "courseId": "course-1",
        "message": "Can you quiz me on this?",
        "conversationHistory": [
            {"id": "m0", "role": "system", "content": "Session started", "timestamp": "2025-09-20T10:00:00Z"},
            {"id": "m1", "role": "user", "content": "Hi", "timestamp": "2025-09-20T10:00:01Z"},
            {"id": "m2", "role": "assistant", "content": "Hello!", "timestamp": "2025-09-20T10:00:02Z"},
        ],
        "context": {
            "courseId": "course-1",
            "courseName": "Algorithms",
            "topics": study_map_payload["topics"],
            "completedMicroTopicIds": ["micro-dijkstra"],
            "upcomingDeadlines": study_map_payload["assignments"],
            "quizHistory": {"weakTopicIds": ["topic-graphs"], "recentScores": [60, 80]},
        },
    }
    body.update(overrides)
    return body


def sample_pdf(text):
    doc = fitz.open()
    doc.new_page().insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


# ─── Health ──────────────────────────────────────────────────

def test_health_without_claude(make_client):
    response = make_client().get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["claudeEnabled"] is False
    assert body["claudeConfigured"] is False
    assert body["claudeLastChecked"].endswith("Z")


def test_health_with_claude(make_client):
    body = make_client(FakeClaude(claude_message("OK"))).get("/health").json()
    assert body["claudeEnabled"] is True
    assert body["claudeError"] is None


# ─── Quiz ────────────────────────────────────────────────────

def test_quiz_falls_back_without_claude(make_client):
    response = make_client().post("/api/quiz", json=QUIZ_BODY)
    assert response.status_code == 200
    body = response.json()
    assert body["quizId"].startswith("quiz-")
    assert len(body["questions"]) == 2
    assert body["questions"][0]["relatedMicroTopicIds"] == ["micro-dijkstra"]


def test_quiz_with_claude(make_client):
    fake = FakeClaude(claude_message('[{"prompt": "Greedy?", "choices": ["A) yes", "B) no"], "answer": "A"}]',
                                     message_id="msg_route_quiz"))
    body = make_client(fake).post("/api/quiz", json=QUIZ_BODY).json()
    assert body["quizId"] == "msg_route_quiz"
    assert body["questions"][0]["choices"][0] == {"id": "choice-a", "label": "yes", "correct": True}


def test_quiz_rejects_bad_body(make_client):
    response = make_client().post("/api/quiz", json={**QUIZ_BODY, "length": 50, "topics": []})
    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Invalid request format"
    assert {tuple(err["loc"]) for err in body["error"]} == {("topics",), ("length",)}


def test_parse_failure_maps_to_error_body(make_client):
    fake = FakeClaude(claude_message("no json here"))
    response = make_client(fake).post("/api/quiz", json=QUIZ_BODY)
    assert response.status_code == 500
    assert response.json() == {"error": "extraction_failed", "message": "Failed to extract JSON from model response"}


# ─── Resources ───────────────────────────────────────────────

RESOURCE_BODY = {"courseTitle": "Algorithms", "topicTitle": "Dijkstra", "resourceType": "practice", "maxResults": 3}


def test_resource_search_without_claude(make_client):
    response = make_client().post("/api/resources/search", json=RESOURCE_BODY)
    assert response.status_code == 503
    assert response.json()["error"] == "claude_unavailable"


def test_resource_search_claude_error(make_client):
    error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
    response = make_client(FakeClaude(error)).post("/api/resources/search", json=RESOURCE_BODY)
    assert response.status_code == 502
    assert response.json()["error"] == "claude_error"


def test_resource_search_results(make_client):
    text = json.dumps({"resources": [{"url": "https://example.com/p", "title": "Problems", "summary": "Set 1"}]})
    body = make_client(FakeClaude(claude_message(text))).post("/api/resources/search", json=RESOURCE_BODY).json()
    assert body["success"] is True
    assert body["resources"][0]["resourceType"] == "practice"
    assert body["searchQuality"] == "poor"


def test_resource_search_rejects_unknown_type(make_client):
    response = make_client().post("/api/resources/search", json={**RESOURCE_BODY, "resourceType": "watch"})
    assert response.status_code == 400


# ─── Chat ────────────────────────────────────────────────────

def test_chat_without_claude(make_client, study_map_payload):
    body = make_client().post("/api/chat", json=chat_body(study_map_payload)).json()
    assert body["message"]["content"] == UNAVAILABLE_REPLY
    assert body["message"]["role"] == "assistant"
    assert body["suggestedActions"] == []
    assert body["conversationId"].startswith("conv-")


def test_chat_reply_with_actions(make_client, study_map_payload):
    fake = FakeClaude(claude_message("Let's review Graphs first, then take a quiz."))
    client = make_client(fake)

    body = client.post("/api/chat", json=chat_body(study_map_payload, conversationId="conv-7")).json()

    assert body["conversationId"] == "conv-7"
    types = [a["type"] for a in body["suggestedActions"]]
    assert types == ["generate_quiz", "exam_prep", "navigate"]
    assert body["suggestedActions"][2]["payload"] == {"topicId": "topic-graphs"}
    assert body["message"]["metadata"]["suggestedActions"] == body["suggestedActions"]

    sent = fake.messages.calls[0]
    assert [m["role"] for m in sent["messages"]] == ["user", "assistant", "user"]
    assert "50% (1/2 microtopics completed)" in sent["system"]
    assert "70% average" in sent["system"]


def test_chat_stream_is_ndjson(make_client, study_map_payload):
    fake = FakeClaude(stream_chunks=["Graphs ", "are fun."])
    response = make_client(fake).post("/api/chat", json=chat_body(study_map_payload, stream=True))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    lines = [json.loads(line) for line in response.text.splitlines()]
    assert lines[:2] == [{"chunk": "Graphs "}, {"chunk": "are fun."}]
    assert lines[2]["done"] is True


def test_chat_rejects_empty_message(make_client, study_map_payload):
    response = make_client().post("/api/chat", json=chat_body(study_map_payload, message=""))
    assert response.status_code == 400


# ─── Syllabus ────────────────────────────────────────────────

def test_syllabus_requires_course_name(make_client):
    response = make_client().post("/api/syllabus/parse", data={"courseName": "A"})
    assert response.status_code == 400
    assert response.json()["error"][0]["loc"] == ["courseName"]


def test_syllabus_upload_without_claude(make_client):
    pdf = sample_pdf("Midterm Exam Oct 2 graphs")
    response = make_client().post(
        "/api/syllabus/parse",
        data={"courseName": "Algorithms", "courseNumber": "CS 310", "term": "Fall 2025"},
        files={"syllabi": ("syllabus.pdf", pdf, "application/pdf")},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Draft study map generated"
    assert body["studyMap"]["course"]["courseNumber"] == "CS 310"
    assert body["studyMap"]["course"]["id"].startswith("course-")
    (deadline,) = body["studyMap"]["assignments"]
    assert deadline["dueDate"] == "2025-10-02T00:00:00.000Z"
    assert deadline["relatedTopicIds"] == ["topic-graphs"]
    assert body["warnings"] == ["Claude API not configured. Please set ANTHROPIC_API_KEY."]


def test_syllabus_without_files(make_client):
    body = make_client().post("/api/syllabus/parse", data={"courseName": "Algorithms"}).json()
    assert body["warnings"] == ["No PDF files provided. Please upload a syllabus PDF."]


# ─── Courses ─────────────────────────────────────────────────

def test_course_lifecycle(make_client, study_map_payload):
    client = make_client()

    created = client.post("/api/courses", json={"studyMap": study_map_payload})
    assert created.status_code == 201
    assert created.json()["studyMap"]["course"]["id"] == "course-1"

    listing = client.get("/api/courses").json()
    assert listing["courseOrder"] == ["course-1"]

    added = client.post("/api/courses/course-1/resources", json={
        "topicId": "subtopic-shortest-paths",
        "resource": {"title": "Notes", "url": "https://example.com/notes", "summary": "Lecture notes", "type": "doc"},
    }).json()
    assert added["success"] is True
    assert added["message"] == "Resource added successfully"

    result = client.post("/api/courses/course-1/quiz-results", json={
        "id": "result-1", "quizId": "quiz-1", "completedAt": "2025-09-20T10:30:00Z", "score": 75,
        "totalQuestions": 4, "difficulty": "auto", "topicIds": ["topic-graphs"], "topicTitles": ["Graphs"],
    }).json()
    assert result["course"]["quizResults"][0]["id"] == "result-1"

    deleted = client.delete("/api/courses/course-1")
    assert deleted.json() == {"success": True, "message": "Course deleted"}
    assert client.delete("/api/courses/course-1").status_code == 404


def test_course_routes_report_missing_records(make_client, study_map_payload):
    client = make_client()
    client.post("/api/courses", json={"studyMap": study_map_payload})

    response = client.post("/api/courses/course-1/resources", json={
        "topicId": "topic-missing",
        "resource": {"title": "t", "url": "https://example.com", "summary": "s", "type": "doc"},
    })
    assert response.status_code == 404
    assert response.json()["error"] == "topic_not_found"

    response = client.patch("/api/courses/course-missing/topics", json={"topics": []})
    assert response.status_code == 404
    assert response.json()["error"] == "course_not_found"


def test_course_body_validation(make_client):
    response = make_client().post("/api/courses", json={"studyMap": {"topics": []}})
    assert response.status_code == 422

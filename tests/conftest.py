import pytest
from fastapi.testclient import TestClient

from brain.schemas import CourseMetadata, StudyMap
from brain.study_brain import StudyBrain


SAMPLE_STUDY_MAP = {
    "course": {"id": "course-1", "name": "Algorithms", "courseNumber": "CS 310", "term": "Fall 2025",
               "createdAt": "2025-09-01T00:00:00.000Z"},
    "topics": [
        {
            "id": "topic-graphs",
            "title": "Graphs",
            "description": "Graph algorithms",
            "tags": ["exam-1"],
            "subTopics": [
                {
                    "id": "subtopic-shortest-paths",
                    "title": "Shortest paths",
                    "description": "Single-source shortest paths",
                    "microTopics": [
                        {"id": "micro-dijkstra", "title": "Dijkstra", "description": "Greedy SSSP",
                         "tags": ["greedy"], "examScopeIds": ["exam-1"], "completed": False},
                        {"id": "micro-bellman-ford", "title": "Bellman-Ford", "description": "Negative edges",
                         "tags": [], "examScopeIds": [], "completed": False},
                    ],
                }
            ],
        }
    ],
    "assignments": [
        {"id": "exam-1", "title": "Midterm", "description": "Covers graphs", "dueDate": "2025-10-02T00:00:00.000Z",
         "type": "exam", "relatedTopicIds": ["topic-graphs"], "scopeText": "Graphs"}
    ],
    "resources": {},
    "exams": [],
}


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("STUDYMAP_DATA_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def study_map_payload():
    return {**SAMPLE_STUDY_MAP}


@pytest.fixture
def study_map():
    return StudyMap.model_validate(SAMPLE_STUDY_MAP)


@pytest.fixture
def course():
    return CourseMetadata(id="course-1", name="Algorithms", course_number="CS 310", term="Fall 2025",
                          created_at="2025-09-01T00:00:00.000Z")


@pytest.fixture
def make_client(data_dir):
    """Build a TestClient whose app uses ``StudyBrain(client=fake)``."""
    from server import app

    def _make(fake=None):
        app.state.brain = StudyBrain(client=fake)
        return TestClient(app)

    return _make

"""Course persistence schemas."""

from typing import Dict, List, Literal, Optional

from pydantic import Field

from brain.schemas import (
    CamelModel,
    Difficulty,
    QuizResponse,
    StrList,
    StudyMap,
    Topic,
)


class QuizResult(CamelModel):
    id: str = Field(min_length=1)
    quiz_id: str
    completed_at: str
    score: float
    total_questions: int = Field(ge=0)
    difficulty: Difficulty
    topic_ids: StrList = []
    topic_titles: StrList = []
    weak_topic_ids: Optional[List[str]] = None


class CourseRecord(CamelModel):
    study_map: StudyMap
    quiz_history: List[QuizResponse] = []
    quiz_results: List[QuizResult] = []
    last_updated: str


class CourseDatabase(CamelModel):
    courses: Dict[str, CourseRecord] = {}
    course_order: List[str] = []


# ─── Request bodies ──────────────────────────────────────────

class SaveCourseRequest(CamelModel):
    study_map: StudyMap


class ReplaceTopicsRequest(CamelModel):
    topics: List[Topic]


class RecordQuizRequest(CamelModel):
    quiz: QuizResponse


class NewResource(CamelModel):
    id: Optional[str] = None
    title: str = Field(min_length=1)
    url: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    type: str = Field(min_length=1)
    duration: Optional[str] = None
    thumbnail: Optional[str] = None
    ai_generated: Optional[bool] = None
    ai_search_query: Optional[str] = None
    ai_quality: Optional[Literal["high", "medium", "low"]] = None
    added_at: Optional[str] = None


class AddResourceRequest(CamelModel):
    topic_id: str = Field(min_length=1)
    resource: NewResource

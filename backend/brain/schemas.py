"""Study map, quiz, resource search and chat schemas.

Field names are snake_case in Python and camelCase on the wire, which is
also the shape Claude is prompted to emit.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DeadlineType = Literal["exam", "assignment", "project", "misc"]
Difficulty = Literal["auto", "intro", "exam"]
QuestionType = Literal["mcq", "short", "mix"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _list_or_empty(value: Any) -> Any:
    return [] if value is None else value


StrList = Annotated[List[str], BeforeValidator(_list_or_empty)]


def utc_now_iso() -> str:
    """Current UTC time as the `2025-09-01T12:00:00.000Z` strings stored on the wire."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ─── Study map ───────────────────────────────────────────────

class CourseMetadata(CamelModel):
    id: str
    name: str
    course_number: Optional[str] = None
    term: Optional[str] = None
    created_at: str


class MicroTopic(CamelModel):
    id: str
    title: str
    description: str = ""
    tags: StrList = []
    exam_scope_ids: StrList = []
    completed: bool = False
    rationale: Optional[str] = None

    @field_validator("completed", mode="before")
    @classmethod
    def _completed_bool(cls, value: Any) -> bool:
        return bool(value)


class SubTopic(CamelModel):
    id: str
    title: str
    description: str = ""
    micro_topics: Annotated[List[MicroTopic], BeforeValidator(_list_or_empty)] = []
    rationale: Optional[str] = None


class Topic(CamelModel):
    id: str
    title: str
    description: str = ""
    sub_topics: Annotated[List[SubTopic], BeforeValidator(_list_or_empty)] = []
    tags: StrList = []
    rationale: Optional[str] = None

    def contains(self, node_id: str) -> bool:
        """True if ``node_id`` is this topic or one of its sub/micro topics."""
        if self.id == node_id:
            return True
        return any(
            sub.id == node_id or any(micro.id == node_id for micro in sub.micro_topics)
            for sub in self.sub_topics
        )


class UpcomingItem(CamelModel):
    id: str
    title: str
    description: Optional[str] = None
    due_date: str
    type: DeadlineType = "misc"
    related_topic_ids: StrList = []
    scope_text: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, value: Any) -> str:
        value = str(value or "").lower()
        return value if value in ("exam", "assignment", "project") else "misc"


class ExamScope(CamelModel):
    id: str
    title: str
    description: str = ""
    date: Optional[str] = None
    related_topic_ids: StrList = []
    uncertainty: Optional[str] = None


class ResourceItem(CamelModel):
    id: str
    title: str
    url: str
    summary: str = ""
    type: str = "article"  # video | article | doc | interactive
    duration: Optional[str] = None
    thumbnail: Optional[str] = None
    ai_generated: Optional[bool] = None
    ai_search_query: Optional[str] = None
    ai_quality: Optional[Literal["high", "medium", "low"]] = None
    added_at: Optional[str] = None


class StudyMap(CamelModel):
    course: CourseMetadata
    topics: List[Topic] = []
    assignments: List[UpcomingItem] = []
    resources: Dict[str, List[ResourceItem]] = {}
    exams: List[ExamScope] = []

    def has_node(self, node_id: str) -> bool:
        return any(topic.contains(node_id) for topic in self.topics)


class ParseSyllabusResponse(CamelModel):
    study_map: StudyMap
    message: str
    warnings: Optional[List[str]] = None


# ─── Quiz ────────────────────────────────────────────────────

class QuizChoice(CamelModel):
    id: str
    label: str
    correct: bool = False


class QuizQuestion(CamelModel):
    id: str
    prompt: str
    type: QuestionType = "mcq"
    choices: List[QuizChoice] = []
    explanation: str = ""
    related_micro_topic_ids: List[str] = []
    topic_id: Optional[str] = None


class QuizMicroTopic(CamelModel):
    id: str
    title: str
    description: str = ""
    exam_scope_ids: List[str] = []


class QuizTopicSelection(CamelModel):
    id: str
    title: str
    micro_topics: List[QuizMicroTopic] = []


class QuizRequest(CamelModel):
    course_id: str = Field(min_length=1)
    topics: List[QuizTopicSelection] = Field(min_length=1)
    difficulty: Difficulty
    length: int = Field(ge=1, le=20)
    question_type: QuestionType


class QuizResponse(CamelModel):
    quiz_id: str = Field(min_length=1)
    generated_at: str = Field(min_length=1)
    questions: List[QuizQuestion]
    topics: Optional[List[QuizTopicSelection]] = None


# ─── Resource search ─────────────────────────────────────────

class ResourceSearchRequest(CamelModel):
    course_title: str = Field(min_length=1)
    topic_title: str = Field(min_length=1)
    topic_description: Optional[str] = None
    resource_type: Literal["learn", "practice", "both"]
    max_results: int = Field(default=10, ge=1, le=25)


class ResourceSearchResult(CamelModel):
    url: str
    title: str
    summary: str
    resource_type: str
    quality: Literal["high", "medium", "low"] = "medium"
    content_type: str = "article"


class ResourceSearchResponse(CamelModel):
    success: bool = True
    resources: List[ResourceSearchResult]
    search_quality: Literal["excellent", "good", "poor"]
    message: Optional[str] = None


# ─── Chat ────────────────────────────────────────────────────

class TopicContext(CamelModel):
    topic_id: str
    topic_title: str
    level: Literal["topic", "subtopic", "microtopic"]


class ChatMessage(CamelModel):
    id: str
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: str
    topic_context: Optional[TopicContext] = None
    metadata: Optional[Dict[str, Any]] = None


class QuizHistorySummary(CamelModel):
    weak_topic_ids: List[str] = []
    recent_scores: List[float] = []


class ChatContext(CamelModel):
    course_id: str
    course_name: str
    topics: List[Topic] = []
    completed_micro_topic_ids: List[str] = []
    upcoming_deadlines: List[UpcomingItem] = []
    quiz_history: Optional[QuizHistorySummary] = None
    syllabus_text: Optional[str] = None


class ChatAction(CamelModel):
    type: str
    label: str
    payload: Dict[str, Any] = {}


class ChatRequest(CamelModel):
    course_id: str = Field(min_length=1)
    conversation_id: Optional[str] = None
    message: str = Field(min_length=1)
    conversation_history: List[ChatMessage] = []
    context: ChatContext
    topic_context: Optional[TopicContext] = None
    stream: bool = False


class ChatResponse(CamelModel):
    conversation_id: str
    message: ChatMessage
    suggested_actions: List[ChatAction] = []


# ─── Syllabus upload ─────────────────────────────────────────

class SyllabusForm(CamelModel):
    course_name: str = Field(min_length=2)
    course_number: Optional[str] = None
    term: Optional[str] = None

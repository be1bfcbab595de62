"""StudyBrain: the Claude-backed service behind the syllabus, quiz, resource and chat endpoints."""
from __future__ import annotations

import base64
import logging
import time
from typing import Any, Iterator, Optional

import anthropic
from pydantic import BaseModel, ValidationError

from brain.errors import ClaudeUnavailable, ExtractionFailed
from brain.json_repair import ARRAY, OBJECT, parse_model_json
from brain.quiz import fallback_questions, reconcile_questions
from brain.schemas import (
    CourseMetadata,
    ExamScope,
    QuizRequest,
    QuizResponse,
    ResourceItem,
    ResourceSearchRequest,
    ResourceSearchResponse,
    ResourceSearchResult,
    StudyMap,
    Topic,
    UpcomingItem,
)
from server import config

logger = logging.getLogger(__name__)

STUDY_MAP_SYSTEM = (
    "You convert university syllabi into structured study maps. "
    "Respond with ONLY valid, minified JSON matching the schema described. "
    "Do NOT include any markdown formatting, code blocks, or explanatory text. "
    "Ensure all property names and string values use double quotes. "
    "Do NOT use trailing commas. "
    "IDs should be kebab-case (topic-graph-basics, subtopic-shortest-paths, micro-dijkstra). "
    "Every microtopic must include tags, examScopeIds, and completed=false. "
    "Resources should only include trusted URLs. "
    "Extract ALL topics, assignments, exams, and dates from the document."
)

STUDY_MAP_SCHEMA = """Return JSON with:
{
  "topics": [
    {
      "id": "topic-...", "title": "...", "description": "...", "tags": ["exam-1"], "rationale": "...",
      "subTopics": [
        {
          "id": "subtopic-...", "title": "...", "description": "...", "rationale": "...",
          "microTopics": [
            {"id": "micro-...", "title": "...", "description": "...", "tags": ["analysis"],
             "examScopeIds": ["exam-1"], "completed": false, "rationale": "..."}
          ]
        }
      ]
    }
  ],
  "assignments": [
    {"id": "assignment-...", "title": "...", "description": "...", "dueDate": "YYYY-MM-DDTHH:mm:ss.sssZ",
     "type": "exam|project|assignment|misc", "relatedTopicIds": ["topic-..."], "scopeText": "..."}
  ],
  "resources": {
    "topic-id": [
      {"id": "resource-...", "title": "...", "url": "https://", "summary": "...",
       "type": "video|article|doc|interactive", "duration": "optional"}
    ]
  },
  "exams": [
    {"id": "exam-1", "title": "...", "description": "...", "date": "YYYY-MM-DD",
     "relatedTopicIds": ["topic-..."], "uncertainty": "optional note"}
  ]
}"""

QUIZ_SYSTEM = (
    "You are a study coach that writes fair but rigorous multiple choice quizzes. "
    "ALWAYS provide exactly 4 choices with ONLY ONE correct answer for every question. "
    "Use 'mcq' as the type for all questions. "
    "Use the EXACT microtopic IDs provided in the user message for relatedMicroTopicIds field. "
    "For each question, assign ONE topicId from the topics provided - this helps identify weak spots. "
    "Return ONLY valid JSON array with no markdown or explanation."
)

RESOURCE_FORMAT = (
    '{"resources": [{"url": "...", "title": "...", "summary": "1-2 sentences explaining what student will '
    'learn/do", "resourceType": "learn", "quality": "high", "contentType": "video"}], '
    '"searchQuality": "excellent", "message": "Found X resources"}'
)

RESOURCE_SYSTEM = (
    "You are an expert educational resource curator. Find SPECIFIC, DIRECTLY USABLE learning materials. "
    "Good examples: YouTube tutorials, Khan Academy videos, interactive demos, blog posts with code examples, "
    "practice problem sites. "
    "BAD examples: University course homepages, textbook purchase pages, generic course catalogs. "
    "Each resource must be something a student can immediately use to learn or practice. "
    "Return ONLY a JSON object with no extra text. "
    f"Format: {RESOURCE_FORMAT}"
)

RESOURCE_FOLLOW_UP_SYSTEM = (
    "You are an expert educational resource curator. Filter search results to find ONLY directly usable "
    "learning materials. "
    "EXCLUDE: Generic course homepages, university catalogs, textbook stores, paywalled content, "
    "login-required sites. "
    f"Return ONLY this JSON structure with NO markdown: {RESOURCE_FORMAT}"
)

RESOURCE_TYPE_INSTRUCTIONS = {
    "learn": (
        "Find DIRECT learning resources like YouTube tutorials/lectures, blog posts with explanations, "
        "interactive demos, Khan Academy lessons, educational websites with examples and visualizations. "
        "AVOID generic course homepages or syllabi."
    ),
    "practice": (
        "Find DIRECT practice resources like coding challenge sites, interactive problem sets, practice "
        "worksheets with solutions, simulation tools, online calculators/tools. AVOID generic course homepages."
    ),
    "both": (
        "Find DIRECT educational resources - both explanatory content (videos, tutorials, examples) and "
        "hands-on practice (exercises, interactive tools). AVOID generic course homepages."
    ),
}

WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 3}


def response_text(message: Any) -> str:
    """Concatenated text blocks of a Messages API response."""
    return "".join(
        getattr(block, "text", "") for block in message.content if getattr(block, "type", None) == "text"
    )


def is_truncated(message: Any) -> bool:
    return getattr(message, "stop_reason", None) == "max_tokens"


def _first(entry: dict, *keys: str) -> Any:
    for key in keys:
        if entry.get(key):
            return entry[key]
    return None


def validate_items(model: type[BaseModel], items: Any, label: str) -> list:
    """Validate each entry of ``items`` as ``model``, dropping the ones that fail."""
    if not isinstance(items, list):
        if items is not None:
            logger.warning("Expected a list of %s entries, got %s", label, type(items).__name__)
        return []
    valid = []
    for idx, item in enumerate(items):
        try:
            valid.append(model.model_validate(item))
        except ValidationError as exc:
            logger.warning("Dropping invalid %s entry %d: %s", label, idx, exc.errors()[:3])
    return valid


class StudyBrain:
    """Wraps an Anthropic client. ``client=None`` means Claude is not configured."""

    def __init__(self, client: Optional[anthropic.Anthropic] = None, model: str = config.CLAUDE_MODEL,
                 health_ttl: float = config.CLAUDE_HEALTH_TTL_SECONDS):
        self.client = client
        self.model = model
        self.health_ttl = health_ttl
        self._last_health: Optional[dict] = None

    @classmethod
    def from_config(cls) -> "StudyBrain":
        api_key = config.ANTHROPIC_API_KEY
        if not api_key:
            logger.warning("ANTHROPIC_API_KEY not set; Claude features are disabled")
            return cls(client=None)
        return cls(client=anthropic.Anthropic(api_key=api_key, timeout=config.CLAUDE_TIMEOUT_SECONDS))

    @property
    def configured(self) -> bool:
        return self.client is not None

    def _require_client(self) -> anthropic.Anthropic:
        if self.client is None:
            raise ClaudeUnavailable()
        return self.client

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def check_availability(self, force: bool = False) -> dict:
        """Cached readiness probe: ``{available, checkedAt[, error]}``.

        ``checkedAt`` is a Unix timestamp in seconds.
        """
        now = time.time()
        if self.client is None:
            self._last_health = {"available": False, "checkedAt": now, "error": "ANTHROPIC_API_KEY not configured."}
            return self._last_health

        if not force and self._last_health and now - self._last_health["checkedAt"] < self.health_ttl:
            return self._last_health

        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=8,
                temperature=0,
                system="You are a readiness probe. Reply only with OK.",
                messages=[{"role": "user", "content": [{"type": "text", "text": "Respond with OK"}]}],
            )
        except anthropic.APIError as exc:
            logger.warning("Claude readiness probe failed: %s", exc)
            self._last_health = {"available": False, "checkedAt": now, "error": str(exc)}
            return self._last_health

        if response_text(message).strip().upper().startswith("OK"):
            self._last_health = {"available": True, "checkedAt": now}
        else:
            self._last_health = {"available": False, "checkedAt": now, "error": "Unexpected Claude response."}
        return self._last_health

    # ------------------------------------------------------------------
    # Study map
    # ------------------------------------------------------------------

    def generate_study_map(
        self,
        course: CourseMetadata,
        syllabus_pdf: Optional[bytes] = None,
        syllabus_text: Optional[str] = None,
        deadline_summary: Optional[str] = None,
    ) -> StudyMap:
        client = self._require_client()

        deadline_hint = f"Known deadlines:\n{deadline_summary}\n\n" if deadline_summary and deadline_summary.strip() else ""
        course_info = (
            f"Course: {course.name} ({course.course_number or 'n/a'})\n"
            f"Term: {course.term or 'unspecified'}\n"
            f"{deadline_hint}"
        )

        if syllabus_pdf:
            content = [
                {
                    "type": "document",
                    "source": {
                        "type": "base64",
                        "media_type": "application/pdf",
                        "data": base64.standard_b64encode(syllabus_pdf).decode("ascii"),
                    },
                },
                {
                    "type": "text",
                    "text": f"{course_info}\n\nAnalyze the uploaded syllabus PDF and extract all course content.\n\n{STUDY_MAP_SCHEMA}",
                },
            ]
        elif syllabus_text:
            excerpt = syllabus_text[: config.SYLLABUS_TEXT_LIMIT]
            content = [{"type": "text", "text": f'{course_info}\n\nSyllabus excerpt:\n"""{excerpt}"""\n\n{STUDY_MAP_SCHEMA}'}]
        else:
            raise ExtractionFailed("No syllabus content provided")

        message = client.messages.create(
            model=self.model,
            max_tokens=config.STUDY_MAP_MAX_TOKENS,
            temperature=0.2,
            system=STUDY_MAP_SYSTEM,
            messages=[{"role": "user", "content": content}],
        )
        text = response_text(message)
        logger.info(
            "Study map response: %d chars, stop_reason=%s", len(text), getattr(message, "stop_reason", None)
        )
        if not text:
            raise ExtractionFailed("Claude response missing text payload.")
        if is_truncated(message):
            logger.warning("Study map response was truncated at %d output tokens", config.STUDY_MAP_MAX_TOKENS)

        data = parse_model_json(text, shape=OBJECT, truncated=is_truncated(message))
        study_map = self.study_map_from_json(course, data)
        logger.info(
            "Study map parsed: %d topic(s), %d assignment(s), %d exam(s)",
            len(study_map.topics), len(study_map.assignments), len(study_map.exams),
        )
        return study_map

    @staticmethod
    def study_map_from_json(course: CourseMetadata, data: dict) -> StudyMap:
        resources = {}
        raw_resources = data.get("resources")
        if isinstance(raw_resources, dict):
            for topic_id, items in raw_resources.items():
                resources[topic_id] = validate_items(ResourceItem, items, "resource")

        return StudyMap(
            course=course,
            topics=validate_items(Topic, data.get("topics"), "topic"),
            assignments=validate_items(UpcomingItem, data.get("assignments"), "assignment"),
            resources=resources,
            exams=validate_items(ExamScope, data.get("exams"), "exam"),
        )

    # ------------------------------------------------------------------
    # Quiz
    # ------------------------------------------------------------------

    def generate_quiz(self, request: QuizRequest) -> QuizResponse:
        generated_at = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())

        if self.client is None:
            logger.info("No Claude client, returning fallback questions")
            return QuizResponse(
                quiz_id=f"quiz-{int(time.time() * 1000)}",
                generated_at=generated_at,
                questions=fallback_questions(request.topics, request.length),
                topics=request.topics,
            )

        topic_summary = "\n".join(
            f"Topic: {topic.title} (ID: {topic.id})\nMicrotopics:\n"
            + "\n".join(
                f"- ID: {micro.id}, Title: {micro.title}, Description: {micro.description}"
                for micro in topic.micro_topics
            )
            + "\n"
            for topic in request.topics
        )
        prompt = f"""Generate {request.length} multiple choice (MCQ) questions for course {request.course_id}.

Difficulty: {request.difficulty}
Topics:
{topic_summary}

IMPORTANT FORMAT RULES:
- ALL questions must be type "mcq"
- Provide exactly 4 choices as strings like ["A) First option", "B) Second option", "C) Third option", "D) Fourth option"]
- Include an "answer" field with the correct letter (e.g., "A", "B", "C", or "D") - ONLY ONE correct answer per question
- Every question must have an "explanation" field
- Every question must have "relatedMicroTopicIds" array using the EXACT IDs from the microtopics list above
- Every question must have a "topicId" field with the ID of the ONE main topic it belongs to

Return JSON array: [{{id,prompt,type:"mcq",choices:["A) ...","B) ...","C) ...","D) ..."],answer:"A",explanation,relatedMicroTopicIds:["micro-..."],topicId:"topic-..."}}]"""

        message = self.client.messages.create(
            model=self.model,
            max_tokens=config.QUIZ_MAX_TOKENS,
            temperature=0.3 if request.difficulty == "exam" else 0.6,
            system=QUIZ_SYSTEM,
            messages=[{"role": "user", "content": [{"type": "text", "text": prompt}]}],
        )
        text = response_text(message)
        logger.info("Quiz response %s: %d chars, stop_reason=%s", message.id, len(text), message.stop_reason)
        if not text:
            raise ExtractionFailed("Claude response missing text payload.")

        records = parse_model_json(text, shape=ARRAY, truncated=is_truncated(message))
        questions = reconcile_questions(records)
        logger.info("Reconciled %d quiz question(s)", len(questions))

        return QuizResponse(
            quiz_id=message.id or f"quiz-{int(time.time() * 1000)}",
            generated_at=generated_at,
            questions=questions,
            topics=request.topics,
        )

    # ------------------------------------------------------------------
    # Resource search
    # ------------------------------------------------------------------

    def find_resources(self, request: ResourceSearchRequest) -> ResourceSearchResponse:
        client = self._require_client()

        kind = "learning and practice" if request.resource_type == "both" else request.resource_type
        context = f"Context: {request.topic_description}. " if request.topic_description else ""
        query = (
            f'Find specific, actionable {kind} resources for "{request.topic_title}" in "{request.course_title}". '
            f"{context}{RESOURCE_TYPE_INSTRUCTIONS[request.resource_type]}\n\n"
            "IMPORTANT: Each resource must be DIRECTLY usable by students - a video they can watch, an article "
            "they can read, a tool they can use, or problems they can solve. DO NOT include:\n"
            "- Generic course homepages or syllabi\n"
            "- University course catalog pages\n"
            "- Textbook purchase pages without free content\n"
            "- Login-required content\n\n"
            "ONLY include resources where students can immediately learn or practice the topic."
        )
        logger.info("Resource search: %s / %s (%s)", request.course_title, request.topic_title, request.resource_type)

        message = client.messages.create(
            model=self.model,
            max_tokens=config.RESOURCE_MAX_TOKENS,
            temperature=0.3,
            system=RESOURCE_SYSTEM,
            messages=[{"role": "user", "content": query + "\n\nIMPORTANT: Return ONLY the JSON object, no other text."}],
            tools=[WEB_SEARCH_TOOL],
        )

        if message.stop_reason in ("tool_use", "pause_turn"):
            logger.info("Claude requested tool use, making follow-up call")
            message = client.messages.create(
                model=self.model,
                max_tokens=config.RESOURCE_MAX_TOKENS,
                temperature=0.3,
                system=RESOURCE_FOLLOW_UP_SYSTEM,
                messages=[
                    {"role": "user", "content": query},
                    {"role": "assistant", "content": message.content},
                    {
                        "role": "user",
                        "content": "Based on the search results, provide a list of DIRECTLY USABLE educational "
                                   "resources. Filter out any generic course pages or catalogs. "
                                   "Return only the JSON object.",
                    },
                ],
            )

        data = parse_model_json(
            response_text(message), shape=OBJECT, truncated=is_truncated(message), key_hint="resources"
        )
        return self.resources_from_json(data, request)

    @staticmethod
    def resources_from_json(data: dict, request: ResourceSearchRequest) -> ResourceSearchResponse:
        raw = data.get("resources")
        if not isinstance(raw, list):
            logger.error("Invalid resources array in Claude response: %s", str(data)[:300])
            return ResourceSearchResponse(resources=[], search_quality="poor", message="No valid resources found")

        results = []
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            url = _first(entry, "url", "link", "href")
            title = _first(entry, "title", "name")
            summary = _first(entry, "summary", "description", "desc")
            if not (url and title and summary):
                logger.info("Skipping invalid resource: %s", str(entry)[:100])
                continue
            quality = entry.get("quality")
            results.append(ResourceSearchResult(
                url=str(url),
                title=str(title),
                summary=str(summary),
                resource_type=str(entry.get("resourceType") or request.resource_type),
                quality=quality if quality in ("high", "medium", "low") else "medium",
                content_type=str(_first(entry, "contentType", "type") or "article"),
            ))
        results = results[: request.max_results]

        search_quality = data.get("searchQuality")
        if search_quality not in ("excellent", "good", "poor"):
            search_quality = "good" if len(results) > 5 else "poor"

        count = len(results)
        default_message = f"Found {count} resource{'s' if count != 1 else ''}" if count else "No resources found"
        logger.info("Valid resources found: %d (quality=%s)", count, search_quality)
        return ResourceSearchResponse(
            resources=results,
            search_quality=search_quality,
            message=data.get("message") or default_message,
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def chat(self, system: str, messages: list[dict]) -> str:
        client = self._require_client()
        message = client.messages.create(
            model=self.model,
            max_tokens=config.CHAT_MAX_TOKENS,
            temperature=0.7,
            system=system,
            messages=messages,
        )
        logger.info("Chat response received, stop_reason=%s", message.stop_reason)
        text = response_text(message).strip()
        if not text:
            raise ExtractionFailed("Claude response missing text content.")
        return text

    def chat_stream(self, system: str, messages: list[dict]) -> Iterator[str]:
        client = self._require_client()
        with client.messages.stream(
            model=self.model,
            max_tokens=config.CHAT_MAX_TOKENS,
            temperature=0.7,
            system=system,
            messages=messages,
        ) as stream:
            for text in stream.text_stream:
                yield text

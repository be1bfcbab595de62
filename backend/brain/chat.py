"""Study assistant chat: prompt assembly and suggested-action detection."""
from __future__ import annotations

import json
import logging
import time
from typing import Iterator, Optional

import anthropic

from brain.errors import BrainError
from brain.schemas import ChatAction, ChatContext, ChatMessage, ChatRequest, ChatResponse, TopicContext

logger = logging.getLogger(__name__)

UNAVAILABLE_REPLY = "I'm currently unavailable. Please configure the ANTHROPIC_API_KEY to enable the chatbot."


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _ms() -> int:
    return int(time.time() * 1000)


def build_system_prompt(context: ChatContext, topic_context: Optional[TopicContext] = None) -> str:
    completed = len(context.completed_micro_topic_ids)
    total = sum(len(sub.micro_topics) for topic in context.topics for sub in topic.sub_topics)
    progress = round(completed / total * 100) if total else 0

    deadlines = "\n".join(
        f"- {d.title} ({d.type}) - Due: {d.due_date}" for d in context.upcoming_deadlines[:5]
    )

    history = context.quiz_history
    weak_ids = set(history.weak_topic_ids) if history else set()
    weak_titles = ", ".join(t.title for t in context.topics if t.id in weak_ids)
    scores = history.recent_scores if history else []
    performance = f"{round(sum(scores) / len(scores))}% average" if scores else "No quizzes taken yet"

    topics = "\n".join(
        f"- {t.title} (ID: {t.id}): {t.description}\n  Subtopics: {', '.join(s.title for s in t.sub_topics)}"
        for t in context.topics
    )
    viewing = (
        f'The student is currently viewing **"{topic_context.topic_title}"** ({topic_context.level})'
        if topic_context else "General course discussion"
    )
    example_id = context.topics[0].id if context.topics else "topic-id"

    return f"""You are an **advanced AI study assistant** for the course "{context.course_name}".

## COURSE STRUCTURE
{topics}

## STUDENT ANALYTICS
- **Overall Progress**: {progress}% ({completed}/{total} microtopics completed)
- **Weak Topics** (from quiz failures): {weak_titles or "None identified yet"}
- **Recent Quiz Performance**: {performance}
- **Total Quizzes**: {len(scores)}

## UPCOMING DEADLINES
{deadlines or "No upcoming deadlines"}

## YOUR CORE CAPABILITIES
- Answer questions with clear explanations and examples, referencing topics from the study map
- Coach weak spots with targeted explanations and practice questions
- Build study plans that prioritise by deadline, difficulty and progress
- Explain how concepts connect and prepare students for upcoming exams
- Recommend videos, articles, interactive demos and practice problem sources

## RESPONSE FORMATTING
Use markdown: **bold** key terms, headings for sections, numbered lists for steps, `code` for formulas.

## ACTION CAPABILITIES
You can suggest navigating to topics (reference IDs like "{example_id}"), generating quizzes,
marking mastered topics complete, finding resources and breaking topics down further.

## CONVERSATION CONTEXT
{viewing}

Be encouraging, concise and proactive about next steps."""


def to_claude_messages(history: list[ChatMessage]) -> list[dict]:
    """Map UI chat history onto Messages API turns. System notes are not sent."""
    return [
        {"role": "user" if msg.role == "user" else "assistant", "content": msg.content}
        for msg in history
        if msg.role != "system"
    ]


def _has_any(text: str, *needles: str) -> bool:
    return any(needle in text for needle in needles)


def detect_suggested_actions(content: str, user_message: str, context: ChatContext) -> list[ChatAction]:
    """Keyword rules over the reply and the user's message; one action per type."""
    reply = content.lower()
    asked = user_message.lower()
    weak_ids = context.quiz_history.weak_topic_ids if context.quiz_history else []
    exams = [d for d in context.upcoming_deadlines if d.type == "exam"]
    actions: list[ChatAction] = []

    if _has_any(reply, "quiz", "test yourself", "practice questions") or "quiz me" in asked:
        actions.append(ChatAction(type="generate_quiz", label="Generate Quiz"))

    if _has_any(asked, "study plan", "schedule", "plan for") or _has_any(reply, "create a plan", "study schedule", "weekly plan"):
        actions.append(ChatAction(type="study_planner", label="View Study Plan", payload={"context": "generated_plan"}))

    struggling = _has_any(asked, "struggling", "weak", "difficult", "help with", "don't understand")
    if weak_ids and (struggling or _has_any(reply, "weak topic", "struggle")):
        actions.append(ChatAction(type="weak_spot_coach", label="Practice Weak Topics", payload={"weakTopicIds": weak_ids}))

    if exams:
        actions.append(ChatAction(type="exam_prep", label="Exam Preparation Mode", payload={"examId": exams[0].id}))

    if _has_any(reply, "resource", "video", "article", "learning material", "practice problem") or _has_any(asked, "find", "learn more"):
        actions.append(ChatAction(type="add_resource", label="Find Resources"))

    if _has_any(asked, "due", "deadline", "when is", "upcoming"):
        actions.append(ChatAction(type="view_deadlines", label="View All Deadlines"))

    mentioned = [t for t in context.topics if t.title.lower() in reply]
    if 0 < len(mentioned) <= 3:
        actions.extend(
            ChatAction(type="navigate", label=f"Go to {t.title}", payload={"topicId": t.id}) for t in mentioned
        )

    if _has_any(asked, "relate", "connection", "relationship", "how does", "difference between"):
        related = [t for t in context.topics if t.title.lower() in asked]
        if len(related) >= 2:
            actions.append(ChatAction(
                type="concept_map", label="Explore Concept Connections", payload={"topicIds": [t.id for t in related]}
            ))

    if _has_any(asked, "progress", "how am i doing", "stuck", "struggling"):
        actions.append(ChatAction(type="view_progress", label="View Progress Dashboard"))

    unique: dict[str, ChatAction] = {}
    for action in actions:
        unique.setdefault(action.type, action)
    return list(unique.values())


def _conversation(request: ChatRequest) -> list[ChatMessage]:
    user_message = ChatMessage(
        id=f"msg-{_ms()}",
        role="user",
        content=request.message,
        timestamp=_now_iso(),
        topic_context=request.topic_context,
    )
    return [*request.conversation_history, user_message]


def respond(brain, request: ChatRequest) -> ChatResponse:
    conversation_id = request.conversation_id or f"conv-{_ms()}"

    if not brain.configured:
        content, actions = UNAVAILABLE_REPLY, []
    else:
        system = build_system_prompt(request.context, request.topic_context)
        content = brain.chat(system, to_claude_messages(_conversation(request)))
        actions = detect_suggested_actions(content, request.message, request.context)
        logger.info("Chat reply: %d chars, %d suggested action(s)", len(content), len(actions))

    message = ChatMessage(
        id=f"msg-{_ms()}-assistant",
        role="assistant",
        content=content,
        timestamp=_now_iso(),
        metadata={"suggestedActions": [a.model_dump(by_alias=True) for a in actions]},
    )
    return ChatResponse(conversation_id=conversation_id, message=message, suggested_actions=actions)


def stream_lines(brain, request: ChatRequest) -> Iterator[str]:
    """NDJSON lines: ``{"chunk": ...}`` per text delta, then ``{"done": true, ...}``.

    Failures after the response has started are reported in-band as ``{"error": ...}``.
    """
    conversation_id = request.conversation_id or f"conv-{_ms()}"

    if not brain.configured:
        yield json.dumps({"chunk": UNAVAILABLE_REPLY}) + "\n"
    else:
        system = build_system_prompt(request.context, request.topic_context)
        try:
            for chunk in brain.chat_stream(system, to_claude_messages(_conversation(request))):
                yield json.dumps({"chunk": chunk}) + "\n"
        except (BrainError, anthropic.APIError) as exc:
            logger.error("Chat stream failed: %s", exc)
            yield json.dumps({"error": str(exc) or "Stream failed"}) + "\n"
            return

    yield json.dumps({"done": True, "conversationId": conversation_id}) + "\n"

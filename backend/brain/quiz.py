"""Quiz answer reconciliation and offline fallback questions.

Claude returns multiple-choice questions as free-text choices
(``["A) Paris", "B) Lyon", ...]``) plus a separate ``answer`` key. The
reconciler turns each record into a ``QuizQuestion`` whose choices carry an
explicit ``correct`` flag, with exactly one correct choice per question.

The answer key is matched by letter, then exact label, then substring of the
label or of the full choice text. A single-letter key ("E") never goes
through the substring steps: a letter with no matching choice would
otherwise hit any label containing it, so it falls straight through to the
first-choice default.
"""
from __future__ import annotations

import logging
import random
import re
import string
from typing import Any, Optional

from brain.schemas import QuizChoice, QuizQuestion, QuizTopicSelection

logger = logging.getLogger(__name__)

LETTER_PREFIX_RE = re.compile(r"^\s*\(?([A-Za-z])\)\s*")
ANSWER_LETTER_RE = re.compile(r"^\(?([A-Za-z])[).:]?$")

UNKNOWN_ANSWER = "Unable to determine answer"
PLACEHOLDER_LABELS = (
    "This option is incorrect",
    "This option is also incorrect",
    "This option is not correct",
)

DISTRACTORS = (
    "Enforces amortized constant time via banking tokens.",
    "Guarantees logarithmic depth rotations regardless of inserts.",
    "Uses divide-and-conquer to shrink problem inputs geometrically.",
)


def choice_id(letter: str) -> str:
    return f"choice-{letter.lower()}"


def position_letter(index: int) -> str:
    return chr(ord("A") + index)


def split_choice(text: str, index: int) -> tuple[str, str]:
    """Return ``(letter, label)`` for a choice like ``"B) Lyon"``.

    Choices without a letter prefix get A, B, C, ... by position.
    """
    match = LETTER_PREFIX_RE.match(text)
    if match:
        return match.group(1).upper(), text[match.end():].strip()
    return position_letter(index), text.strip()


def unique_choice_ids(letters: list[str]) -> list[str]:
    """``choice-<letter>`` ids, one per choice and never repeated.

    A letter that is already taken (``["Paris", "A) Lyon"]``) or is not A-Z
    moves to the first free letter. Once all 26 are used, ids fall back to
    ``choice-<n>`` with the 1-based position.
    """
    taken: set[str] = set()
    ids = []
    for position, letter in enumerate(letters, start=1):
        if letter not in string.ascii_uppercase or letter in taken:
            letter = next((c for c in string.ascii_uppercase if c not in taken), "")
        if not letter:
            ids.append(f"choice-{position}")
            continue
        taken.add(letter)
        ids.append(choice_id(letter))
    return ids


def answer_letter(key: str) -> Optional[str]:
    """The choice letter an answer key names: "B", "b", "(B)", "B.", "B) Lyon"."""
    match = ANSWER_LETTER_RE.match(key) or LETTER_PREFIX_RE.match(key)
    return match.group(1).upper() if match else None


def fallback_choices(answer: str) -> list[QuizChoice]:
    """Four playable choices for a question Claude sent without any."""
    labels = [answer, *PLACEHOLDER_LABELS]
    return [
        QuizChoice(id=choice_id(position_letter(idx)), label=label, correct=idx == 0)
        for idx, label in enumerate(labels)
    ]


def _as_choice_texts(raw_choices: Any) -> list[Any]:
    # {"A": "Paris", "B": "Lyon"} is occasionally returned instead of a list
    if isinstance(raw_choices, dict):
        return [f"{letter}) {text}" for letter, text in raw_choices.items()]
    if isinstance(raw_choices, list):
        return raw_choices
    return []


def _match_answer(entries: list[tuple[str, str, str]], key: str) -> list[bool]:
    """Flag the choices the answer key points at.

    Checks run in priority order and the first check that matches anything
    wins: choice letter, exact label, label containment, then containment in
    the full choice text. Containment is skipped for single-letter keys,
    which would otherwise match any label containing that letter.
    """
    if not key:
        return [False] * len(entries)

    lowered = key.lower()
    checks = []
    letter = answer_letter(key)
    if letter:
        checks.append(lambda entry: entry[0] == letter)
    checks.append(lambda entry: entry[1].lower() == lowered)
    if not (len(key) == 1 and key.isalpha()):
        checks.append(lambda entry: lowered in entry[1].lower())
        checks.append(lambda entry: lowered in entry[2].lower())

    for check in checks:
        flags = [check(entry) for entry in entries]
        if any(flags):
            return flags
    return [False] * len(entries)


def reconcile_choices(question_id: str, raw_choices: Any, answer: str) -> list[QuizChoice]:
    entries: list[tuple[str, str, str]] = []
    preset: list[bool] = []

    for idx, raw in enumerate(_as_choice_texts(raw_choices)):
        if isinstance(raw, dict):
            text = str(raw.get("label") or raw.get("text") or "")
            letter, label = split_choice(text, idx)
            preset.append(bool(raw.get("correct")))
        else:
            text = str(raw)
            letter, label = split_choice(text, idx)
            preset.append(False)
        entries.append((letter, label, text))

    flags = preset if any(preset) else _match_answer(entries, answer)

    correct_count = sum(flags)
    if correct_count > 1:
        logger.warning(
            "Ambiguous answer key %r for question %s: %d choices matched, keeping the first",
            answer, question_id, correct_count,
        )
        first = flags.index(True)
        flags = [idx == first for idx in range(len(flags))]
    elif correct_count == 0 and flags:
        logger.warning(
            "Ambiguous answer key %r for question %s: no choice matched, marking the first correct",
            answer, question_id,
        )
        flags[0] = True

    ids = unique_choice_ids([letter for letter, _, _ in entries])
    return [
        QuizChoice(id=cid, label=label, correct=flag)
        for cid, (_, label, _), flag in zip(ids, entries, flags)
    ]


def reconcile_question(raw: dict, index: int = 0) -> QuizQuestion:
    question_id = str(raw.get("id") or f"question-{index + 1}")
    answer = raw.get("answer")
    key = str(answer).strip() if answer is not None else ""

    raw_choices = _as_choice_texts(raw.get("choices"))
    if raw_choices:
        choices = reconcile_choices(question_id, raw_choices, key)
    else:
        logger.error("Question %s has no choices, creating fallback choices", question_id)
        choices = fallback_choices(key or UNKNOWN_ANSWER)

    related = raw.get("relatedMicroTopicIds") or []
    if not isinstance(related, list):
        related = [related]

    return QuizQuestion(
        id=question_id,
        prompt=str(raw.get("prompt") or raw.get("question") or ""),
        type="mcq",
        choices=choices,
        explanation=str(raw.get("explanation") or ""),
        related_micro_topic_ids=[str(item) for item in related],
        topic_id=raw.get("topicId") or None,
    )


def reconcile_questions(records: list) -> list[QuizQuestion]:
    """Reconcile every question record; non-object entries are dropped."""
    questions = []
    for idx, record in enumerate(records):
        if not isinstance(record, dict):
            logger.warning("Skipping quiz entry %d: expected an object, got %s", idx, type(record).__name__)
            continue
        questions.append(reconcile_question(record, idx))
    return questions


# ─── Offline fallback ────────────────────────────────────────

def _shuffled_choices(micro_title: str, rng: random.Random) -> list[QuizChoice]:
    correct_label = f"Focuses on {micro_title}."
    labels = [correct_label, *DISTRACTORS]
    rng.shuffle(labels)
    return [
        QuizChoice(id=choice_id(position_letter(idx)), label=label, correct=label == correct_label)
        for idx, label in enumerate(labels)
    ]


def fallback_questions(
    topics: list[QuizTopicSelection],
    length: int,
    rng: Optional[random.Random] = None,
) -> list[QuizQuestion]:
    """Locally synthesized questions used when no Claude client is configured."""
    rng = rng or random.Random()
    pool = [(topic, micro) for topic in topics for micro in topic.micro_topics]

    if not pool:
        return [
            QuizQuestion(
                id="quiz-empty",
                prompt="Which concept from the recent syllabus upload would you like to review first?",
                choices=[
                    QuizChoice(id="choice-a", label="All topics seem clear", correct=True),
                    QuizChoice(id="choice-b", label="Need more context"),
                    QuizChoice(id="choice-c", label="Require additional examples"),
                    QuizChoice(id="choice-d", label="Looking for practice problems"),
                ],
                explanation="Selecting at least one topic will unlock tailored quizzes.",
                related_micro_topic_ids=[],
                topic_id=topics[0].id if topics else "unknown",
            )
        ]

    questions = []
    for idx in range(length):
        topic, micro = pool[idx % len(pool)]
        questions.append(QuizQuestion(
            id=f"quiz-mcq-{micro.id}-{idx}",
            prompt=f"Which statement best explains {micro.title}?",
            choices=_shuffled_choices(micro.title, rng),
            explanation=f"The core idea of {micro.title} ties directly to {micro.description}.",
            related_micro_topic_ids=[micro.id],
            topic_id=topic.id,
        ))
    return questions

"""Syllabus Parser: builds a draft study map from uploaded PDFs.

Claude reads the first PDF and produces the topic tree. Independently, a
rule-based pass scans the extracted PDF text line by line for calendar-like
tokens so that a usable deadline list survives even when Claude does not.
"""
from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone
from typing import Optional

import anthropic
import fitz  # PyMuPDF

from brain.errors import BrainError
from brain.schemas import CourseMetadata, ParseSyllabusResponse, StudyMap, UpcomingItem, utc_now_iso

logger = logging.getLogger(__name__)

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

NATURAL_DATE_RE = re.compile(
    r"\b(Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|Jul(?:y)?|Aug(?:ust)?"
    r"|Sept?(?:ember)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)\.?\s+(\d{1,2})(?!\d)(?:,\s*(\d{4}))?",
    re.IGNORECASE,
)
SLASH_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?\b")
TERM_YEAR_RE = re.compile(r"(20\d{2})")

KEYWORD_TOPICS = {
    "topic-foundations": ("complexity", "analysis", "recurrence", "proof"),
    "topic-structures": ("heap", "tree", "balanced", "priority", "structure"),
    "topic-graphs": ("graph", "shortest", "path", "flow", "network"),
}

NO_DATES_WARNING = "No explicit dates detected inside the syllabus."
ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.000Z"


def extract_text_from_pdf(pdf_bytes: bytes) -> str:
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except (RuntimeError, ValueError) as exc:
        logger.warning("Failed to parse pdf: %s", exc)
        return ""
    text = ""
    for page in doc:
        text += page.get_text() + "\n"
    doc.close()
    return text


def aggregate_text(pdfs: list[bytes]) -> str:
    return "\n".join(extract_text_from_pdf(pdf) for pdf in pdfs).strip()


# ─── Deadline Line Extractor ─────────────────────────────────

def derive_year_from_term(term: Optional[str]) -> int:
    match = TERM_YEAR_RE.search(term or "")
    if match:
        return int(match.group(1))
    return datetime.now(timezone.utc).year


def detect_type(line: str) -> str:
    normalized = line.lower()
    if "exam" in normalized or "midterm" in normalized:
        return "exam"
    if "project" in normalized or "capstone" in normalized:
        return "project"
    if "assignment" in normalized or "hw" in normalized:
        return "assignment"
    return "misc"


def detect_topic_ids(line: str) -> list[str]:
    """Topic ids whose keywords appear in ``line``. Empty when none match."""
    normalized = line.lower()
    return [
        topic_id
        for topic_id, keywords in KEYWORD_TOPICS.items()
        if any(word in normalized for word in keywords)
    ]


def _expand_year(raw: str) -> int:
    year = int(raw)
    if len(raw) == 2:
        year += 2000 if year < 50 else 1900
    return year


def find_date(line: str, fallback_year: int) -> Optional[tuple[str, datetime]]:
    """Return ``(matched text, UTC midnight)`` for the first date in ``line``.

    Month-name dates are tried before slash dates. Impossible calendar dates
    (Feb 30, 13/01) count as no match.
    """
    natural = NATURAL_DATE_RE.search(line)
    if natural:
        month = MONTHS[natural.group(1)[:3].lower()]
        day = int(natural.group(2))
        year = int(natural.group(3)) if natural.group(3) else fallback_year
        matched = natural.group(0)
    else:
        slash = SLASH_DATE_RE.search(line)
        if not slash:
            return None
        month, day = int(slash.group(1)), int(slash.group(2))
        year = _expand_year(slash.group(3)) if slash.group(3) else fallback_year
        matched = slash.group(0)

    try:
        return matched, datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def extract_deadlines(text: str, fallback_year: int) -> tuple[list[UpcomingItem], Optional[str]]:
    lines = [line.strip() for line in re.split(r"\r?\n", text or "")]
    lines = [line for line in lines if line]

    deadlines = []
    for idx, line in enumerate(lines):
        found = find_date(line, fallback_year)
        if not found:
            continue
        matched, due = found
        deadlines.append(UpcomingItem(
            id=f"deadline-{idx}",
            title=line.replace(matched, "", 1).strip() or "Unnamed deadline",
            description=line,
            due_date=due.strftime(ISO_FORMAT),
            type=detect_type(line),
            related_topic_ids=detect_topic_ids(line),
            scope_text=line,
        ))

    logger.info("Rule-based scan found %d deadline(s) in %d line(s)", len(deadlines), len(lines))
    return deadlines, None if deadlines else NO_DATES_WARNING


def _due_key(item: UpcomingItem) -> datetime:
    try:
        due = datetime.fromisoformat(item.due_date.replace("Z", "+00:00"))
    except ValueError:
        return datetime.max.replace(tzinfo=timezone.utc)
    return due if due.tzinfo else due.replace(tzinfo=timezone.utc)


def merge_deadlines(existing: list[UpcomingItem], extra: list[UpcomingItem]) -> list[UpcomingItem]:
    """Union keyed by lowercase title; ``existing`` entries win. Sorted by due date."""
    merged = {item.title.lower(): item for item in existing}
    for item in extra:
        merged.setdefault(item.title.lower(), item)
    return sorted(merged.values(), key=_due_key)


# ─── Orchestration ───────────────────────────────────────────

def build_course(course_name: str, course_number: Optional[str] = None, term: Optional[str] = None) -> CourseMetadata:
    return CourseMetadata(
        id=f"course-{int(time.time() * 1000)}",
        name=course_name,
        course_number=course_number,
        term=term,
        created_at=utc_now_iso(),
    )


def parse_syllabus(course: CourseMetadata, pdfs: list[bytes], brain) -> ParseSyllabusResponse:
    """Draft study map for ``course`` from the uploaded PDF bytes.

    A Claude failure leaves the topic tree empty and adds a warning; the
    rule-based deadlines are returned either way.
    """
    warnings: list[str] = []
    study_map = StudyMap(course=course)
    text = aggregate_text(pdfs)

    if not pdfs:
        warnings.append("No PDF files provided. Please upload a syllabus PDF.")
    elif not brain.configured:
        warnings.append("Claude API not configured. Please set ANTHROPIC_API_KEY.")
    else:
        logger.info("Processing %d PDF file(s) with Claude (first: %d bytes)", len(pdfs), len(pdfs[0]))
        try:
            study_map = brain.generate_study_map(course, syllabus_pdf=pdfs[0], syllabus_text=text)
        except (BrainError, anthropic.APIError) as exc:
            logger.error("Claude PDF parsing failed: %s", exc)
            warnings.append(
                f"Claude parse failed: {exc.message}. "
                "Please try again with a different PDF or check the error logs."
            )

    if pdfs:
        deadlines, warning = extract_deadlines(text, derive_year_from_term(course.term))
        study_map.assignments = merge_deadlines(study_map.assignments, deadlines)
        if warning:
            warnings.append(warning)

    return ParseSyllabusResponse(
        study_map=study_map,
        message="Draft study map generated",
        warnings=warnings or None,
    )

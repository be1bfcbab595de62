"""JSON file database: one document holding every course record.

Each operation reads the whole file, applies its change, and writes it back
through a temp file + ``os.replace``. There is no locking: the last writer wins.
"""

import logging
import os
import secrets
import string
import tempfile
import time
from typing import List

from brain.errors import BrainError
from brain.schemas import QuizResponse, ResourceItem, StudyMap, Topic, utc_now_iso
from courses.schemas import CourseDatabase, CourseRecord, NewResource, QuizResult
from server.config import DB_FILENAME, data_dir

logger = logging.getLogger(__name__)

QUIZ_HISTORY_LIMIT = 5


class CourseNotFound(BrainError):
    status_code = 404
    error = "course_not_found"

    def __init__(self, course_id: str):
        super().__init__(f"Course not found: {course_id}")
        self.course_id = course_id


class TopicNotFound(BrainError):
    status_code = 404
    error = "topic_not_found"

    def __init__(self, topic_id: str):
        super().__init__(f"Topic not found in course: {topic_id}")
        self.topic_id = topic_id


def _resource_id() -> str:
    suffix = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(9))
    return f"resource-{int(time.time() * 1000)}-{suffix}"


class CourseStore:
    def __init__(self, directory: str):
        self.directory = directory
        self.path = os.path.join(directory, DB_FILENAME)

    # ─── File access ─────────────────────────────────────────

    def ensure(self):
        os.makedirs(self.directory, exist_ok=True)
        if not os.path.exists(self.path):
            logger.info("Creating empty course database at %s", self.path)
            self.write(CourseDatabase())

    def read(self) -> CourseDatabase:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return CourseDatabase.model_validate_json(f.read())
        except FileNotFoundError:
            self.ensure()
            return CourseDatabase()

    def write(self, db: CourseDatabase):
        os.makedirs(self.directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".studymap-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(db.model_dump_json(by_alias=True, exclude_none=True, indent=2))
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise

    def _course(self, db: CourseDatabase, course_id: str) -> CourseRecord:
        record = db.courses.get(course_id)
        if record is None:
            raise CourseNotFound(course_id)
        return record

    # ─── Operations ──────────────────────────────────────────

    def list(self) -> CourseDatabase:
        self.ensure()
        return self.read()

    def save_course(self, study_map: StudyMap) -> CourseRecord:
        """Upsert by course id. An existing record keeps its quiz history and results."""
        db = self.read()
        course_id = study_map.course.id
        existing = db.courses.get(course_id)
        if existing:
            record = existing.model_copy(update={"study_map": study_map, "last_updated": utc_now_iso()})
        else:
            record = CourseRecord(study_map=study_map, last_updated=utc_now_iso())

        db.courses[course_id] = record
        if course_id not in db.course_order:
            db.course_order.append(course_id)
        self.write(db)
        logger.info("Saved course %s (%d topics)", course_id, len(study_map.topics))
        return record

    def replace_topics(self, course_id: str, topics: List[Topic]) -> CourseRecord:
        db = self.read()
        record = self._course(db, course_id)
        record.study_map.topics = topics
        record.last_updated = utc_now_iso()
        self.write(db)
        return record

    def record_quiz(self, course_id: str, quiz: QuizResponse) -> CourseRecord:
        db = self.read()
        record = self._course(db, course_id)
        record.quiz_history = [quiz, *record.quiz_history][:QUIZ_HISTORY_LIMIT]
        record.last_updated = utc_now_iso()
        self.write(db)
        return record

    def save_quiz_result(self, course_id: str, result: QuizResult) -> CourseRecord:
        db = self.read()
        record = self._course(db, course_id)
        record.quiz_results = [result, *record.quiz_results]
        record.last_updated = utc_now_iso()
        self.write(db)
        return record

    def delete_quiz(self, course_id: str, quiz_id: str) -> CourseRecord:
        db = self.read()
        record = self._course(db, course_id)
        record.quiz_history = [q for q in record.quiz_history if q.quiz_id != quiz_id]
        record.last_updated = utc_now_iso()
        self.write(db)
        return record

    def delete_quiz_result(self, course_id: str, result_id: str) -> CourseRecord:
        db = self.read()
        record = self._course(db, course_id)
        record.quiz_results = [r for r in record.quiz_results if r.id != result_id]
        record.last_updated = utc_now_iso()
        self.write(db)
        return record

    def add_resource(self, course_id: str, topic_id: str, resource: NewResource) -> ResourceItem:
        """Attach ``resource`` under ``topic_id``, which may name a topic, subtopic or microtopic."""
        db = self.read()
        record = self._course(db, course_id)
        if not record.study_map.has_node(topic_id):
            raise TopicNotFound(topic_id)

        item = ResourceItem(**resource.model_dump(exclude={"id", "added_at"}),
                            id=resource.id or _resource_id(),
                            added_at=resource.added_at or utc_now_iso())
        record.study_map.resources.setdefault(topic_id, []).append(item)
        record.last_updated = utc_now_iso()
        self.write(db)
        return item

    def delete_course(self, course_id: str) -> bool:
        db = self.read()
        if course_id not in db.courses:
            return False
        del db.courses[course_id]
        db.course_order = [cid for cid in db.course_order if cid != course_id]
        self.write(db)
        return True


def get_db() -> CourseStore:
    return CourseStore(data_dir())


def init_db():
    get_db().ensure()

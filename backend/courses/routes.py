"""Course CRUD routes over the JSON database."""

from fastapi import APIRouter, Depends, HTTPException

from courses.schemas import (
    AddResourceRequest,
    CourseDatabase,
    CourseRecord,
    QuizResult,
    RecordQuizRequest,
    ReplaceTopicsRequest,
    SaveCourseRequest,
)
from server.database import CourseStore, get_db

router = APIRouter()

RECORD = {"response_model": CourseRecord, "response_model_exclude_none": True}


@router.get("/courses", response_model=CourseDatabase, response_model_exclude_none=True)
def list_courses(db: CourseStore = Depends(get_db)):
    return db.list()


@router.post("/courses", status_code=201, **RECORD)
def save_course(body: SaveCourseRequest, db: CourseStore = Depends(get_db)):
    return db.save_course(body.study_map)


@router.delete("/courses/{course_id}")
def delete_course(course_id: str, db: CourseStore = Depends(get_db)):
    if not db.delete_course(course_id):
        raise HTTPException(status_code=404, detail="Course not found")
    return {"success": True, "message": "Course deleted"}


@router.patch("/courses/{course_id}/topics", **RECORD)
def replace_topics(course_id: str, body: ReplaceTopicsRequest, db: CourseStore = Depends(get_db)):
    return db.replace_topics(course_id, body.topics)


@router.post("/courses/{course_id}/quizzes", **RECORD)
def record_quiz(course_id: str, body: RecordQuizRequest, db: CourseStore = Depends(get_db)):
    return db.record_quiz(course_id, body.quiz)


@router.delete("/courses/{course_id}/quizzes/{quiz_id}", **RECORD)
def delete_quiz(course_id: str, quiz_id: str, db: CourseStore = Depends(get_db)):
    return db.delete_quiz(course_id, quiz_id)


@router.post("/courses/{course_id}/quiz-results")
def save_quiz_result(course_id: str, result: QuizResult, db: CourseStore = Depends(get_db)):
    record = db.save_quiz_result(course_id, result)
    return {"success": True, "course": record.model_dump(by_alias=True, exclude_none=True)}


@router.delete("/courses/{course_id}/quiz-results/{result_id}", **RECORD)
def delete_quiz_result(course_id: str, result_id: str, db: CourseStore = Depends(get_db)):
    return db.delete_quiz_result(course_id, result_id)


@router.post("/courses/{course_id}/resources")
def add_resource(course_id: str, body: AddResourceRequest, db: CourseStore = Depends(get_db)):
    resource = db.add_resource(course_id, body.topic_id, body.resource)
    return {
        "success": True,
        "resource": resource.model_dump(by_alias=True, exclude_none=True),
        "message": "Resource added successfully",
    }

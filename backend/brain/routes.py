"""Brain routes: syllabus parsing, quiz generation, resource search, study chat."""

from typing import List, Optional, Type, TypeVar

from fastapi import APIRouter, Body, Depends, File, Form, Request, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from brain import chat
from brain.errors import InvalidRequest
from brain.schemas import (
    ChatRequest,
    ChatResponse,
    ParseSyllabusResponse,
    QuizRequest,
    QuizResponse,
    ResourceSearchRequest,
    ResourceSearchResponse,
    SyllabusForm,
)
from brain.syllabus_parser import build_course, parse_syllabus

router = APIRouter()

M = TypeVar("M", bound=BaseModel)


def get_brain(request: Request):
    return request.app.state.brain


def validate_body(model: Type[M], data) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise InvalidRequest(exc.errors(include_url=False, include_context=False, include_input=False)) from exc


@router.post("/syllabus/parse", response_model=ParseSyllabusResponse, response_model_exclude_none=True)
async def parse_syllabus_upload(
    course_name: Optional[str] = Form(None, alias="courseName"),
    course_number: Optional[str] = Form(None, alias="courseNumber"),
    term: Optional[str] = Form(None),
    syllabi: Optional[List[UploadFile]] = File(None),
    brain=Depends(get_brain),
):
    form = validate_body(SyllabusForm, {"courseName": course_name, "courseNumber": course_number, "term": term})

    pdfs = []
    for upload in syllabi or []:
        data = await upload.read()
        if data:
            pdfs.append(data)

    course = build_course(form.course_name, form.course_number, form.term)
    return await run_in_threadpool(parse_syllabus, course, pdfs, brain)


@router.post("/quiz", response_model=QuizResponse, response_model_exclude_none=True)
def generate_quiz(body: dict = Body(...), brain=Depends(get_brain)):
    payload = validate_body(QuizRequest, body)
    return brain.generate_quiz(payload)


@router.post("/resources/search", response_model=ResourceSearchResponse, response_model_exclude_none=True)
def search_resources(body: dict = Body(...), brain=Depends(get_brain)):
    payload = validate_body(ResourceSearchRequest, body)
    return brain.find_resources(payload)


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
def study_chat(body: dict = Body(...), brain=Depends(get_brain)):
    payload = validate_body(ChatRequest, body)
    if payload.stream:
        return StreamingResponse(
            chat.stream_lines(brain, payload),
            media_type="application/x-ndjson",
            headers={"Cache-Control": "no-cache"},
        )
    return chat.respond(brain, payload)

from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from mcqgen.services.batch_scheduler import GenerationConfig, NoContentError
from mcqgen.services.mcq_parser import MCQRecord
from mcqgen.services.partitioner import estimate_question_count
from mcqgen.services.registry import get_scheduler

router = APIRouter(prefix="/generate", tags=["generate"])

MAX_QUESTIONS = 500


class GenerateIn(BaseModel):
    text: str
    count: Optional[int] = Field(None, ge=1, le=MAX_QUESTIONS)
    difficulty: str = "hard+easy"


class GenerateOut(BaseModel):
    requested: int
    produced: int
    rounds: int
    cancelled: bool
    elapsed_sec: float
    messages: List[str]
    mcqs: List[MCQRecord]


class EstimateIn(BaseModel):
    text: str


class EstimateOut(BaseModel):
    count: int


@router.post("", response_model=GenerateOut, summary="Generate MCQs",
             description="Runs the batched generation pipeline over extracted document text. Pages may be marked with `--- Page N ---`.")
def generate(data: GenerateIn):
    count = data.count or estimate_question_count(data.text)
    try:
        report = get_scheduler().run(data.text, count, GenerationConfig(difficulty=data.difficulty))
    except NoContentError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return GenerateOut(
        requested=report.requested,
        produced=report.produced,
        rounds=report.rounds,
        cancelled=report.cancelled,
        elapsed_sec=report.elapsed_sec,
        messages=report.messages,
        mcqs=report.records,
    )


@router.post("/estimate", response_model=EstimateOut, summary="Estimate question count")
def estimate(data: EstimateIn):
    return {"count": estimate_question_count(data.text)}

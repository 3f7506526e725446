from typing import List, Optional
import logging
import re

from pydantic import BaseModel

from mcqgen.services.observability import observability

logger = logging.getLogger("mcq_parser")

OPTION_LABELS = ("a", "b", "c", "d")
MIN_QUESTION_CHARS = 10

_BLOCK_SPLIT_RE = re.compile(r"(?=Q\d+\.)", re.I)
_QUESTION_RE = re.compile(r"^Q\d+\.\s*", re.I)
_OPTION_RE = re.compile(r"^[A-D][.)]", re.I)
_ANSWER_RE = re.compile(r"^Correct Answer\s*:", re.I)
_ANSWER_LABEL_RE = re.compile(r"\b([A-Za-z])\b")
_EXPLANATION_RE = re.compile(r"^Explanation[^:]*:\s*", re.I)


class MCQParseError(Exception):
    pass


class MCQRecord(BaseModel):
    question: str
    options: List[str]
    correct: str
    explanation: str = ""
    # answer chosen in the quiz UI; never filled by generation
    selected: Optional[str] = None


def parse_block(block: str) -> MCQRecord:
    """Turn one ``Qn.`` block into a record or raise MCQParseError.

    A correct-answer letter outside A-D falls back to the first option.
    """
    lines = [ln.strip() for ln in (block or "").split("\n") if ln.strip()]
    if len(lines) < 6:
        raise MCQParseError("block too short")

    question = ""
    options: List[str] = []
    correct = ""
    explanation = ""
    in_explanation = False

    for line in lines:
        if _QUESTION_RE.match(line):
            question = _QUESTION_RE.sub("", line)
        elif _OPTION_RE.match(line) and len(options) < 4:
            options.append(line)
        elif _ANSWER_RE.match(line):
            m = _ANSWER_LABEL_RE.search(_ANSWER_RE.sub("", line))
            correct = m.group(1).lower() if m else ""
            in_explanation = False
        elif _EXPLANATION_RE.match(line):
            explanation = _EXPLANATION_RE.sub("", line)
            in_explanation = True
        elif in_explanation:
            explanation += " " + line
        elif question and not options:
            question += " " + line

    if correct and correct not in OPTION_LABELS:
        correct = OPTION_LABELS[0]

    if len(question.strip()) <= MIN_QUESTION_CHARS:
        raise MCQParseError("missing question text")
    if len(options) != 4:
        raise MCQParseError(f"expected 4 options, got {len(options)}")
    if not correct:
        raise MCQParseError("missing correct answer")

    return MCQRecord(
        question=question.strip(),
        options=options,
        correct=correct,
        explanation=explanation.strip(),
        selected=None,
    )


def parse_mcqs(text: str) -> List[MCQRecord]:
    """Parse generated text into valid records, dropping malformed blocks."""
    if not text or not isinstance(text, str):
        return []
    records: List[MCQRecord] = []
    rejected = 0
    for block in _BLOCK_SPLIT_RE.split(text):
        if not _QUESTION_RE.match(block.strip()):
            continue
        try:
            records.append(parse_block(block))
        except MCQParseError as e:
            rejected += 1
            logger.debug("Dropped MCQ block: %s", e)
    if rejected:
        observability.incr("mcq.parse_rejected", rejected)
    return records

from datetime import date
from typing import Optional

MAX_PROMPT_CONTENT_CHARS = 50000

DIFFICULTIES = ("easy", "hard", "hard+easy")

_EASY = """DIFFICULTY LEVEL: EASY (Basic Recall Questions Only)
Generate ONLY EASY questions that test DIRECT RECALL of facts:
- Simple "What is", "Who is", "When was" type questions
- Direct fact-based questions with straightforward answers
- Single-concept questions (no multi-step reasoning required)
- Questions where the answer is EXPLICITLY stated in one sentence
Do NOT include application, analysis, comparison or inference questions."""

_HARD = """DIFFICULTY LEVEL: HARD (Complex Reasoning Questions Only)
Generate ONLY HARD questions that require DEEP ANALYSIS and REASONING:
- Multi-step reasoning questions
- Compare and contrast questions
- Application of concepts to new scenarios
- "Which of the following is INCORRECT" elimination questions
- Statement-based questions (Which statements are correct?)
Do NOT include simple recall or single-fact identification questions."""

_MIXED = """DIFFICULTY LEVEL: MIXED (50% Easy + 50% Hard)
Generate a BALANCED MIX of Easy and Hard questions:
- EASY ({easy} questions): simple fact recall, "What is", "Who is" type
- HARD ({hard} questions): multi-step reasoning, analysis, "Which is INCORRECT" type
Alternate between Easy and Hard questions: Q1 Easy, Q2 Hard, and so on."""

_RATIOS = {
    "easy": "100% Basic Recall Questions",
    "hard": "100% Complex Reasoning Questions",
    "hard+easy": "50% Basic Recall + 50% Complex Reasoning (Alternating)",
}

PROMPT_TEMPLATE = """You are a SENIOR competitive exam paper setter with 20+ years experience.

{instructions}

QUESTION TYPE RATIO: {ratio}

QUALITY STANDARDS:
1. 100% FACTUAL ACCURACY - Every fact must be directly from the content
2. ZERO ASSUMPTIONS - Never guess, assume, or use external knowledge
3. UNIQUE CONCEPTS - Each question tests a completely different concept
4. EXAM PATTERN - Match recent exam question styles from {trend_period}
5. VERIFIABLE ANSWERS - Each correct answer must be provable from the content

STRICT OUTPUT FORMAT:

Q1. [Clear, exam-style question]
A. [Plausible option]
B. [Plausible option]
C. [Plausible option]
D. [Plausible option]
Correct Answer: [A/B/C/D]
Explanation: [State the correct answer with proof from the content, explain the concept, and why each wrong option is incorrect]

Q2. [Next question...]

CRITICAL RULES:
- ONLY use facts explicitly stated in the content below
- Every MCQ must have EXACTLY 4 options with only ONE correct answer
- Use simple English suitable for Class 10 students
- Include specific names, dates and numbers exactly as written

CONTENT ({page_info}):
{content}

Generate EXACTLY {n} {level} MCQs now:"""


def normalize_difficulty(difficulty: Optional[str]) -> str:
    value = (difficulty or "").strip().lower()
    return value if value in DIFFICULTIES else "hard+easy"


def trend_period(today: Optional[date] = None) -> str:
    """Window from the first of the month 18 months back up to today, e.g. 'Apr 2025 to Oct 2026'."""
    today = today or date.today()
    months = today.year * 12 + (today.month - 1) - 18
    start = date(months // 12, months % 12 + 1, 1)
    return f"{start.strftime('%b %Y')} to {today.strftime('%b %Y')}"


def render_prompt(content: str, n: int, difficulty: str = "hard+easy", page_info: str = "",
                  today: Optional[date] = None) -> str:
    level = normalize_difficulty(difficulty)
    if level == "easy":
        instructions = _EASY
    elif level == "hard":
        instructions = _HARD
    else:
        instructions = _MIXED.format(easy=(n + 1) // 2, hard=n // 2)
    return PROMPT_TEMPLATE.format(
        instructions=instructions,
        ratio=_RATIOS[level],
        trend_period=trend_period(today),
        page_info=page_info or "full document",
        content=(content or "")[:MAX_PROMPT_CONTENT_CHARS],
        n=n,
        level=level.upper(),
    )

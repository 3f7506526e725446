from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging
import math
import re

logger = logging.getLogger("partitioner")

PAGE_MARKER_RE = re.compile(r"--- Page (\d+) ---")
_PAGE_SPLIT_RE = re.compile(r"(?=--- Page \d+ ---)")

_NUMBER_RE = re.compile(r"\b\d+\b")
_YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")
_ARTICLE_RE = re.compile(r"\bArticle\s+\d+", re.I)
_PROPER_NOUN_RE = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b")
_KEYWORD_RE = re.compile(
    r"\b(scheme|act|committee|commission|policy|treaty|amendment|constitution|government|ministry|department)\b",
    re.I,
)

# each fact-density point is worth this many characters of weight
FACT_BONUS_CHARS = 20


@dataclass(frozen=True)
class ContentUnit:
    text: str
    first_page: Optional[int]
    last_page: Optional[int]
    weight: float

    @property
    def label(self) -> str:
        return _page_label(self.first_page, self.last_page)


@dataclass
class Batch:
    index: int
    text: str
    requested_count: int
    first_page: Optional[int]
    last_page: Optional[int]
    unit_count: int = 1

    @property
    def label(self) -> str:
        return _page_label(self.first_page, self.last_page)


def _page_label(first: Optional[int], last: Optional[int]) -> str:
    if first is None:
        return "Unpaged content" if last is None else f"Opening text to Page {last}"
    if last is None or last == first:
        return f"Page {first}"
    return f"Pages {first}-{last}"


def fact_density(text: str) -> float:
    """Heuristic count of exam-worthy facts: numbers, years, articles, names and keywords."""
    numbers = len(_NUMBER_RE.findall(text))
    years = len(_YEAR_RE.findall(text))
    articles = len(_ARTICLE_RE.findall(text))
    proper_nouns = len(_PROPER_NOUN_RE.findall(text))
    keywords = len(_KEYWORD_RE.findall(text))
    return numbers + years * 2 + articles * 3 + proper_nouns * 0.5 + keywords * 2


def unit_weight(text: str) -> float:
    return float(len(text.encode("utf-8"))) + fact_density(text) * FACT_BONUS_CHARS


class ContentPartitioner:
    def __init__(self, chunk_size: int = 35000, min_unit_chars: int = 100):
        # chunk_size: fallback character chunk size when the text has no page markers
        # min_unit_chars: slices with less stripped text than this carry too little to ask about
        self.chunk_size = chunk_size
        self.min_unit_chars = min_unit_chars

    def _make_unit(self, text: str, first: Optional[int], last: Optional[int]) -> ContentUnit:
        return ContentUnit(text=text, first_page=first, last_page=last, weight=unit_weight(text))

    def partition(self, full_text: str) -> List[ContentUnit]:
        text = full_text or ""
        units: List[ContentUnit] = []

        for part in _PAGE_SPLIT_RE.split(text):
            if len(part.strip()) <= self.min_unit_chars:
                continue
            m = PAGE_MARKER_RE.match(part)
            if not m:
                # text ahead of the first marker
                units.append(self._make_unit(part, None, None))
                continue
            page = int(m.group(1))
            units.append(self._make_unit(part, page, page))

        if not any(u.first_page is not None for u in units):
            # no usable page markers
            units = self.chunk_by_chars(text)

        logger.info("Partitioned %d chars into %d unit(s)", len(text), len(units))
        return units

    def chunk_by_chars(self, text: str) -> List[ContentUnit]:
        units: List[ContentUnit] = []
        for i in range(0, len(text), self.chunk_size):
            chunk = text[i:i + self.chunk_size]
            if len(chunk.strip()) > self.min_unit_chars:
                units.append(self._make_unit(chunk, None, None))
        return units

    def distribute_quota(self, units: Sequence[ContentUnit], target_total: int) -> List[int]:
        """Allocate ``target_total`` questions across units proportionally to weight.

        Every unit gets at least one question whenever ``target_total`` covers all
        units. Rounding drift is reconciled by growing the heaviest unit or
        shrinking the unit holding the most questions, so the result always sums
        to ``target_total``.
        """
        n = len(units)
        if n == 0 or target_total <= 0:
            return [0] * n

        if target_total < n:
            # not enough to cover every unit: one each for the heaviest units
            ranked = sorted(range(n), key=lambda i: units[i].weight, reverse=True)[:target_total]
            return [1 if i in ranked else 0 for i in range(n)]

        total_weight = sum(max(0.0, u.weight) for u in units)
        if total_weight <= 0:
            shares = [1.0 / n] * n
        else:
            shares = [max(0.0, u.weight) / total_weight for u in units]

        quotas = [max(1, int(math.floor(target_total * s + 0.5))) for s in shares]

        heaviest = max(range(n), key=lambda i: units[i].weight)
        drift = target_total - sum(quotas)
        while drift > 0:
            quotas[heaviest] += 1
            drift -= 1
        while drift < 0:
            largest = max(range(n), key=lambda i: quotas[i])
            if quotas[largest] <= 1:
                break
            quotas[largest] -= 1
            drift += 1
        return quotas

    def group_into_batches(self, units: Sequence[ContentUnit], quotas: Sequence[int], max_chars: int) -> List[Batch]:
        """Greedily pack consecutive units into batches of at most ``max_chars``.

        A unit larger than ``max_chars`` still becomes its own batch. Units with
        a zero quota are left out.
        """
        batches: List[Batch] = []
        current: List[ContentUnit] = []
        current_quota = 0
        current_len = 0

        def close():
            if not current:
                return
            batches.append(Batch(
                index=len(batches),
                text="\n".join(u.text for u in current),
                requested_count=current_quota,
                first_page=current[0].first_page,
                last_page=current[-1].last_page,
                unit_count=len(current),
            ))

        for unit, quota in zip(units, quotas):
            if quota <= 0:
                continue
            if current and current_len + len(unit.text) + 1 > max_chars:
                close()
                current, current_quota, current_len = [], 0, 0
            current.append(unit)
            current_quota += quota
            current_len += len(unit.text) + (1 if current_len else 0)
        close()
        return batches


def estimate_question_count(full_text: str, minimum: int = 20, maximum: int = 500) -> int:
    """Suggest how many questions cover a document from its size and fact density."""
    text = full_text or ""
    pages = len(PAGE_MARKER_RE.findall(text)) or max(1, math.ceil(len(text) / 3000))
    body = PAGE_MARKER_RE.sub(" ", text)

    chars = len(body)
    words = len([w for w in body.split() if len(w) > 2])
    facts = fact_density(body)

    by_chars = math.ceil(chars / 300)
    by_words = math.ceil(words / 80)
    by_facts = math.ceil(facts / 3)
    by_pages = pages * 5

    calculated = int(math.floor(by_chars * 0.2 + by_words * 0.2 + by_facts * 0.3 + by_pages * 0.3 + 0.5))
    estimated = min(maximum, max(minimum, calculated))
    logger.info("Estimated %d questions for %d page(s), %d words, fact density %.0f", estimated, pages, words, facts)
    return estimated

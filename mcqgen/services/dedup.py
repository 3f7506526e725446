from typing import Iterable, List, Optional, Set
import re

from mcqgen.services.mcq_parser import MCQRecord

FINGERPRINT_CHARS = 100

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def fingerprint(question: Optional[str]) -> str:
    """Lossy key for near-identical questions: lowercase alphanumerics, first 100 chars."""
    if not question or not isinstance(question, str):
        return ""
    return _NON_ALNUM_RE.sub("", question.lower())[:FINGERPRINT_CHARS]


class Deduplicator:
    """Stable first-seen-wins filter that remembers keys across calls."""

    def __init__(self):
        self._seen: Set[str] = set()

    def __len__(self) -> int:
        return len(self._seen)

    def accept(self, record: MCQRecord) -> bool:
        key = fingerprint(record.question)
        if not key or key in self._seen:
            return False
        self._seen.add(key)
        return True

    def filter(self, records: Iterable[MCQRecord]) -> List[MCQRecord]:
        return [r for r in records if self.accept(r)]


def deduplicate(records: Iterable[MCQRecord]) -> List[MCQRecord]:
    return Deduplicator().filter(records)

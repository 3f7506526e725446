from mcqgen.services.dedup import Deduplicator, deduplicate, fingerprint
from mcqgen.services.mcq_parser import MCQParseError, MCQRecord, parse_block, parse_mcqs

GOOD = """Q1. Which river is known as the sorrow of Bihar?
A. Ganga
B. Kosi
C. Son
D. Gandak
Correct Answer: B
Explanation (Testbook Style): The Kosi floods frequently.
It changes course often.

Q2. In which year did the Constitution of India come into force?
a) 1947
b) 1949
c) 1950
d) 1952
Correct Answer: (c)
Explanation: It came into force on 26 January 1950.
"""


def _record(question):
    return MCQRecord(question=question, options=["A. 1", "B. 2", "C. 3", "D. 4"], correct="a")


def test_parse_well_formed_blocks():
    records = parse_mcqs("Here are your questions:\n\n" + GOOD)
    assert len(records) == 2

    first = records[0]
    assert first.question == "Which river is known as the sorrow of Bihar?"
    assert first.options == ["A. Ganga", "B. Kosi", "C. Son", "D. Gandak"]
    assert first.correct == "b"
    assert first.explanation == "The Kosi floods frequently. It changes course often."
    assert first.selected is None

    assert records[1].correct == "c"


def test_out_of_range_answer_label_falls_back_to_first_option():
    block = GOOD.split("\n\n")[0].replace("Correct Answer: B", "Correct Answer: e")
    record = parse_block(block)
    assert record.correct == "a"


def test_answer_written_as_option_word_is_resolved():
    block = GOOD.split("\n\n")[0].replace("Correct Answer: B", "Correct Answer: Option D")
    assert parse_block(block).correct == "d"


def test_malformed_blocks_are_dropped_not_coerced():
    three_options = """Q1. Which planet is called the red planet?
A. Mars
B. Venus
C. Jupiter
Correct Answer: A
Explanation: Iron oxide."""
    no_answer = """Q2. Which gas do plants absorb from the air?
A. Oxygen
B. Nitrogen
C. Carbon dioxide
D. Helium
Explanation: Photosynthesis."""
    records = parse_mcqs(three_options + "\n\n" + no_answer + "\n\n" + GOOD)
    assert len(records) == 2

    try:
        parse_block(three_options)
        assert False, "Expected MCQParseError"
    except MCQParseError:
        pass


def test_question_continuation_lines_are_joined():
    block = """Q7. Consider the following statements about the Rajya Sabha:
1. It is a permanent body.
A. Only 1
B. Only 2
C. Both
D. Neither
Correct Answer: A
Explanation: One third retire every two years."""
    record = parse_block(block)
    assert record.question.endswith("It is a permanent body.")


def test_parse_handles_empty_input():
    assert parse_mcqs("") == []
    assert parse_mcqs(None) == []


def test_fingerprint_ignores_case_punctuation_and_tail():
    assert fingerprint("What is GDP?") == fingerprint("what is gdp")
    assert len(fingerprint("x" * 300)) == 100
    assert fingerprint("") == ""


def test_deduplicate_keeps_first_occurrence_and_is_idempotent():
    records = [_record("What is GDP?"), _record("Who wrote Gitanjali?"), _record("what is gdp!!")]
    once = deduplicate(records)
    assert [r.question for r in once] == ["What is GDP?", "Who wrote Gitanjali?"]
    assert deduplicate(once) == once


def test_deduplicator_remembers_across_batches():
    dedup = Deduplicator()
    assert dedup.filter([_record("Capital of France?")]) != []
    assert dedup.filter([_record("capital of france")]) == []
    assert len(dedup) == 1

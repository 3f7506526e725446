"""Fan-out/fan-in scheduler that turns document text into a set of unique MCQs.

A run partitions the text into weighted batches, over-requests questions,
launches every batch at once against the shared key pool and waits for all
of them before merging. Each batch retries on failure or low yield up to
``max_retries`` times, then hands back whatever it managed to produce. If
the merged, deduplicated set is still short of the requested count, up to
two supplemental single-batch rounds are issued against fixed slices of the
text. The run honours a cancellation event and a wall-clock budget. A cancel
returns the records merged before it; running out of time also keeps the
batches of the current round that had already finished.
"""

from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from threading import Event
from time import monotonic
from typing import Callable, List, Optional, Sequence, Tuple
import logging
import math

from pydantic import BaseModel

from mcqgen.services.dedup import Deduplicator
from mcqgen.services.generation_client import CallOutcome, CallStatus, GenerationClient
from mcqgen.services.key_pool import Credential, KeyPool
from mcqgen.services.mcq_parser import MCQRecord, parse_mcqs
from mcqgen.services.observability import observability
from mcqgen.services.partitioner import Batch, ContentPartitioner
from mcqgen.services.prompts import normalize_difficulty, render_prompt
from mcqgen.utils.env import env_float, env_int

logger = logging.getLogger("batch_scheduler")

ProgressCallback = Callable[[int, int, float], None]

_POLL_INTERVAL_SEC = 0.1


class NoContentError(ValueError):
    pass


class SchedulerPolicy(BaseModel):
    max_retries: int = 2
    retry_delay_sec: float = 1.5
    no_key_delay_sec: float = 0.3
    min_yield_ratio: float = 0.8
    overgeneration_factor: float = 1.3
    supplemental_padding: List[int] = [10, 5]
    supplemental_slice_chars: int = 50000
    max_batch_chars: int = 35000
    time_budget_sec: float = 600.0
    call_timeout_sec: float = 120.0
    # 0 runs every batch of a round at once
    max_concurrency: int = 0

    @classmethod
    def from_env(cls) -> "SchedulerPolicy":
        return cls(
            max_retries=env_int("MCQ_MAX_RETRIES", 2),
            retry_delay_sec=env_float("MCQ_RETRY_DELAY", 1.5),
            no_key_delay_sec=env_float("MCQ_NO_KEY_DELAY", 0.3),
            min_yield_ratio=env_float("MCQ_MIN_YIELD_RATIO", 0.8),
            overgeneration_factor=env_float("MCQ_OVERGENERATION", 1.3),
            supplemental_slice_chars=env_int("MCQ_SUPPLEMENT_SLICE_CHARS", 50000),
            max_batch_chars=env_int("MCQ_MAX_BATCH_CHARS", 35000),
            time_budget_sec=env_float("MCQ_TIME_BUDGET", 600.0),
            call_timeout_sec=env_float("MCQ_CALL_TIMEOUT", 120.0),
            max_concurrency=env_int("MCQ_MAX_CONCURRENCY", 0),
        )


class GenerationConfig(BaseModel):
    difficulty: str = "hard+easy"
    temperature: float = 0.05
    tokens_per_question: int = 1200
    max_output_tokens: int = 24000


class BatchState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCESS = "success"
    RETRYABLE = "retryable"
    EXHAUSTED = "exhausted"


@dataclass
class BatchResult:
    batch: Batch
    state: BatchState = BatchState.PENDING
    attempts: int = 0
    records: List[MCQRecord] = field(default_factory=list)


class GenerationReport(BaseModel):
    records: List[MCQRecord] = []
    requested: int
    rounds: int = 0
    batches: int = 0
    cancelled: bool = False
    elapsed_sec: float = 0.0
    messages: List[str] = []

    @property
    def produced(self) -> int:
        return len(self.records)


class _RunControl:
    def __init__(self, cancel: Optional[Event], budget_sec: float):
        self.cancel = cancel or Event()
        self.started = monotonic()
        self.deadline = self.started + max(0.0, budget_sec)

    def elapsed(self) -> float:
        return monotonic() - self.started

    def remaining(self) -> float:
        return max(0.0, self.deadline - monotonic())

    def stopped(self) -> bool:
        return self.cancel.is_set() or monotonic() >= self.deadline

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if the run was stopped meanwhile."""
        if seconds > 0:
            self.cancel.wait(min(seconds, self.remaining()))
        return self.stopped()


class _Progress:
    def __init__(self, callback: Optional[ProgressCallback], control: _RunControl):
        self.callback = callback
        self.control = control
        self.completed = 0
        self.total = 0

    def plan(self, units: int) -> None:
        self.total += units
        self._emit()

    def advance(self) -> None:
        self.completed += 1
        self._emit()

    def _emit(self) -> None:
        if self.callback is None:
            return
        try:
            self.callback(self.completed, self.total, self.control.elapsed())
        except Exception:
            logger.exception("Progress callback failed")


class BatchScheduler:
    def __init__(self, pool: KeyPool, client: GenerationClient, policy: Optional[SchedulerPolicy] = None,
                 partitioner: Optional[ContentPartitioner] = None):
        self.pool = pool
        self.client = client
        self.policy = policy or SchedulerPolicy()
        self.partitioner = partitioner or ContentPartitioner(chunk_size=self.policy.max_batch_chars)

    def generate(self, full_text: str, requested_count: int, config: Optional[GenerationConfig] = None,
                 cancel: Optional[Event] = None, progress: Optional[ProgressCallback] = None) -> List[MCQRecord]:
        return self.run(full_text, requested_count, config, cancel=cancel, progress=progress).records

    def run(self, full_text: str, requested_count: int, config: Optional[GenerationConfig] = None,
            cancel: Optional[Event] = None, progress: Optional[ProgressCallback] = None) -> GenerationReport:
        if requested_count < 1:
            raise ValueError("requested_count must be at least 1")
        config = config or GenerationConfig()
        units = self.partitioner.partition(full_text)
        if not units:
            raise NoContentError("Content too short to generate questions from")

        control = _RunControl(cancel, self.policy.time_budget_sec)
        tracker = _Progress(progress, control)
        report = GenerationReport(requested=requested_count)
        dedup = Deduplicator()
        merged: List[MCQRecord] = []

        self.pool.reset_usage()

        target = math.ceil(requested_count * self.policy.overgeneration_factor)
        quotas = self.partitioner.distribute_quota(units, target)
        batches = self.partitioner.group_into_batches(units, quotas, self.policy.max_batch_chars)
        logger.info("Run: %d requested (%d planned) across %d unit(s) in %d batch(es)",
                    requested_count, target, len(units), len(batches))
        report.messages.append(
            f"Generating {requested_count} {normalize_difficulty(config.difficulty).upper()} MCQs "
            f"across {len(units)} section(s) in {len(batches)} batch(es)"
        )

        with observability.timer("generation.run"):
            round_batches: Optional[List[Batch]] = batches
            round_no = 0
            while round_batches:
                round_no += 1
                tracker.plan(len(round_batches))
                results, stopped = self._run_round(round_batches, config, control, tracker)
                report.rounds = round_no
                report.batches += len(round_batches)
                for result in results:
                    merged.extend(dedup.filter(result.records))
                label = "Round 1" if round_no == 1 else f"Supplemental round {round_no - 1}"
                report.messages.append(f"{label}: {len(merged)}/{requested_count} unique MCQs")
                if stopped:
                    report.cancelled = True
                    break

                supplement_no = round_no - 1
                if len(merged) >= requested_count or supplement_no >= len(self.policy.supplemental_padding):
                    break
                if control.stopped():
                    report.cancelled = True
                    break
                deficit = requested_count - len(merged)
                extra = deficit + self.policy.supplemental_padding[supplement_no]
                round_batches = [self._supplemental_batch(full_text, supplement_no, extra, report.batches)]
                observability.incr("round.supplemental")
                logger.info("Short by %d, issuing supplemental round %d for %d MCQs",
                            deficit, supplement_no + 1, extra)

        if report.cancelled:
            observability.incr("run.cancelled")
            reason = "cancelled" if control.cancel.is_set() else "time budget exhausted"
            report.messages.append(f"Run stopped early ({reason}); returning {len(merged)} merged MCQs")

        report.records = merged[:requested_count]
        report.elapsed_sec = round(control.elapsed(), 3)
        report.messages.append(f"Generated {report.produced}/{requested_count} unique MCQs")
        observability.add_trace({
            "event": "generation_run",
            "requested": requested_count,
            "produced": report.produced,
            "rounds": report.rounds,
            "batches": report.batches,
            "cancelled": report.cancelled,
            "elapsed_sec": report.elapsed_sec,
        })
        logger.info("Run finished: %d/%d MCQs in %d round(s), %.1fs%s", report.produced, requested_count,
                    report.rounds, report.elapsed_sec, " (stopped early)" if report.cancelled else "")
        return report

    def _supplemental_batch(self, full_text: str, supplement_no: int, requested: int, index: int) -> Batch:
        size = self.policy.supplemental_slice_chars
        offset = supplement_no * min(size, len(full_text) // 2)
        if offset >= len(full_text):
            offset = 0
        return Batch(index=index, text=full_text[offset:offset + size], requested_count=requested,
                     first_page=None, last_page=None)

    def _run_round(self, batches: Sequence[Batch], config: GenerationConfig, control: _RunControl,
                   tracker: _Progress) -> Tuple[List[BatchResult], bool]:
        """Launch every batch at once and wait for all of them.

        Returns the finished results in submission order and whether the run was
        stopped before the round completed. When the time budget runs out the
        batches that already came back are kept; an explicit cancel keeps none
        of this round.
        """
        if not batches:
            return [], False
        results: List[Optional[BatchResult]] = [None] * len(batches)
        cap = self.policy.max_concurrency
        workers = len(batches) if cap <= 0 else max(1, min(len(batches), cap))
        stopped = False
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mcq-batch")
        try:
            futures = {executor.submit(self._run_batch, b, config, control): i for i, b in enumerate(batches)}
            pending = set(futures)
            while pending:
                if control.stopped():
                    # in-flight answers are abandoned
                    stopped = True
                    break
                done, pending = wait(pending, timeout=min(_POLL_INTERVAL_SEC, control.remaining()),
                                     return_when=FIRST_COMPLETED)
                for fut in done:
                    results[futures[fut]] = fut.result()
                    tracker.advance()
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        if stopped and control.cancel.is_set():
            return [], True
        return [r for r in results if r is not None], stopped

    def _run_batch(self, batch: Batch, config: GenerationConfig, control: _RunControl) -> BatchResult:
        result = BatchResult(batch=batch)
        prompt = render_prompt(batch.text, batch.requested_count, config.difficulty, batch.label)
        max_tokens = min(batch.requested_count * config.tokens_per_question, config.max_output_tokens)
        needed = self.policy.min_yield_ratio * batch.requested_count
        delay = 0.0

        for attempt in range(self.policy.max_retries + 1):
            if attempt:
                control.wait(delay)
            if control.stopped():
                break
            result.attempts += 1
            result.state = BatchState.IN_FLIGHT

            cred = self.pool.next()
            if cred is None:
                logger.info("Batch %d (%s): no API key available, retrying shortly", batch.index + 1, batch.label)
                result.state = BatchState.RETRYABLE
                delay = self.policy.no_key_delay_sec
                continue
            delay = self.policy.retry_delay_sec

            outcome = self._call(cred, prompt, max_tokens, config, control)
            if control.cancel.is_set():
                break
            if not outcome.ok:
                result.state = BatchState.RETRYABLE
                logger.info("Batch %d (%s) attempt %d failed: %s", batch.index + 1, batch.label,
                            attempt + 1, outcome.error or outcome.status.value)
                continue

            records = parse_mcqs(outcome.text)
            result.records.extend(records)
            logger.info("Batch %d (%s): %d/%d MCQs from key %s", batch.index + 1, batch.label,
                        len(records), batch.requested_count, cred.masked)
            if len(records) >= needed:
                result.state = BatchState.SUCCESS
                observability.incr("batch.success")
                return result
            result.state = BatchState.RETRYABLE

        result.state = BatchState.EXHAUSTED
        observability.incr("batch.exhausted")
        logger.warning("Batch %d (%s) exhausted after %d attempt(s) with %d MCQs", batch.index + 1,
                       batch.label, result.attempts, len(result.records))
        return result

    def _call(self, cred: Credential, prompt: str, max_tokens: int, config: GenerationConfig,
              control: _RunControl) -> CallOutcome:
        timeout = max(0.1, min(self.policy.call_timeout_sec, control.remaining()))
        try:
            outcome = self.client.generate(cred.key, prompt, max_output_tokens=max_tokens,
                                           temperature=config.temperature, timeout=timeout)
        except Exception as e:
            logger.exception("Generation client raised for key %s", cred.masked)
            outcome = CallOutcome(CallStatus.TRANSIENT_FAILURE, error=str(e) or type(e).__name__)

        if outcome.status == CallStatus.RATE_LIMITED:
            self.pool.mark_rate_limited(cred.id)
        elif outcome.status == CallStatus.INVALID_CREDENTIAL:
            self.pool.mark_inactive(cred.id)
        return outcome

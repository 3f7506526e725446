"""Pool of interchangeable API keys with round-robin selection and cooldowns.

Selection is strict round-robin over active keys in rotation order, skipping
keys that were used within ``cooldown_sec``. When every eligible key is still
cooling down the key idle for the longest time is used instead. A key marked
rate-limited is excluded until ``recovery_window_sec`` has elapsed.

All state lives on the pool instance and every mutation happens under one
lock, so ``next()`` is safe to call from many worker threads at once.
"""

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from threading import Lock
from time import time
from typing import Callable, Dict, List, Optional, Sequence
import hashlib
import logging
import re

from pydantic import BaseModel

from mcqgen.services.generation_client import GenerationClient, mask_key
from mcqgen.utils.env import env_flag, env_float, env_int

logger = logging.getLogger("key_pool")

GEMINI_KEY_RE = re.compile(r"^AIzaSy[A-Za-z0-9_-]{33}$")

ACTIVE = "active"
INACTIVE = "inactive"

# a key used this recently is reported as busy in statuses()
_BUSY_WINDOW_SEC = 5.0


class KeyPoolError(Exception):
    pass


class UnknownKeyError(KeyPoolError):
    pass


class ValidationStatus(str, Enum):
    SUCCESS = "success"
    INVALID = "invalid"
    REPLACED = "replaced"
    LIMIT_REACHED = "limit_reached"
    DUPLICATE = "duplicate"


class ValidationResult(BaseModel):
    key: str
    status: ValidationStatus
    message: str


class KeyStatus(BaseModel):
    index: int
    key_id: str
    key: str
    status: str
    request_count: int
    recovery_progress: int


class PoolPolicy(BaseModel):
    max_keys: int = 50
    cooldown_sec: float = 3.0
    recovery_window_sec: float = 90.0
    probe_timeout_sec: float = 15.0
    halt_on_invalid: bool = True

    @classmethod
    def from_env(cls) -> "PoolPolicy":
        return cls(
            max_keys=env_int("KEY_POOL_MAX_KEYS", 50),
            cooldown_sec=env_float("KEY_COOLDOWN_SEC", 3.0),
            recovery_window_sec=env_float("KEY_RECOVERY_SEC", 90.0),
            probe_timeout_sec=env_float("KEY_PROBE_TIMEOUT_SEC", 15.0),
            halt_on_invalid=env_flag("KEY_HALT_ON_INVALID", True),
        )


def is_key_format(key: str) -> bool:
    return bool(GEMINI_KEY_RE.match((key or "").strip()))


def key_id_for(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]


class Credential:
    def __init__(self, key: str, order: int, now: float):
        self.key = key
        self.id = key_id_for(key)
        self.order = order
        self.status = ACTIVE
        self.added_at = now
        self.last_checked = now
        self.request_count = 0
        self.last_used: Optional[float] = None
        self.rate_limited = False
        self.rate_limited_at = 0.0

    @property
    def masked(self) -> str:
        return mask_key(self.key)

    def __repr__(self) -> str:
        return f"Credential(id={self.id!r}, key={self.masked!r}, order={self.order}, status={self.status!r})"


class KeyPool:
    def __init__(self, client: GenerationClient, policy: Optional[PoolPolicy] = None,
                 clock: Callable[[], float] = time):
        self.client = client
        self.policy = policy or PoolPolicy()
        self._clock = clock
        self._lock = Lock()
        self._keys: List[Credential] = []
        self._last_order = -1
        self._next_order = 0

    # -- population -------------------------------------------------------

    def add(self, raw_keys: Sequence[str]) -> List[ValidationResult]:
        """Validate and add keys in order, halting on a malformed key or a full pool."""
        results: List[ValidationResult] = []
        for key in [k.strip() for k in raw_keys if k and k.strip()]:
            if self._find_by_key(key) is not None:
                results.append(ValidationResult(key=mask_key(key), status=ValidationStatus.DUPLICATE,
                                                message="API key already exists in your list."))
                continue

            if not is_key_format(key):
                results.append(ValidationResult(key=mask_key(key), status=ValidationStatus.INVALID,
                                                message="Invalid API key: This is not a Google Gemini API key."))
                if self.policy.halt_on_invalid:
                    logger.info("Bulk add halted at malformed key after %d result(s)", len(results))
                    break
                continue

            valid, error = self._probe(key)
            if not valid:
                results.append(ValidationResult(key=mask_key(key), status=ValidationStatus.INVALID,
                                                message=f"API key health check failed: {error}"))
                continue

            status = self._insert(key)
            if status == ValidationStatus.LIMIT_REACHED:
                results.append(ValidationResult(key=mask_key(key), status=status,
                                                message="API key limit reached. No additional keys can be added."))
                if self.policy.halt_on_invalid:
                    break
                continue
            if status == ValidationStatus.DUPLICATE:
                # another add inserted the same key after the check above
                message = "API key already exists in your list."
            elif status == ValidationStatus.REPLACED:
                message = "API key replaced an inactive key."
            else:
                message = "API key added successfully."
            results.append(ValidationResult(key=mask_key(key), status=status, message=message))

        logger.info("Bulk add processed %d key(s): %s", len(results),
                    ", ".join(r.status.value for r in results) or "none")
        return results

    def seed(self, raw_keys: Sequence[str]) -> int:
        """Insert server-provided keys without a live probe. Returns how many were added."""
        added = 0
        for key in [k.strip() for k in raw_keys if k and k.strip()]:
            if not is_key_format(key):
                logger.warning("Skipping malformed server key %s", mask_key(key))
                continue
            if self._find_by_key(key) is not None:
                continue
            if self._insert(key) != ValidationStatus.LIMIT_REACHED:
                added += 1
        return added

    def _probe(self, key: str):
        try:
            return self.client.probe(key, timeout=self.policy.probe_timeout_sec)
        except Exception as e:
            logger.warning("Probe for %s raised: %s", mask_key(key), e)
            return False, str(e) or "Network error"

    def _insert(self, key: str) -> ValidationStatus:
        now = self._clock()
        with self._lock:
            if any(c.key == key for c in self._keys):
                return ValidationStatus.DUPLICATE
            for i, existing in enumerate(self._keys):
                if existing.status == INACTIVE:
                    self._keys[i] = Credential(key, existing.order, now)
                    return ValidationStatus.REPLACED
            if len(self._keys) >= self.policy.max_keys:
                return ValidationStatus.LIMIT_REACHED
            self._keys.append(Credential(key, self._next_order, now))
            self._next_order += 1
            return ValidationStatus.SUCCESS

    def _find_by_key(self, key: str) -> Optional[Credential]:
        with self._lock:
            for c in self._keys:
                if c.key == key:
                    return c
        return None

    def remove(self, key_id: str) -> None:
        with self._lock:
            before = len(self._keys)
            self._keys = [c for c in self._keys if c.id != key_id]
            if len(self._keys) == before:
                raise UnknownKeyError(key_id)

    def clear(self) -> None:
        with self._lock:
            self._keys = []
            self._last_order = -1

    # -- selection --------------------------------------------------------

    def next(self) -> Optional[Credential]:
        """Pick the next usable key and record its use. Never blocks on I/O."""
        with self._lock:
            now = self._clock()
            eligible: List[Credential] = []
            for c in self._keys:
                if c.status != ACTIVE:
                    continue
                if c.rate_limited:
                    if now - c.rate_limited_at < self.policy.recovery_window_sec:
                        continue
                    c.rate_limited = False
                    c.rate_limited_at = 0.0
                eligible.append(c)

            if not eligible:
                logger.debug("No available API keys")
                return None

            eligible.sort(key=lambda c: c.order)
            start = 0
            for i, c in enumerate(eligible):
                if c.order > self._last_order:
                    start = i
                    break
            rotation = eligible[start:] + eligible[:start]

            selected = None
            for c in rotation:
                if c.last_used is None or now - c.last_used >= self.policy.cooldown_sec:
                    selected = c
                    break
            if selected is None:
                selected = min(rotation, key=lambda c: c.last_used)

            self._last_order = selected.order
            selected.request_count += 1
            selected.last_used = now
            logger.debug("Using API key %s (order %d, %d active)", selected.masked, selected.order, len(eligible))
            return selected

    def mark_rate_limited(self, key_id: str) -> None:
        with self._lock:
            for c in self._keys:
                if c.id == key_id and not c.rate_limited:
                    logger.info("API key %s rate limited, resting %.0fs", c.masked, self.policy.recovery_window_sec)
                    c.rate_limited = True
                    c.rate_limited_at = self._clock()

    def mark_inactive(self, key_id: str) -> None:
        with self._lock:
            for c in self._keys:
                if c.id == key_id and c.status != INACTIVE:
                    logger.warning("API key %s rejected by provider, marking inactive", c.masked)
                    c.status = INACTIVE

    def reset_usage(self) -> None:
        with self._lock:
            self._last_order = -1
            for c in self._keys:
                c.request_count = 0
                c.last_used = None
                c.rate_limited = False
                c.rate_limited_at = 0.0

    # -- health and reporting ---------------------------------------------

    def refresh_health(self) -> None:
        """Re-probe every key that is not already inactive, concurrently."""
        with self._lock:
            targets = [c for c in self._keys if c.status != INACTIVE]
        if not targets:
            return
        with ThreadPoolExecutor(max_workers=min(8, len(targets))) as pool:
            outcomes = list(pool.map(lambda c: self._probe(c.key)[0], targets))
        now = self._clock()
        with self._lock:
            for cred, valid in zip(targets, outcomes):
                cred.status = ACTIVE if valid else INACTIVE
                cred.last_checked = now
        logger.info("Health refresh: %d/%d key(s) healthy", sum(outcomes), len(targets))

    def available_count(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(
                1 for c in self._keys
                if c.status == ACTIVE
                and not (c.rate_limited and now - c.rate_limited_at < self.policy.recovery_window_sec)
            )

    def statuses(self) -> List[KeyStatus]:
        with self._lock:
            now = self._clock()
            window = self.policy.recovery_window_sec
            out: List[KeyStatus] = []
            for i, c in enumerate(self._keys):
                status = "idle"
                progress = 100
                if c.status == INACTIVE:
                    status = "inactive"
                elif c.rate_limited:
                    elapsed = now - c.rate_limited_at
                    if elapsed < window:
                        status = "recovering"
                        progress = min(100, round(elapsed / window * 100)) if window > 0 else 100
                        if progress == 0:
                            status = "rate-limited"
                elif c.last_used is not None and now - c.last_used < _BUSY_WINDOW_SEC:
                    status = "active"
                out.append(KeyStatus(index=i, key_id=c.id, key=c.masked, status=status,
                                     request_count=c.request_count, recovery_progress=progress))
            return out

    def snapshot(self) -> Dict[str, Credential]:
        with self._lock:
            return {c.id: c for c in self._keys}

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

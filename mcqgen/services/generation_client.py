"""Remote generation clients: one outbound call per attempt, outcome classified.

Clients never retry on their own; the batch scheduler owns retry policy and
credential rotation, so every call here is a single request with a hard
timeout whose result is reported as a ``CallOutcome`` rather than raised.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import logging
import re
from time import perf_counter

import requests

from mcqgen.services.observability import observability
from mcqgen.utils.env import env_str

logger = logging.getLogger("generation_client")

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_MODEL = "gemini-2.5-flash"

PROBE_PROMPT = 'Say "OK" only.'

_INVALID_KEY_STATUS = {400, 401, 403}


class CallStatus(str, Enum):
    SUCCESS = "success"
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_FAILURE = "transient_failure"
    TIMEOUT = "timeout"


@dataclass
class CallOutcome:
    status: CallStatus
    text: str = ""
    http_status: Optional[int] = None
    error: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == CallStatus.SUCCESS


def mask_key(key: str) -> str:
    key = (key or "").strip()
    if len(key) <= 10:
        return "***"
    return f"{key[:6]}...{key[-4:]}"


def classify_response(resp: requests.Response) -> Tuple[CallStatus, Optional[str]]:
    """Map an HTTP response onto a call status plus an error message."""
    code = resp.status_code
    if 200 <= code < 300:
        return CallStatus.SUCCESS, None
    message = f"HTTP {code}"
    try:
        data = resp.json()
        err = data.get("error") if isinstance(data, dict) else None
        if isinstance(err, dict) and err.get("message"):
            message = str(err["message"])
        elif isinstance(err, str) and err:
            message = err
    except ValueError:
        pass
    if code == 429:
        return CallStatus.RATE_LIMITED, message
    if code in _INVALID_KEY_STATUS:
        return CallStatus.INVALID_CREDENTIAL, message
    return CallStatus.TRANSIENT_FAILURE, message


class GenerationClient:
    """Interface for remote text generation providers."""

    def generate(self, api_key: str, prompt: str, max_output_tokens: int,
                 temperature: float = 0.05, timeout: float = 120.0) -> CallOutcome:
        raise NotImplementedError()

    def probe(self, api_key: str, timeout: float = 15.0) -> Tuple[bool, Optional[str]]:
        """Minimal live call. A rate-limited key still counts as valid."""
        outcome = self.generate(api_key, PROBE_PROMPT, max_output_tokens=5, temperature=0.0, timeout=timeout)
        if outcome.status in (CallStatus.SUCCESS, CallStatus.RATE_LIMITED):
            return True, None
        if outcome.status == CallStatus.INVALID_CREDENTIAL:
            return False, "Invalid or revoked API key"
        if outcome.status == CallStatus.TIMEOUT:
            return False, "Request timeout"
        return False, outcome.error or "Network error"


class _HttpGenerationClient(GenerationClient):

    def _url(self, api_key: str) -> str:
        raise NotImplementedError()

    def _headers(self, api_key: str) -> Dict[str, str]:
        raise NotImplementedError()

    def _payload(self, prompt: str, max_output_tokens: int, temperature: float) -> Dict[str, Any]:
        raise NotImplementedError()

    def _extract_text(self, data: Dict[str, Any]) -> str:
        raise NotImplementedError()

    def generate(self, api_key: str, prompt: str, max_output_tokens: int,
                 temperature: float = 0.05, timeout: float = 120.0) -> CallOutcome:
        observability.incr("generation.calls")
        started = perf_counter()
        try:
            resp = requests.post(
                self._url(api_key),
                headers=self._headers(api_key),
                json=self._payload(prompt, max_output_tokens, temperature),
                timeout=timeout,
            )
        except requests.exceptions.Timeout:
            observability.incr("generation.timeouts")
            logger.warning("Generation call timed out after %.1fs (key %s)", timeout, mask_key(api_key))
            return CallOutcome(CallStatus.TIMEOUT, error="Request timeout")
        except requests.exceptions.RequestException as e:
            logger.warning("Generation call failed (key %s): %s", mask_key(api_key), e)
            return CallOutcome(CallStatus.TRANSIENT_FAILURE, error=str(e) or "Network error")
        finally:
            observability.observe_ms("generation.call", (perf_counter() - started) * 1000.0)

        status, error = classify_response(resp)
        if status != CallStatus.SUCCESS:
            if status == CallStatus.RATE_LIMITED:
                observability.incr("generation.rate_limited")
            logger.info("Generation call returned HTTP %d (key %s): %s", resp.status_code, mask_key(api_key), error)
            return CallOutcome(status, http_status=resp.status_code, error=error)

        try:
            data = resp.json()
        except ValueError:
            return CallOutcome(CallStatus.TRANSIENT_FAILURE, http_status=resp.status_code, error="Response was not JSON")
        text = self._extract_text(data if isinstance(data, dict) else {})
        if not text:
            return CallOutcome(CallStatus.TRANSIENT_FAILURE, http_status=resp.status_code, error="Empty response")
        return CallOutcome(CallStatus.SUCCESS, text=text, http_status=resp.status_code, usage=self._extract_usage(data))

    def _extract_usage(self, data: Any) -> Dict[str, int]:
        return {}


class GeminiClient(_HttpGenerationClient):
    """Gemini ``generateContent`` REST endpoint, key sent in the request header."""

    def __init__(self, model: str = GEMINI_MODEL, endpoint: str = GEMINI_ENDPOINT,
                 top_p: float = 0.9, top_k: int = 20):
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.top_p = top_p
        self.top_k = top_k

    def _url(self, api_key: str) -> str:
        return f"{self.endpoint}/models/{self.model}:generateContent"

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {"x-goog-api-key": api_key, "Content-Type": "application/json"}

    def _payload(self, prompt: str, max_output_tokens: int, temperature: float) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "maxOutputTokens": max_output_tokens,
                "temperature": temperature,
                "topP": self.top_p,
                "topK": self.top_k,
            },
        }

    def _extract_text(self, data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not isinstance(candidates, list) or not candidates:
            return ""
        content = (candidates[0] or {}).get("content") or {}
        parts = content.get("parts") or []
        texts: List[str] = []
        for part in parts:
            if isinstance(part, dict):
                txt = part.get("text")
                if isinstance(txt, str) and txt.strip():
                    texts.append(txt.strip())
        return "\n".join(texts)

    def _extract_usage(self, data: Any) -> Dict[str, int]:
        usage = (data or {}).get("usageMetadata") or {}
        return {
            "prompt_tokens": int(usage.get("promptTokenCount", 0)),
            "completion_tokens": int(usage.get("candidatesTokenCount", 0)),
            "total_tokens": int(usage.get("totalTokenCount", 0)),
        }


class OpenAICompatibleClient(_HttpGenerationClient):
    """Chat-completions gateway; the pooled key is used as the Bearer token."""

    system_prompt = (
        "You are an expert exam question generator. Generate high-quality MCQs "
        "in the exact format specified. Be accurate and precise."
    )

    def __init__(self, endpoint: str, model: str):
        self.endpoint = endpoint.rstrip("/")
        self.model = model

    def _url(self, api_key: str) -> str:
        return f"{self.endpoint}/chat/completions"

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    def _payload(self, prompt: str, max_output_tokens: int, temperature: float) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_output_tokens,
            "temperature": temperature,
        }

    def _extract_text(self, data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not isinstance(choices, list) or not choices:
            return ""
        message = (choices[0] or {}).get("message") or {}
        content = message.get("content")
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            parts = [item.get("text", "").strip() for item in content if isinstance(item, dict)]
            return "\n".join(p for p in parts if p)
        return ""

    def _extract_usage(self, data: Any) -> Dict[str, int]:
        usage = (data or {}).get("usage") or {}
        return {
            "prompt_tokens": int(usage.get("prompt_tokens", 0)),
            "completion_tokens": int(usage.get("completion_tokens", 0)),
            "total_tokens": int(usage.get("total_tokens", 0)),
        }


_REQUEST_COUNT_RE = re.compile(r"Generate EXACTLY (\d+)")
_CONTENT_RE = re.compile(r"CONTENT \([^)]*\):\n(.*)\n\nGenerate EXACTLY", re.S)


class MockGenerationClient(GenerationClient):
    """Offline client that writes well-formed MCQ blocks from the prompt's content."""

    def generate(self, api_key: str, prompt: str, max_output_tokens: int,
                 temperature: float = 0.05, timeout: float = 120.0) -> CallOutcome:
        if prompt == PROBE_PROMPT:
            return CallOutcome(CallStatus.SUCCESS, text="OK", http_status=200)
        m = _REQUEST_COUNT_RE.search(prompt)
        n = int(m.group(1)) if m else 1
        content_match = _CONTENT_RE.search(prompt)
        content = content_match.group(1) if content_match else prompt
        words = [w for w in re.findall(r"[A-Za-z][A-Za-z0-9]+", content) if len(w) > 3] or ["topic"]

        blocks = []
        for i in range(n):
            subject = words[i % len(words)]
            blocks.append(
                f"Q{i + 1}. Mock question {i + 1} about {subject} ({len(words)} terms)?\n"
                f"A. {subject}\nB. Not {subject}\nC. Both\nD. Neither\n"
                "Correct Answer: A\n"
                f"Explanation: {subject} appears in the supplied content."
            )
        return CallOutcome(CallStatus.SUCCESS, text="\n\n".join(blocks), http_status=200)


def get_generation_client() -> GenerationClient:
    provider = env_str("LLM_PROVIDER", "mock").lower()

    if provider == "mock":
        return MockGenerationClient()

    if provider == "gemini":
        return GeminiClient(
            model=env_str("GEMINI_MODEL", GEMINI_MODEL),
            endpoint=env_str("GEMINI_ENDPOINT", GEMINI_ENDPOINT),
        )

    if provider in ("openai-compatible", "openai", "gateway"):
        endpoint = env_str("OpenAIEndpoint")
        model = env_str("OpenAIDeploymentName")
        if not endpoint or not model:
            raise RuntimeError("OpenAI-compatible settings not configured in env")
        return OpenAICompatibleClient(endpoint=endpoint, model=model)

    raise RuntimeError(f"LLM provider '{provider}' not implemented")

import requests

from mcqgen.services.generation_client import (
    CallStatus,
    GeminiClient,
    MockGenerationClient,
    OpenAICompatibleClient,
    mask_key,
)
from mcqgen.services.mcq_parser import parse_mcqs

KEY = "AIzaSy" + "k" * 33


class _FakeResp:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def _gemini_payload(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}], "usageMetadata": {"totalTokenCount": 12}}


def test_gemini_success_sends_key_in_header_only(monkeypatch):
    seen = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        seen.update(url=url, headers=headers, json=json, timeout=timeout)
        return _FakeResp(_gemini_payload("Q1. generated"))

    monkeypatch.setattr("mcqgen.services.generation_client.requests.post", fake_post)

    out = GeminiClient().generate(KEY, "prompt", max_output_tokens=1200, timeout=7)
    assert out.status == CallStatus.SUCCESS
    assert out.text == "Q1. generated"
    assert out.usage["total_tokens"] == 12
    assert seen["headers"]["x-goog-api-key"] == KEY
    assert KEY not in seen["url"]
    assert KEY not in str(seen["json"])
    assert seen["json"]["generationConfig"]["maxOutputTokens"] == 1200
    assert seen["timeout"] == 7


def test_gemini_classifies_error_statuses(monkeypatch):
    cases = [
        (429, CallStatus.RATE_LIMITED),
        (403, CallStatus.INVALID_CREDENTIAL),
        (400, CallStatus.INVALID_CREDENTIAL),
        (503, CallStatus.TRANSIENT_FAILURE),
    ]
    client = GeminiClient()
    for status, expected in cases:
        monkeypatch.setattr(
            "mcqgen.services.generation_client.requests.post",
            lambda *args, _s=status, **kwargs: _FakeResp({"error": {"message": "nope"}}, status=_s),
        )
        out = client.generate(KEY, "prompt", max_output_tokens=10)
        assert out.status == expected
        assert out.http_status == status
        assert out.error == "nope"


def test_timeout_and_network_errors_are_outcomes_not_exceptions(monkeypatch):
    def raise_timeout(*args, **kwargs):
        raise requests.exceptions.Timeout("slow")

    monkeypatch.setattr("mcqgen.services.generation_client.requests.post", raise_timeout)
    assert GeminiClient().generate(KEY, "p", max_output_tokens=10).status == CallStatus.TIMEOUT

    def raise_conn(*args, **kwargs):
        raise requests.exceptions.ConnectionError("down")

    monkeypatch.setattr("mcqgen.services.generation_client.requests.post", raise_conn)
    assert GeminiClient().generate(KEY, "p", max_output_tokens=10).status == CallStatus.TRANSIENT_FAILURE


def test_empty_success_body_is_transient(monkeypatch):
    monkeypatch.setattr(
        "mcqgen.services.generation_client.requests.post",
        lambda *args, **kwargs: _FakeResp({"candidates": []}),
    )
    out = GeminiClient().generate(KEY, "p", max_output_tokens=10)
    assert out.status == CallStatus.TRANSIENT_FAILURE


def test_probe_treats_rate_limited_key_as_valid(monkeypatch):
    monkeypatch.setattr(
        "mcqgen.services.generation_client.requests.post",
        lambda *args, **kwargs: _FakeResp({}, status=429),
    )
    assert GeminiClient().probe(KEY) == (True, None)

    monkeypatch.setattr(
        "mcqgen.services.generation_client.requests.post",
        lambda *args, **kwargs: _FakeResp({}, status=400),
    )
    valid, error = GeminiClient().probe(KEY)
    assert valid is False
    assert "Invalid" in error


def test_openai_compatible_uses_bearer_and_joins_content_parts(monkeypatch):
    seen = {}
    payload = {"choices": [{"message": {"content": [{"text": "alpha"}, {"text": "beta"}]}}]}

    def fake_post(url, headers=None, json=None, timeout=None):
        seen.update(url=url, headers=headers)
        return _FakeResp(payload)

    monkeypatch.setattr("mcqgen.services.generation_client.requests.post", fake_post)

    out = OpenAICompatibleClient(endpoint="https://example.com/v1/", model="m").generate(KEY, "hi", max_output_tokens=5)
    assert out.text == "alpha\nbeta"
    assert seen["url"] == "https://example.com/v1/chat/completions"
    assert seen["headers"]["Authorization"] == f"Bearer {KEY}"


def test_mock_client_output_parses_into_requested_count():
    prompt = "CONTENT (Page 1):\nPhotosynthesis converts light energy into chemical energy.\n\nGenerate EXACTLY 3 EASY MCQs now:"
    out = MockGenerationClient().generate(KEY, prompt, max_output_tokens=100)
    assert out.ok
    assert len(parse_mcqs(out.text)) == 3


def test_mask_key_hides_the_secret():
    masked = mask_key(KEY)
    assert masked.startswith("AIzaSy")
    assert KEY not in masked
    assert mask_key("short") == "***"

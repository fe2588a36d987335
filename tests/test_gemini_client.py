"""
Tests for the Gemini REST classifier. HTTP is served by httpx.MockTransport,
so no request leaves the process.
"""

from __future__ import annotations

import asyncio
import base64
import json

import httpx
import pytest

from deepshield.ai.gemini_client import GeminiForensicClassifier
from deepshield.ai.models import MediaKind
from deepshield.errors import MalformedError, QuotaExceededError, TransientError
from tests.fakes import PNG_BYTES, verdict_json


def _envelope(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}


def _classify(settings, handler, payload=PNG_BYTES, kind=MediaKind.IMAGE, model="gemini-pro"):
    classifier = GeminiForensicClassifier(settings, transport=httpx.MockTransport(handler))
    return asyncio.run(classifier.classify(payload, kind, model=model))


def test_posts_inline_image_and_returns_text(settings):
    seen: list[httpx.Request] = []
    body = verdict_json("AUTHENTIC", 97)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_envelope(body))

    assert _classify(settings, handler) == body

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path.endswith("/models/gemini-pro:generateContent")
    assert request.headers["x-goog-api-key"] == "test-key"
    sent = json.loads(request.content)
    inline = sent["contents"][0]["parts"][0]["inlineData"]
    assert inline["mimeType"] == "image/png"
    assert base64.b64decode(inline["data"]) == PNG_BYTES
    assert sent["generationConfig"]["responseMimeType"] == "application/json"


def test_joins_multi_part_text(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        envelope = {"candidates": [{"content": {"parts": [{"text": '{"summary": '}, {"text": '"ok"}'}]}}]}
        return httpx.Response(200, json=envelope)

    assert _classify(settings, handler) == '{"summary": "ok"}'


def test_429_maps_to_quota_with_retry_after(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "7"}, json={"error": {"code": 429}})

    with pytest.raises(QuotaExceededError) as excinfo:
        _classify(settings, handler)
    assert excinfo.value.retry_after == 7.0


@pytest.mark.parametrize("header", ["inf", "nan", "-3", "soon"])
def test_unusable_retry_after_is_ignored(settings, header):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": header}, json={"error": {"code": 429}})

    with pytest.raises(QuotaExceededError) as excinfo:
        _classify(settings, handler)
    assert excinfo.value.retry_after is None


@pytest.mark.parametrize("status", [500, 502, 503, 504])
def test_server_errors_are_transient(settings, status):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="upstream trouble")

    with pytest.raises(TransientError):
        _classify(settings, handler)


def test_connection_failure_is_transient(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientError):
        _classify(settings, handler)


def test_timeout_is_transient(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransientError):
        _classify(settings, handler)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"error": {"message": "bad image"}}),
        httpx.Response(403, json={"error": {"message": "key rejected"}}),
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json={"candidates": []}),
        httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}),
        httpx.Response(200, json=_envelope("   ")),
        httpx.Response(200, json={"candidates": [{"content": [{"text": "{}"}]}]}),
        httpx.Response(200, json={"candidates": [{"content": "{}"}]}),
    ],
)
def test_unusable_responses_are_malformed(settings, response):
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    with pytest.raises(MalformedError):
        _classify(settings, handler)

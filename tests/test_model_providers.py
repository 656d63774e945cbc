from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from src.config_utils import PipelineSettings
from src.model_providers import (
    build_model_provider,
    call_gemini,
    call_ollama,
    call_openai,
    parse_extraction_content,
    read_file_as_base64,
)
from src.schema import Provider, ProviderRequest, ReasoningEffort

PAYLOAD = {"summary": "A short report.", "topics": ["budget", "staffing"]}


@pytest.fixture
def pdf_file(tmp_path: Path) -> Path:
    path = tmp_path / "doc1.pdf"
    path.write_bytes(b"%PDF-1.4 test document")
    return path


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings(request_timeout=5)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def _openai_body(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def test_parse_extraction_content_accepts_fenced_json():
    response = parse_extraction_content(f"```json\n{json.dumps(PAYLOAD)}\n```")

    assert response.success
    assert response.data == PAYLOAD


def test_parse_extraction_content_recovers_embedded_object():
    response = parse_extraction_content(f"Sure! {json.dumps(PAYLOAD)} Hope that helps")

    assert response.success
    assert response.data["topics"] == ["budget", "staffing"]


@pytest.mark.parametrize(
    "content, message",
    [
        ("", "Empty response content"),
        ("   ", "Empty response content"),
        ("not json at all", "Failed to parse JSON response"),
        (json.dumps({"topics": ["x"]}), "does not match extraction schema"),
        (None, "missing or invalid text content"),
    ],
)
def test_parse_extraction_content_failures(content, message):
    response = parse_extraction_content(content)

    assert not response.success
    assert message in response.error


def test_read_file_as_base64_enforces_limits(tmp_path, pdf_file):
    assert read_file_as_base64(pdf_file, max_bytes=1024)

    with pytest.raises(ValueError, match="too large"):
        read_file_as_base64(pdf_file, max_bytes=4)
    with pytest.raises(FileNotFoundError):
        read_file_as_base64(tmp_path / "missing.pdf", max_bytes=1024)
    with pytest.raises(ValueError, match="not a file"):
        read_file_as_base64(tmp_path, max_bytes=1024)


def test_call_openai_success_builds_expected_request(pdf_file, settings):
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=_openai_body(json.dumps(PAYLOAD)))

    request = ProviderRequest(
        files=[pdf_file],
        model="gpt-4.1",
        temperature=0.2,
        reasoning_effort=ReasoningEffort.HIGH,
    )
    response = call_openai(
        request, api_key="sk-test", settings=settings, client=_client(handler)
    )

    assert response.success
    assert response.data == PAYLOAD
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-test"
    body = captured["body"]
    assert body["model"] == "gpt-4.1"
    assert body["temperature"] == 0.2
    # reasoning_effort is only forwarded to o3 models
    assert "reasoning_effort" not in body
    assert body["response_format"]["type"] == "json_schema"
    file_part = body["messages"][1]["content"][0]
    assert file_part["type"] == "file"
    assert file_part["file"]["filename"] == "doc1.pdf"
    assert file_part["file"]["file_data"].startswith("data:application/pdf;base64,")


def test_call_openai_forwards_reasoning_effort_for_o3_models(pdf_file, settings):
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=_openai_body(json.dumps(PAYLOAD)))

    request = ProviderRequest(
        files=[pdf_file],
        model="o3-mini",
        temperature=0.5,
        reasoning_effort=ReasoningEffort.LOW,
    )
    call_openai(request, api_key="k", settings=settings, client=_client(handler))

    assert captured["body"]["reasoning_effort"] == "low"
    assert "temperature" not in captured["body"]


def test_call_openai_reports_api_error(pdf_file, settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Rate limit reached"}})

    response = call_openai(
        ProviderRequest(files=[pdf_file], model="gpt-4.1"),
        api_key="k",
        settings=settings,
        client=_client(handler),
    )

    assert not response.success
    assert response.error == "Rate limit reached"


def test_call_openai_reports_missing_choices(pdf_file, settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    response = call_openai(
        ProviderRequest(files=[pdf_file], model="gpt-4.1"),
        api_key="k",
        settings=settings,
        client=_client(handler),
    )

    assert not response.success
    assert "missing choices" in response.error


def test_call_openai_transport_error_is_a_failed_response(pdf_file, settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    response = call_openai(
        ProviderRequest(files=[pdf_file], model="gpt-4.1"),
        api_key="k",
        settings=settings,
        client=_client(handler),
    )

    assert not response.success
    assert "connection refused" in response.error


def test_call_openai_missing_file_never_hits_network(tmp_path, settings):
    handler = MagicMock()

    response = call_openai(
        ProviderRequest(files=[tmp_path / "gone.pdf"], model="gpt-4.1"),
        api_key="k",
        settings=settings,
        client=_client(handler),
    )

    assert not response.success
    assert "File not found or unreadable" in response.error
    handler.assert_not_called()


def test_call_gemini_success(pdf_file, settings):
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["key"] = request.headers["x-goog-api-key"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": json.dumps(PAYLOAD)}]}}]},
        )

    response = call_gemini(
        ProviderRequest(files=[pdf_file], model="gemini-2.5-pro", temperature=1.0),
        api_key="g-key",
        settings=settings,
        client=_client(handler),
    )

    assert response.success
    assert response.data == PAYLOAD
    assert captured["url"].endswith("/models/gemini-2.5-pro:generateContent")
    assert captured["key"] == "g-key"
    config = captured["body"]["generation_config"]
    assert config["response_mime_type"] == "application/json"
    assert config["temperature"] == 1.0
    parts = captured["body"]["contents"][0]["parts"]
    assert parts[-1]["inline_data"]["mime_type"] == "application/pdf"


def test_call_gemini_reports_missing_parts(pdf_file, settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": [{"content": {"parts": []}}]})

    response = call_gemini(
        ProviderRequest(files=[pdf_file], model="gemini-2.5-pro"),
        api_key="g-key",
        settings=settings,
        client=_client(handler),
    )

    assert not response.success
    assert "missing content parts" in response.error


@patch("src.model_providers.extract_pdf_text", return_value="Budget and staffing plan")
def test_call_ollama_sends_text_prompt(mock_extract, pdf_file, settings):
    client = MagicMock()
    client.chat.return_value = {"message": {"content": json.dumps(PAYLOAD)}}

    response = call_ollama(
        ProviderRequest(files=[pdf_file], model="llama3.1", temperature=0.0),
        settings=settings,
        client=client,
    )

    assert response.success
    kwargs = client.chat.call_args.kwargs
    assert kwargs["model"] == "llama3.1"
    assert kwargs["format"] == "json"
    assert kwargs["options"] == {"temperature": 0.0}
    assert "Budget and staffing plan" in kwargs["messages"][0]["content"]
    mock_extract.assert_called_once_with(pdf_file)


@patch("src.model_providers.extract_pdf_text", return_value="   ")
def test_call_ollama_rejects_documents_without_text(_mock_extract, pdf_file, settings):
    client = MagicMock()

    response = call_ollama(
        ProviderRequest(files=[pdf_file], model="llama3.1"),
        settings=settings,
        client=client,
    )

    assert not response.success
    client.chat.assert_not_called()


def test_build_model_provider_requires_key_for_remote_providers(settings):
    with pytest.raises(ValueError):
        build_model_provider(Provider.OPENAI, settings=settings)

    call = build_model_provider(Provider.OLLAMA, settings=settings, client=MagicMock())
    assert callable(call)

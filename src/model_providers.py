"""Model provider adapters for the extraction request/response contract.

Every adapter takes a :class:`~src.schema.ProviderRequest` and returns a
:class:`~src.schema.ProviderResponse`. Failures of any kind (unreadable file,
HTTP error, malformed body, JSON that does not match the extraction schema)
come back as ``success=False`` rather than as exceptions, so callers only ever
branch on ``response.success``.
"""

from __future__ import annotations

import base64
import functools
import json
import logging
from pathlib import Path
from typing import Any, Callable

import httpx
import ollama
from pydantic import ValidationError

from src.config_utils import PipelineSettings
from src.prompts import (
    DEVELOPER_PROMPT,
    USER_INSTRUCTION,
    build_text_extraction_prompt,
    gemini_response_schema,
    openai_response_format,
)
from src.schema import ExtractionPayload, Provider, ProviderRequest, ProviderResponse

logger = logging.getLogger("doc_extract.providers")

PDF_MIME_TYPE = "application/pdf"

ProviderCall = Callable[[ProviderRequest], ProviderResponse]


def read_file_as_base64(path: Path, max_bytes: int) -> str:
    """Read ``path`` and return its base64 encoding, enforcing a size limit."""
    if not path.exists():
        raise FileNotFoundError(f"File does not exist: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")
    size = path.stat().st_size
    if size > max_bytes:
        raise ValueError(
            f"File too large: {size} bytes. Maximum allowed: {max_bytes} bytes "
            f"({max_bytes // (1024 * 1024)}MB)"
        )
    return base64.b64encode(path.read_bytes()).decode("ascii")


def _encode_files(
    request: ProviderRequest, max_bytes: int
) -> list[tuple[str, str]] | ProviderResponse:
    encoded: list[tuple[str, str]] = []
    for file_path in request.files:
        try:
            encoded.append((file_path.name, read_file_as_base64(file_path, max_bytes)))
        except (OSError, ValueError) as exc:
            return ProviderResponse.failure(
                f"File not found or unreadable: {file_path} ({exc})"
            )
    return encoded


def _clean_json_response(response_text: str) -> str:
    """Clean JSON response by removing code block markers if present."""
    response_text = response_text.strip()
    if response_text.startswith("```json"):
        response_text = response_text[7:]
    elif response_text.startswith("```"):
        response_text = response_text[3:]

    if response_text.endswith("```"):
        response_text = response_text[:-3]

    return response_text.strip()


def _extract_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` segment in ``text``, if any."""
    start_index = text.find("{")
    if start_index == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for position in range(start_index, len(text)):
        char = text[position]
        if escape:
            escape = False
            continue
        if char == "\\":
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start_index : position + 1]
    return None


def parse_extraction_content(content: Any) -> ProviderResponse:
    """Turn raw model text into a validated response."""
    if not isinstance(content, str):
        return ProviderResponse.failure(
            "Invalid response structure: missing or invalid text content"
        )
    if not content.strip():
        return ProviderResponse.failure("Empty response content")

    cleaned = _clean_json_response(content)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        candidate = _extract_json_object(cleaned)
        if candidate is None or candidate == cleaned:
            return ProviderResponse.failure(f"Failed to parse JSON response: {exc}")
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as inner_exc:
            return ProviderResponse.failure(
                f"Failed to parse JSON response: {inner_exc}"
            )

    try:
        payload = ExtractionPayload.model_validate(parsed)
    except ValidationError as exc:
        return ProviderResponse.failure(
            f"Response does not match extraction schema: {exc.error_count()} error(s)"
        )
    return ProviderResponse(success=True, data=payload.model_dump())


def _api_error_message(body: Any, default: str) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return default


def _post_json(
    url: str,
    *,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
    client: httpx.Client | None,
) -> httpx.Response:
    if client is not None:
        return client.post(url, json=payload, headers=headers, timeout=timeout)
    return httpx.post(url, json=payload, headers=headers, timeout=timeout)


def build_openai_body(
    request: ProviderRequest, encoded_files: list[tuple[str, str]]
) -> dict[str, Any]:
    user_content: list[dict[str, Any]] = [
        {
            "type": "file",
            "file": {
                "filename": filename,
                "file_data": f"data:{PDF_MIME_TYPE};base64,{data}",
            },
        }
        for filename, data in encoded_files
    ]
    user_content.append({"type": "text", "text": USER_INSTRUCTION})

    body: dict[str, Any] = {
        "model": request.model,
        "messages": [
            {
                "role": "developer",
                "content": [{"type": "text", "text": DEVELOPER_PROMPT}],
            },
            {"role": "user", "content": user_content},
        ],
        "response_format": openai_response_format(),
        "store": True,
    }
    if request.model.startswith("gpt-") and request.temperature is not None:
        body["temperature"] = request.temperature
    if "o3" in request.model and request.reasoning_effort is not None:
        body["reasoning_effort"] = request.reasoning_effort.value
    return body


def call_openai(
    request: ProviderRequest,
    *,
    api_key: str,
    settings: PipelineSettings,
    client: httpx.Client | None = None,
) -> ProviderResponse:
    """Run one extraction through the OpenAI chat completions API."""
    encoded = _encode_files(request, settings.max_file_bytes)
    if isinstance(encoded, ProviderResponse):
        return encoded

    url = f"{settings.openai_base_url.rstrip('/')}/chat/completions"
    try:
        response = _post_json(
            url,
            payload=build_openai_body(request, encoded),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=settings.request_timeout,
            client=client,
        )
        body = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        return ProviderResponse.failure(f"OpenAI request failed: {exc}")

    if response.is_error:
        return ProviderResponse.failure(
            _api_error_message(body, f"OpenAI API request failed ({response.status_code})")
        )

    choices = body.get("choices") if isinstance(body, dict) else None
    if not isinstance(choices, list) or not choices:
        return ProviderResponse.failure(
            "Invalid response structure: missing choices array"
        )
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict) or not isinstance(message.get("content"), str):
        return ProviderResponse.failure(
            "Invalid response structure: missing message content"
        )
    return parse_extraction_content(message["content"])


def build_gemini_body(
    request: ProviderRequest, encoded_files: list[tuple[str, str]]
) -> dict[str, Any]:
    parts: list[dict[str, Any]] = [
        {"text": DEVELOPER_PROMPT},
        {"text": USER_INSTRUCTION},
    ]
    parts.extend(
        {"inline_data": {"mime_type": PDF_MIME_TYPE, "data": data}}
        for _, data in encoded_files
    )
    generation_config: dict[str, Any] = {
        "response_mime_type": "application/json",
        "response_schema": gemini_response_schema(),
    }
    if request.temperature is not None:
        generation_config["temperature"] = request.temperature
    return {
        "contents": [{"parts": parts}],
        "generation_config": generation_config,
    }


def call_gemini(
    request: ProviderRequest,
    *,
    api_key: str,
    settings: PipelineSettings,
    client: httpx.Client | None = None,
) -> ProviderResponse:
    """Run one extraction through the Gemini generateContent API."""
    encoded = _encode_files(request, settings.max_file_bytes)
    if isinstance(encoded, ProviderResponse):
        return encoded

    url = (
        f"{settings.gemini_base_url.rstrip('/')}/models/"
        f"{request.model}:generateContent"
    )
    try:
        response = _post_json(
            url,
            payload=build_gemini_body(request, encoded),
            headers={"x-goog-api-key": api_key},
            timeout=settings.request_timeout,
            client=client,
        )
        body = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        return ProviderResponse.failure(f"Gemini request failed: {exc}")

    if response.is_error:
        return ProviderResponse.failure(
            _api_error_message(body, f"Gemini API request failed ({response.status_code})")
        )

    candidates = body.get("candidates") if isinstance(body, dict) else None
    if not isinstance(candidates, list) or not candidates:
        return ProviderResponse.failure(
            "Invalid response structure: missing candidates array"
        )
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return ProviderResponse.failure(
            "Invalid response structure: missing content parts"
        )
    return parse_extraction_content(parts[0].get("text"))


def extract_pdf_text(file_path: Path) -> str:
    """Extract the digital text layer of a PDF with PyMuPDF."""
    import fitz  # PyMuPDF

    page_texts: list[str] = []
    with fitz.open(file_path) as doc:
        for page in doc:
            page_texts.append(page.get_text())
    return "\n".join(page_texts)


def call_ollama(
    request: ProviderRequest,
    *,
    settings: PipelineSettings,
    client: Any = None,
) -> ProviderResponse:
    """Run one extraction against a local Ollama model using the PDF text layer."""
    sections: list[str] = []
    for file_path in request.files:
        try:
            if not file_path.is_file():
                raise FileNotFoundError(f"File does not exist: {file_path}")
            text = extract_pdf_text(file_path)
        except Exception as exc:
            return ProviderResponse.failure(
                f"File not found or unreadable: {file_path} ({exc})"
            )
        if not text.strip():
            return ProviderResponse.failure(f"No extractable text in {file_path.name}")
        sections.append(build_text_extraction_prompt(file_path.name, text))

    options: dict[str, Any] = {}
    if request.temperature is not None:
        options["temperature"] = request.temperature

    if client is None:
        client = ollama.Client(host=settings.ollama_host, timeout=settings.request_timeout)
    try:
        response = client.chat(
            model=request.model,
            messages=[{"role": "user", "content": "\n\n".join(sections)}],
            format="json",
            options=options or None,
        )
    except (ollama.ResponseError, httpx.HTTPError, ConnectionError) as exc:
        return ProviderResponse.failure(f"Ollama request failed: {exc}")

    return parse_extraction_content(response["message"]["content"])


def build_model_provider(
    provider: Provider,
    *,
    settings: PipelineSettings,
    api_key: str | None = None,
    client: Any = None,
) -> ProviderCall:
    """Bind credentials and settings into a single-argument provider call."""
    if provider is Provider.OPENAI:
        if not api_key:
            raise ValueError("OpenAI provider requires an API key")
        return functools.partial(
            call_openai, api_key=api_key, settings=settings, client=client
        )
    if provider is Provider.GEMINI:
        if not api_key:
            raise ValueError("Gemini provider requires an API key")
        return functools.partial(
            call_gemini, api_key=api_key, settings=settings, client=client
        )
    if provider is Provider.OLLAMA:
        return functools.partial(call_ollama, settings=settings, client=client)
    raise ValueError(f"Unsupported provider: {provider}")

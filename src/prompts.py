"""Standardized prompts and response schema for document extraction."""

from __future__ import annotations

from typing import Any

EXTRACTION_SCHEMA_NAME = "extraction"

DEVELOPER_PROMPT = """Extract a summary and a list of topics from the provided document.

Return **only** a valid JSON object that conforms exactly to the schema below."""

USER_INSTRUCTION = "Extract the requested information from the files provided."

STRICT_JSON_REMINDER = (
    "REMINDER: Reply with strictly valid JSON containing a string \"summary\" and "
    "an array of strings \"topics\". Do not add commentary or code fences."
)

EXTRACTION_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {
            "type": "string",
            "description": "A summary of the document.",
        },
        "topics": {
            "type": "array",
            "items": {"type": "string"},
            "description": "A list of topics covered in the document.",
        },
    },
    "required": ["summary", "topics"],
    "additionalProperties": False,
}


def openai_response_format() -> dict[str, Any]:
    """JSON-schema ``response_format`` block for the chat completions API."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": EXTRACTION_SCHEMA_NAME,
            "strict": True,
            "schema": EXTRACTION_JSON_SCHEMA,
        },
    }


def gemini_response_schema() -> dict[str, Any]:
    # Gemini's schema dialect uses upper-case type names and no additionalProperties.
    return {
        "type": "OBJECT",
        "properties": {
            "summary": {"type": "STRING", "description": "A summary of the document."},
            "topics": {
                "type": "ARRAY",
                "items": {"type": "STRING"},
                "description": "A list of topics covered in the document.",
            },
        },
        "required": ["summary", "topics"],
    }


def build_text_extraction_prompt(filename: str, text: str) -> str:
    """Prompt for providers that receive extracted text instead of the raw file."""
    return (
        f"{DEVELOPER_PROMPT}\n\n"
        'Schema: {"summary": string, "topics": [string]}\n\n'
        f"Document: {filename}\n\n{text}\n\n{STRICT_JSON_REMINDER}"
    )

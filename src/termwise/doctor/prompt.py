"""Prompt building and response parsing for the AI tier."""

from __future__ import annotations

import json
import logging
import re

from pydantic import ValidationError

from termwise.doctor.models import AIAnalysis, ErrorContext, ErrorLocation, Fix
from termwise.errors import MalformedAIResponse
from termwise.truncation import STACK_TRACE_LIMIT, strip_ansi, truncate_text

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert debugging assistant. "
    "Analyze errors and provide specific, actionable fixes."
)

RECENT_COMMANDS_IN_PROMPT = 3

RESPONSE_SCHEMA = """{
  "confidence": "high|medium|low",
  "explanation": "Brief explanation of what's wrong",
  "fixes": [
    {
      "title": "Fix title (under 50 chars)",
      "description": "What this fix does",
      "command": "exact command to run (or null)",
      "confidence": "high|medium|low",
      "requiresFileEdit": false
    }
  ]
}"""

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _or_unknown(value: object) -> str:
    return "unknown" if value is None or value == "" else str(value)


def build_analysis_prompt(error_text: str, context: ErrorContext, location: ErrorLocation) -> str:
    lines = [
        "Analyze this error and provide 2-3 specific fix suggestions:",
        "",
        "ERROR:",
        error_text,
        "",
        "CONTEXT:",
        f"- Working Directory: {_or_unknown(context.working_directory)}",
        f"- File: {_or_unknown(location.file_path)}",
        f"- Line: {_or_unknown(location.line_number)}",
        f"- Column: {_or_unknown(location.column_number)}",
        f"- Package.json exists: {'yes' if context.has_package_json else 'no'}",
        f"- Node version: {_or_unknown(context.node_version)}",
    ]

    if context.recent_commands:
        lines.append("RECENT COMMANDS:")
        lines.extend(context.recent_commands[-RECENT_COMMANDS_IN_PROMPT:])

    if location.stack_trace:
        lines.append("STACK TRACE:")
        lines.append(truncate_text(location.stack_trace, STACK_TRACE_LIMIT))

    lines.extend(["", "Please respond in this JSON format:", RESPONSE_SCHEMA])
    return "\n".join(lines)


def extract_analysis(response_text: str) -> AIAnalysis:
    """Pull the JSON analysis object out of a free-form response.

    Raises:
        MalformedAIResponse: no JSON object, invalid JSON, or wrong shape.
    """
    match = _JSON_OBJECT_RE.search(response_text)
    if not match:
        raise MalformedAIResponse("AI response contains no JSON object")
    try:
        return AIAnalysis.model_validate(json.loads(match.group(0)))
    except json.JSONDecodeError as e:
        raise MalformedAIResponse(f"AI response JSON is invalid: {e}") from e
    except ValidationError as e:
        raise MalformedAIResponse(
            f"AI response has the wrong shape: {e.error_count()} validation errors"
        ) from e


def parse_ai_response(response_text: str) -> AIAnalysis:
    """Structured analysis when possible, else one best-effort suggestion. Never raises."""
    text = strip_ansi(response_text or "").strip()
    try:
        return extract_analysis(text)
    except MalformedAIResponse as e:
        logger.warning("Failed to parse AI JSON response, using fallback: %s", e)

    return AIAnalysis(
        confidence="medium",
        explanation=truncate_text(text, 200) or "The AI returned an empty response",
        fixes=[
            Fix(
                title="AI Suggestion",
                description=truncate_text(text, 150, marker="..."),
                confidence="medium",
            )
        ],
    )

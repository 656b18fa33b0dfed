"""LLM chain for whole-document grammar checks via OpenAI function calling."""

import json
from typing import Any, Iterator

import openai
from openai import OpenAI

from proofmark.core.config import Settings
from proofmark.core.errors import NetworkError, RateLimitError, RemoteAnalysisError
from proofmark.core.logging import get_logger
from proofmark.core.schemas_grammar import Suggestion, parse_suggestions

logger = get_logger(__name__)

TOOL_NAME = "grammar_checker"

GRAMMAR_CHECKER_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": TOOL_NAME,
        "description": (
            "Analyze text for grammar, spelling, punctuation, and style issues "
            "with precise position tracking."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "suggestions": {
                    "type": "array",
                    "description": "Array of grammar suggestions with exact character positions",
                    "items": {
                        "type": "object",
                        "properties": {
                            "range": {
                                "type": "object",
                                "properties": {
                                    "start": {"type": "number", "description": "Start character position (0-indexed)"},
                                    "end": {"type": "number", "description": "End character position (exclusive)"},
                                },
                                "required": ["start", "end"],
                            },
                            "type": {
                                "type": "string",
                                "enum": ["grammar", "spelling", "punctuation", "style"],
                                "description": "Type of language issue",
                            },
                            "original": {
                                "type": "string",
                                "description": "Exact text to replace (must match text at range positions)",
                            },
                            "proposed": {"type": "string", "description": "Corrected replacement text"},
                            "explanation": {
                                "type": "string",
                                "description": "Clear explanation of why this change improves the text",
                            },
                            "confidence": {
                                "type": "number",
                                "minimum": 0.0,
                                "maximum": 1.0,
                                "description": "Confidence level 0..1",
                            },
                        },
                        "required": ["range", "type", "original", "proposed", "explanation", "confidence"],
                    },
                }
            },
            "required": ["suggestions"],
        },
    },
}


def build_system_prompt(
    include_spelling: bool = True,
    include_grammar: bool = True,
    include_style: bool = False,
) -> str:
    capabilities = []
    if include_grammar:
        capabilities.append("grammar errors")
    if include_spelling:
        capabilities.append("spelling mistakes")
    if include_style:
        capabilities.append("style improvements")

    return f"""You are an expert grammar checker. Analyze text for {", ".join(capabilities) or "language issues"} with these priorities:

1. SUBJECT-VERB AGREEMENT: Ensure verbs match subjects (singular/plural, person)
2. CONTEXTUAL WORD CHOICE: "their" vs "they're", "its" vs "it's"
3. SPELLING: Only flag actual misspellings
4. PUNCTUATION: Be consistent, avoid contradictory suggestions

CRITICAL RULES:
- CONSISTENCY: Don't suggest adding then removing the same punctuation
- ACCURACY: Ensure explanations match the actual change being made
- PRECISION: Use exact character positions and matching text

Common patterns:
- "She dont" -> "She doesn't" (3rd person singular)
- "They dont" -> "They don't" (plural)
- "their going" -> "they're going" (contraction)

Use the {TOOL_NAME} function to return structured results."""


def build_user_prompt(text: str) -> str:
    return f'Analyze this text for grammar and language errors:\n\n"{text}"\n\nReturn precise suggestions with exact character positions.'


def map_openai_error(error: Exception) -> RemoteAnalysisError:
    """Translate an OpenAI SDK exception into the engine's error taxonomy."""
    if isinstance(error, openai.RateLimitError):
        retry_after = None
        header = error.response.headers.get("retry-after") if error.response is not None else None
        if header:
            try:
                retry_after = float(header)
            except ValueError:
                retry_after = None
        return RateLimitError("OpenAI API rate limit exceeded", status_code=429, retry_after=retry_after)
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return RemoteAnalysisError("OpenAI API authentication failed", status_code=500)
    if isinstance(error, openai.BadRequestError):
        return RemoteAnalysisError("Invalid request to OpenAI API", status_code=400)
    if isinstance(error, openai.APIConnectionError):
        return NetworkError(f"OpenAI API unreachable: {error}", status_code=503)
    if isinstance(error, openai.APIStatusError):
        return RemoteAnalysisError(f"OpenAI API error {error.status_code}: {error.message}", status_code=502)
    return RemoteAnalysisError(f"OpenAI API error: {error}", status_code=500)


def parse_tool_arguments(arguments: str, text: str) -> list[Suggestion]:
    """
    Parse the function-call arguments into validated suggestions.

    Entries whose ``original`` does not match the text at their range are
    dropped. Invalid JSON (usually a truncated response) yields ``[]``.
    """
    try:
        payload = json.loads(arguments)
    except json.JSONDecodeError as e:
        logger.warning(
            f"Could not parse tool arguments ({len(arguments)} chars), "
            f"likely truncated by the token limit: {e}"
        )
        return []

    raw_items = payload.get("suggestions") if isinstance(payload, dict) else None
    suggestions = parse_suggestions(raw_items, text)

    matching = []
    for suggestion in suggestions:
        if not suggestion.matches(text):
            logger.warning(
                f"Dropping suggestion with mismatched text at [{suggestion.range.start}, "
                f"{suggestion.range.end}): expected '{suggestion.original}'"
            )
            continue
        matching.append(suggestion)
    return matching


def check_grammar_with_openai(
    text: str,
    *,
    settings: Settings,
    include_spelling: bool = True,
    include_grammar: bool = True,
    include_style: bool = False,
    client: OpenAI | None = None,
) -> list[Suggestion]:
    """
    Check text for grammar and spelling issues using OpenAI function calling.

    Args:
        text: Text to analyze
        settings: Application settings
        include_spelling: Report spelling mistakes
        include_grammar: Report grammar errors
        include_style: Report style improvements
        client: Optional preconfigured OpenAI client

    Returns:
        Validated suggestions whose text matches their ranges

    Raises:
        RemoteAnalysisError: If the OpenAI call fails (typed subclasses for
            rate limits and connectivity)
    """
    client = client or OpenAI(api_key=settings.OPENAI_API_KEY)

    logger.info(
        f"Calling {settings.GRAMMAR_MODEL} for grammar check",
        extra={
            "text_length": len(text),
            "include_spelling": include_spelling,
            "include_grammar": include_grammar,
            "include_style": include_style,
        },
    )

    try:
        completion = client.chat.completions.create(
            model=settings.GRAMMAR_MODEL,
            messages=[
                {"role": "system", "content": build_system_prompt(include_spelling, include_grammar, include_style)},
                {"role": "user", "content": build_user_prompt(text)},
            ],
            max_tokens=settings.GRAMMAR_MAX_TOKENS,
            temperature=0,
            top_p=0,
            seed=42,
            tools=[GRAMMAR_CHECKER_TOOL],
            tool_choice={"type": "function", "function": {"name": TOOL_NAME}},
        )
    except openai.OpenAIError as e:
        mapped = map_openai_error(e)
        logger.error(f"OpenAI grammar check failed: {mapped.message}")
        raise mapped from e

    message = completion.choices[0].message if completion.choices else None
    tool_calls = message.tool_calls if message is not None else None
    if not tool_calls or tool_calls[0].function.name != TOOL_NAME:
        logger.warning("No valid tool call in OpenAI response")
        return []

    suggestions = parse_tool_arguments(tool_calls[0].function.arguments, text)
    logger.info(f"OpenAI grammar check returned {len(suggestions)} suggestions")
    return suggestions


def stream_grammar_check(
    text: str,
    *,
    settings: Settings,
    include_spelling: bool = True,
    include_grammar: bool = True,
    include_style: bool = False,
    client: OpenAI | None = None,
) -> Iterator[str]:
    """
    Stream the raw function-call argument chunks of a grammar check.

    Callers concatenate the chunks and pass them to ``parse_tool_arguments``.

    Raises:
        RemoteAnalysisError: If the OpenAI call fails
    """
    client = client or OpenAI(api_key=settings.OPENAI_API_KEY)
    logger.info(f"Calling {settings.GRAMMAR_MODEL} for streaming grammar check ({len(text)} chars)")

    try:
        stream = client.chat.completions.create(
            model=settings.GRAMMAR_MODEL,
            messages=[
                {"role": "system", "content": build_system_prompt(include_spelling, include_grammar, include_style)},
                {"role": "user", "content": build_user_prompt(text)},
            ],
            max_tokens=settings.GRAMMAR_MAX_TOKENS,
            temperature=0,
            top_p=0,
            seed=42,
            stream=True,
            tools=[GRAMMAR_CHECKER_TOOL],
            tool_choice={"type": "function", "function": {"name": TOOL_NAME}},
        )
        for chunk in stream:
            if not chunk.choices:
                continue
            tool_calls = chunk.choices[0].delta.tool_calls
            if tool_calls and tool_calls[0].function and tool_calls[0].function.arguments:
                yield tool_calls[0].function.arguments
    except openai.OpenAIError as e:
        mapped = map_openai_error(e)
        logger.error(f"OpenAI streaming grammar check failed: {mapped.message}")
        raise mapped from e

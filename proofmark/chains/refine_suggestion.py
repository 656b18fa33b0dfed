"""LLM chain that regenerates a single suggestion with sentence context."""

import json
from typing import Any

import openai
from openai import OpenAI
from pydantic import BaseModel, Field, ValidationError

from proofmark.chains.check_grammar import map_openai_error
from proofmark.core.config import Settings
from proofmark.core.logging import get_logger
from proofmark.core.schemas_grammar import Suggestion, new_suggestion_id
from proofmark.core.text_metrics import sentence_bounds

logger = get_logger(__name__)

TOOL_NAME = "refined_suggestion"

REFINE_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": TOOL_NAME,
        "description": "Return an improved replacement for one flagged passage.",
        "parameters": {
            "type": "object",
            "properties": {
                "improved": {
                    "type": "boolean",
                    "description": "False when no better replacement exists",
                },
                "proposed": {"type": "string", "description": "Replacement for the flagged text only"},
                "explanation": {"type": "string", "description": "Why the replacement is better"},
                "confidence": {"type": "number", "minimum": 0.0, "maximum": 1.0},
            },
            "required": ["improved", "proposed", "explanation", "confidence"],
        },
    },
}

SYSTEM_PROMPT = f"""You are an expert copy editor. You receive one sentence, a passage inside it that an automated checker flagged, the issue type and the checker's current proposal.

Return a better replacement for the flagged passage only:
- spelling: the intended correctly spelled word, keeping the original capitalization
- passive: the passage rewritten in active voice, fitting the surrounding sentence
- style: a clearer, more concise version of the passage
- grammar / punctuation: the corrected passage

If the current proposal is already the best option, set improved to false.
Use the {TOOL_NAME} function to answer."""


class RefineOutput(BaseModel):
    improved: bool
    proposed: str = ""
    explanation: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


def build_refine_prompt(text: str, suggestion: Suggestion) -> str:
    start, end = sentence_bounds(text, suggestion.range.start, suggestion.range.end)
    return (
        f"Sentence: \"{text[start:end]}\"\n"
        f"Flagged passage: \"{suggestion.original}\"\n"
        f"Issue type: {suggestion.type}\n"
        f"Current proposal: \"{suggestion.proposed}\"\n"
        f"Checker explanation: {suggestion.explanation or 'n/a'}"
    )


def refine_suggestion_with_openai(
    text: str,
    suggestion: Suggestion,
    *,
    settings: Settings,
    client: OpenAI | None = None,
) -> Suggestion | None:
    """
    Ask OpenAI for a better version of one suggestion.

    Args:
        text: Full document text the suggestion refers to
        suggestion: Suggestion to improve
        settings: Application settings
        client: Optional preconfigured OpenAI client

    Returns:
        A new suggestion (fresh id, same range) or None when there is no
        improvement

    Raises:
        RemoteAnalysisError: If the OpenAI call fails
    """
    client = client or OpenAI(api_key=settings.OPENAI_API_KEY)
    logger.info(f"Calling {settings.REFINE_MODEL} to refine {suggestion.type} suggestion {suggestion.id}")

    try:
        completion = client.chat.completions.create(
            model=settings.REFINE_MODEL,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_refine_prompt(text, suggestion)},
            ],
            max_tokens=500,
            temperature=0,
            top_p=0,
            seed=42,
            tools=[REFINE_TOOL],
            tool_choice={"type": "function", "function": {"name": TOOL_NAME}},
        )
    except openai.OpenAIError as e:
        mapped = map_openai_error(e)
        logger.error(f"OpenAI refinement failed: {mapped.message}")
        raise mapped from e

    message = completion.choices[0].message if completion.choices else None
    tool_calls = message.tool_calls if message is not None else None
    if not tool_calls or tool_calls[0].function.name != TOOL_NAME:
        logger.warning("No valid tool call in OpenAI refinement response")
        return None

    try:
        output = RefineOutput.model_validate(json.loads(tool_calls[0].function.arguments))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Refinement output failed validation: {e}")
        return None

    proposed = output.proposed.strip()
    if not output.improved or not proposed or proposed in (suggestion.proposed, suggestion.original):
        logger.info(f"No improvement found for suggestion {suggestion.id}")
        return None

    return suggestion.model_copy(
        update={
            "id": new_suggestion_id(),
            "proposed": proposed,
            "explanation": output.explanation or suggestion.explanation,
            "confidence": output.confidence,
            "can_regenerate": True,
        }
    )

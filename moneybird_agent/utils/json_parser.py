import json
from typing import Any, Dict, Optional

from moneybird_agent.config.exception import ModelOutputError


def find_json_span(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span in ``text``, ignoring braces in strings."""
    if not text:
        return None

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        # Unbalanced from this brace, try the next one.
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: Any) -> Dict[str, Any]:
    """
    Parse the first JSON object embedded in a model response.

    Args:
        text: Raw model output (a string, or message content parts).

    Returns:
        dict: The parsed object.

    Raises:
        ModelOutputError: If no balanced object exists or it is not valid JSON.
    """
    if isinstance(text, list):
        text = "".join(
            part.get("text", "") if isinstance(part, dict) else str(part) for part in text
        )

    span = find_json_span(text or "")
    if span is None:
        raise ModelOutputError("No JSON object found in model response")

    try:
        parsed = json.loads(span)
    except json.JSONDecodeError as e:
        raise ModelOutputError(f"Malformed JSON in model response: {e}") from e

    if not isinstance(parsed, dict):
        raise ModelOutputError("Model response JSON is not an object")
    return parsed

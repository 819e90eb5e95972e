"""Structured-data extraction and validation for the conversion model's response.

Extraction tries a fixed sequence of increasingly tolerant strategies and stops at
the first one that yields a JSON object. Validation is a separate step that
reports every structural problem at once.
"""

import json
import logging
import re
from collections.abc import Callable, Iterable
from typing import Any

import json5

logger = logging.getLogger(__name__)

FILTERED = "[FILTERED]"

_DANGEROUS_PATTERNS = (
    re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
)

_FENCE_OPEN = re.compile(r"^```[a-zA-Z0-9_-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")
_LINE_COMMENT = re.compile(r"^\s*//[^\n\r]*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_STRING_LITERAL = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)

SUPPORTED_FORMAT_VERSIONS = ("v1", "v2")


class ExtractionError(Exception):
    """No strategy recovered a JSON object. ``raw_text`` is kept for manual repair."""

    def __init__(self, message: str, raw_text: str) -> None:
        self.message = message
        self.raw_text = raw_text
        super().__init__(message)


class ClassificationValidationError(Exception):
    """The extracted object is structurally invalid. ``errors`` lists every problem."""

    def __init__(self, errors: list[str], data: Any) -> None:
        self.errors = list(errors)
        self.data = data
        super().__init__("Invalid classification data: " + "; ".join(self.errors))


def _parse_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _strip_fences(text: str) -> str:
    text = text.strip()
    text = _FENCE_OPEN.sub("", text, count=1)
    return _FENCE_CLOSE.sub("", text, count=1)


def _brace_slice(text: str) -> str | None:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    return text[first:last + 1]


def _outside_strings(text: str, transform: Callable[[str], str]) -> str:
    """Apply ``transform`` to the text between string literals only."""
    parts: list[str] = []
    last = 0
    for match in _STRING_LITERAL.finditer(text):
        parts.append(transform(text[last:match.start()]))
        parts.append(match.group(0))
        last = match.end()
    tail = text[last:]
    # Only the final quote can be left unterminated (truncated output).
    open_quote = tail.find('"')
    if open_quote == -1:
        parts.append(transform(tail))
    else:
        parts.append(transform(tail[:open_quote]))
        parts.append(tail[open_quote:])
    return "".join(parts)


def _fix_structure(segment: str) -> str:
    segment = _TRAILING_COMMA.sub(r"\1", segment)
    return _BARE_KEY.sub(r'\1"\2":', segment)


def _escape_newlines_in_strings(text: str) -> str:
    return _STRING_LITERAL.sub(
        lambda m: m.group(0).replace("\r", "\\r").replace("\n", "\\n"),
        text,
    )


def repair_json(text: str) -> str:
    """Apply the common fixes for JSON written by a language model."""
    repaired = text.lstrip("\ufeff")
    repaired = (
        repaired
        .replace("\u201c", '"').replace("\u201d", '"')
        .replace("\u2018", "'").replace("\u2019", "'")
    )
    repaired = _BLOCK_COMMENT.sub("", repaired)
    repaired = _LINE_COMMENT.sub("", repaired)
    repaired = _CONTROL_CHARS.sub("", repaired)
    if "'" in repaired and '"' not in repaired:
        repaired = repaired.replace("'", '"')
    repaired = _outside_strings(repaired, _fix_structure)
    repaired = _escape_newlines_in_strings(repaired)
    return repaired + _missing_closers(repaired)


def _missing_closers(text: str) -> str:
    """Closers for every bracket or brace left open, innermost first."""
    closers = {"{": "}", "[": "]"}
    stack: list[str] = []
    in_string = escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in closers:
            stack.append(closers[char])
        elif stack and char == stack[-1]:
            stack.pop()
    return "".join(reversed(stack))


def _parse_json5(text: str) -> dict[str, Any] | None:
    try:
        value = json5.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def sanitize(value: Any) -> Any:
    """Return a copy of ``value`` with script-like substrings in every string redacted."""
    if isinstance(value, str):
        for pattern in _DANGEROUS_PATTERNS:
            value = pattern.sub(FILTERED, value)
        return value
    if isinstance(value, list):
        return [sanitize(item) for item in value]
    if isinstance(value, dict):
        return {key: sanitize(item) for key, item in value.items()}
    return value


def extract_json(raw_text: str) -> dict[str, Any]:
    """Recover the JSON object embedded in a model response.

    Strategies, in order: direct parse, strip markdown fences, slice from the
    first ``{`` to the last ``}``, repair pass, JSON5 parse of the sliced text.
    String values of the result are sanitized.

    Raises:
        ExtractionError: If every strategy fails.
    """
    trimmed = (raw_text or "").strip()
    if not trimmed:
        raise ExtractionError("Empty response, nothing to extract", raw_text or "")

    unfenced = _strip_fences(trimmed)
    sliced = _brace_slice(unfenced) or _brace_slice(trimmed)

    strategies: list[tuple[str, Callable[[], dict[str, Any] | None]]] = [
        ("direct", lambda: _parse_object(trimmed)),
        ("unfenced", lambda: _parse_object(unfenced)),
        ("brace slice", lambda: _parse_object(sliced) if sliced else None),
        ("repaired", lambda: _parse_object(repair_json(sliced or unfenced))),
        ("json5", lambda: _parse_json5(sliced or unfenced)),
    ]

    for name, attempt in strategies:
        logger.debug("Trying %s JSON extraction", name)
        data = attempt()
        if data is None:
            continue
        if name == "json5":
            logger.warning("Recovered JSON only with the tolerant JSON5 parser")
        return sanitize(data)

    if sliced is None:
        raise ExtractionError("No JSON object found in response", raw_text)
    raise ExtractionError("JSON extraction failed: could not parse the JSON object", raw_text)


def _validate_v1_theme(index: int, theme: dict[str, Any], known: set[str] | None, errors: list[str]) -> None:
    positions = theme.get("modelPositions")
    if not isinstance(positions, dict):
        errors.append(f"Theme {index}: missing or invalid modelPositions")
        return
    for model, position in positions.items():
        if not isinstance(position, dict):
            errors.append(f"Theme {index}: position for {model} is not an object")
        elif "stance" not in position:
            errors.append(f"Theme {index}: position for {model} has no stance")
        if known is not None and model not in known:
            errors.append(f"Theme {index}: unknown model {model}")


def _validate_v2_theme(index: int, theme: dict[str, Any], known: set[str] | None, errors: list[str]) -> None:
    models = theme.get("models")
    if not isinstance(models, list):
        errors.append(f"Theme {index}: missing or invalid models list")
        return
    for entry in models:
        if not isinstance(entry, dict) or not entry.get("name"):
            errors.append(f"Theme {index}: model entry without a name")
            continue
        if "stance" not in entry:
            errors.append(f"Theme {index}: model {entry['name']} has no stance")
        if known is not None and entry["name"] not in known:
            errors.append(f"Theme {index}: unknown model {entry['name']}")


def validate_classification(data: Any, known_models: Iterable[str] | None = None) -> list[str]:
    """Collect every structural problem in a raw classification.

    Args:
        data: The extracted object.
        known_models: When given, model keys must be among these display names.

    Returns:
        All problems found, empty when the data is usable.
    """
    if not isinstance(data, dict):
        return ["Classification is not a JSON object"]

    errors: list[str] = []
    version = data.get("formatVersion", "v1")
    if version not in SUPPORTED_FORMAT_VERSIONS:
        errors.append(f"Unsupported formatVersion: {version!r}")

    themes = data.get("themes")
    if not isinstance(themes, list):
        errors.append('Missing or invalid "themes" array')
        return errors

    known = set(known_models) if known_models is not None else None
    check_theme = _validate_v2_theme if version == "v2" else _validate_v1_theme
    for index, theme in enumerate(themes, start=1):
        if not isinstance(theme, dict):
            errors.append(f"Theme {index}: not an object")
            continue
        if not theme.get("name"):
            errors.append(f"Theme {index}: missing name")
        if not theme.get("statement"):
            errors.append(f"Theme {index}: missing statement")
        check_theme(index, theme, known, errors)
    return errors

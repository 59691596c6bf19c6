"""Extraction and repair of JSON objects from free-text model replies.

Vision models rarely return clean JSON. Replies may open with a reasoning
block (``<think>...</think>``), wrap the object in markdown fences, surround it
with prose, or stop mid-object when the token limit is hit. The helpers here
recover the first JSON object from such text and validate it into a
`VisionAnalysis`.
"""

import json
import re
from dataclasses import dataclass, field

from pydantic import ValidationError

from pixname.config import FilenameStyle
from pixname.exceptions import ResponseParseError
from pixname.filenames import clean_tag, sanitize_filename
from pixname.models.vision import VisionAnalysis


REASONING_CLOSE_MARKERS = ("</think>", "</thinking>", "</reasoning>")

_CODE_FENCE = re.compile(r"```[A-Za-z0-9_-]*")

# Upper bound on how many trailing members the repair may drop before giving up
MAX_REPAIR_CUTS = 32


@dataclass
class _ScanState:
    """Lexical state after walking a (possibly truncated) JSON fragment."""

    open_containers: list[str] = field(default_factory=list)
    in_string: bool = False
    escaped: bool = False
    comma_positions: list[int] = field(default_factory=list)


def _scan(fragment: str) -> _ScanState:
    state = _ScanState()
    for index, char in enumerate(fragment):
        if state.in_string:
            if state.escaped:
                state.escaped = False
            elif char == "\\":
                state.escaped = True
            elif char == '"':
                state.in_string = False
            continue

        if char == '"':
            state.in_string = True
        elif char in "{[":
            state.open_containers.append(char)
        elif char in "}]":
            if state.open_containers:
                state.open_containers.pop()
        elif char == ",":
            state.comma_positions.append(index)
    return state


def strip_reasoning(content: str) -> str:
    """Drop everything up to and including the last reasoning close marker."""
    for marker in REASONING_CLOSE_MARKERS:
        end = content.rfind(marker)
        if end >= 0:
            content = content[end + len(marker) :]
    return content.strip()


def strip_code_fences(content: str) -> str:
    """Remove markdown code fence markers such as ```json."""
    return _CODE_FENCE.sub("", content).strip()


def find_object_end(text: str, start: int) -> int | None:
    """Index of the brace closing the object opened at `start`, or None if truncated.

    Braces inside string literals do not count towards the depth.
    """
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
                return index
    return None


def strip_trailing_commas(text: str) -> str:
    """Remove commas that directly precede a closing brace or bracket, outside strings."""
    result: list[str] = []
    in_string = False
    escaped = False
    length = len(text)
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            result.append(char)
            continue

        if char == '"':
            in_string = True
        elif char == ",":
            lookahead = index + 1
            while lookahead < length and text[lookahead].isspace():
                lookahead += 1
            if lookahead < length and text[lookahead] in "}]":
                continue
        result.append(char)
    return "".join(result)


def _close_fragment(fragment: str) -> str:
    """Append the minimal closing sequence for a truncated fragment."""
    state = _scan(fragment)
    repaired = fragment

    if state.in_string:
        if state.escaped:
            # A dangling backslash would escape the quote we are about to add
            repaired = repaired[:-1]
        repaired += '"'

    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1].rstrip()
    elif repaired.endswith(":"):
        repaired += " null"

    closers = "".join("}" if opener == "{" else "]" for opener in reversed(state.open_containers))
    return repaired + closers


def _is_valid_json(text: str) -> bool:
    try:
        json.loads(strip_trailing_commas(text))
    except json.JSONDecodeError:
        return False
    return True


def repair_truncated_json(fragment: str) -> str:
    """Close unterminated strings, arrays and objects in a truncated JSON fragment.

    The minimal closure is tried first. If that still does not parse (for
    example the cut fell inside a key or a literal), trailing members are
    dropped one comma at a time until the closure parses.

    Args:
        fragment: Text starting at the object's opening brace.

    Returns:
        The repaired text. May still be invalid if nothing salvageable remains.
    """
    candidate = _close_fragment(fragment)
    if _is_valid_json(candidate):
        return candidate

    remaining = fragment
    for _ in range(MAX_REPAIR_CUTS):
        commas = _scan(remaining).comma_positions
        if not commas:
            break
        remaining = remaining[: commas[-1]]
        attempt = _close_fragment(remaining)
        if _is_valid_json(attempt):
            return attempt

    return candidate


def extract_json(content: str) -> str:
    """Extract the first JSON object from a model reply, repairing truncation.

    Raises:
        ResponseParseError: If the reply contains no opening brace.
    """
    if not content or not content.strip():
        raise ResponseParseError("Empty response from vision service")

    text = strip_code_fences(strip_reasoning(content))

    start = text.find("{")
    if start < 0:
        raise ResponseParseError(f"No JSON object found in response: {text[:200]}")

    end = find_object_end(text, start)
    if end is not None:
        return text[start : end + 1]

    return repair_truncated_json(text[start:])


def normalize_tags(tags: list[str], max_tags: int) -> list[str]:
    """Strip, de-duplicate (case-insensitively) and cap a tag list."""
    seen: set[str] = set()
    normalized: list[str] = []
    for tag in tags:
        tag = clean_tag(tag)
        key = tag.casefold()
        if not tag or key in seen:
            continue
        seen.add(key)
        normalized.append(tag)
        if len(normalized) >= max_tags:
            break
    return normalized


def parse_analysis_response(
    content: str,
    filename_style: FilenameStyle = FilenameStyle.LOWERCASE,
    max_tags: int = 10,
) -> VisionAnalysis:
    """Turn a raw model reply into a validated, sanitized `VisionAnalysis`.

    Args:
        content: Free text returned by the model.
        filename_style: Case style for the suggested filename.
        max_tags: Maximum number of tags kept.

    Returns:
        The analysis, with `suggested_filename` usable directly as a filename stem.

    Raises:
        ResponseParseError: If no JSON object can be recovered or it does not fit the schema.
    """
    json_text = strip_trailing_commas(extract_json(content))

    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"JSON parse failed: {e}") from e

    if not isinstance(data, dict):
        raise ResponseParseError(f"Expected a JSON object, got {type(data).__name__}")

    # Keys are matched case-insensitively ("Suggested_Filename", "TAGS", ...)
    data = {str(key).strip().lower(): value for key, value in data.items()}

    try:
        analysis = VisionAnalysis.model_validate(data)
    except ValidationError as e:
        raise ResponseParseError(f"Response does not match the expected schema: {e}") from e

    return analysis.model_copy(
        update={
            "suggested_filename": sanitize_filename(analysis.suggested_filename, filename_style),
            "tags": normalize_tags(analysis.tags, max_tags),
        }
    )

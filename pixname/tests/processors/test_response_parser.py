"""Unit tests for JSON extraction and repair of model replies."""

import json

import pytest

from pixname.config import FilenameStyle
from pixname.exceptions import ErrorKind, ResponseParseError
from pixname.processors.response_parser import (
    extract_json,
    normalize_tags,
    parse_analysis_response,
    repair_truncated_json,
    strip_reasoning,
    strip_trailing_commas,
)


VALID_REPLY = '{"suggested_filename": "Golden Retriever Puppy", "title": "Puppy", "tags": ["dog", "puppy"]}'


class TestExtractJson:
    """Tests for extract_json."""

    def test_plain_object(self):
        assert json.loads(extract_json(VALID_REPLY))["title"] == "Puppy"

    def test_reasoning_block_is_discarded(self):
        """Braces inside the reasoning block must not be picked up."""
        content = '<think>Maybe {"wrong": true}? Let me look again.</think>\n' + VALID_REPLY

        assert json.loads(extract_json(content))["title"] == "Puppy"

    def test_code_fences_and_prose(self):
        content = f"Here is the analysis:\n```json\n{VALID_REPLY}\n```\nLet me know if you need more."

        assert json.loads(extract_json(content))["tags"] == ["dog", "puppy"]

    def test_braces_inside_strings(self):
        """Braces in string values do not affect depth tracking."""
        content = '{"description": "a {curly} thing", "suggested_filename": "curly"} trailing } text'

        assert json.loads(extract_json(content)) == {"description": "a {curly} thing", "suggested_filename": "curly"}

    def test_escaped_quotes_inside_strings(self):
        content = '{"title": "The \\"best\\" day {ever}", "tags": []}'

        assert json.loads(extract_json(content))["title"] == 'The "best" day {ever}'

    def test_no_object_raises(self):
        with pytest.raises(ResponseParseError, match="No JSON object"):
            extract_json("I cannot analyze this image.")

    def test_empty_reply_raises(self):
        with pytest.raises(ResponseParseError, match="Empty response"):
            extract_json("   ")


class TestRepairTruncatedJson:
    """Tests for repair of replies cut off by the token limit."""

    def test_open_string_and_array(self):
        """An unterminated string inside an unterminated array is closed in nesting order."""
        fragment = '{"suggested_filename": "a_dog_running","tags": ["dog","park'

        repaired = json.loads(repair_truncated_json(fragment))

        assert repaired["suggested_filename"] == "a_dog_running"
        assert "dog" in repaired["tags"]

    def test_dangling_comma(self):
        repaired = json.loads(repair_truncated_json('{"title": "Sunset", '))

        assert repaired == {"title": "Sunset"}

    def test_dangling_colon(self):
        repaired = json.loads(repair_truncated_json('{"title": "Sunset", "subject":'))

        assert repaired == {"title": "Sunset", "subject": None}

    def test_cut_inside_key_drops_last_member(self):
        """When the minimal closure is still invalid, the incomplete member is dropped."""
        repaired = json.loads(repair_truncated_json('{"suggested_filename": "cat", "ti'))

        assert repaired == {"suggested_filename": "cat"}

    def test_dangling_backslash_in_string(self):
        repaired = json.loads(repair_truncated_json('{"title": "C:\\'))

        assert repaired == {"title": "C:"}

    def test_nested_objects(self):
        repaired = json.loads(repair_truncated_json('{"a": {"b": [1, 2, {"c": "d'))

        assert repaired == {"a": {"b": [1, 2, {"c": "d"}]}}


class TestParseAnalysisResponse:
    """Tests for parse_analysis_response."""

    def test_truncated_reply_parses(self):
        analysis = parse_analysis_response('{"suggested_filename": "a_dog_running","tags": ["dog","park')

        assert analysis.suggested_filename == "a_dog_running"
        assert analysis.tags == ["dog", "park"]

    def test_filename_is_sanitized_with_style(self):
        analysis = parse_analysis_response(VALID_REPLY, filename_style=FilenameStyle.TITLE_CASE)

        assert analysis.suggested_filename == "Golden_Retriever_Puppy"

    def test_keys_are_case_insensitive(self):
        analysis = parse_analysis_response('{"Suggested_Filename": "beach", "TITLE": "Beach", "Tags": "sand, sea"}')

        assert analysis.suggested_filename == "beach"
        assert analysis.title == "Beach"
        assert analysis.tags == ["sand", "sea"]

    def test_nulls_and_author_lists_are_coerced(self):
        content = '{"suggested_filename": "poster", "title": null, "authors": ["Ann", "Bob"], "copyright": null}'

        analysis = parse_analysis_response(content)

        assert analysis.title == ""
        assert analysis.authors == "Ann, Bob"
        assert analysis.copyright == ""

    def test_trailing_commas_are_tolerated(self):
        analysis = parse_analysis_response('{"suggested_filename": "x", "tags": ["a", "b",],}')

        assert analysis.tags == ["a", "b"]

    def test_tags_are_capped_and_deduplicated(self):
        content = '{"suggested_filename": "x", "tags": ["Dog", "dog", " cat ", "", "bird", "fish"]}'

        analysis = parse_analysis_response(content, max_tags=3)

        assert analysis.tags == ["Dog", "cat", "bird"]

    def test_missing_filename_falls_back(self):
        analysis = parse_analysis_response('{"title": "Untitled"}')

        assert analysis.suggested_filename == "unnamed_image"

    def test_object_only_inside_reasoning_raises(self):
        """JSON that only appears inside the reasoning block does not count."""
        with pytest.raises(ResponseParseError, match="No JSON object"):
            parse_analysis_response('<think>{"title": "draft"}</think> Sorry, I cannot help.')

    def test_invalid_json_raises_parse_error(self):
        with pytest.raises(ResponseParseError) as exc_info:
            parse_analysis_response('{"title": nope}')

        assert exc_info.value.kind is ErrorKind.PARSE


class TestHelpers:
    def test_strip_reasoning_uses_last_marker(self):
        assert strip_reasoning("<think>a</think> b </think> c") == "c"

    def test_strip_trailing_commas_keeps_commas_in_strings(self):
        assert strip_trailing_commas('{"a": "x,}", "b": [1,],}') == '{"a": "x,}", "b": [1]}'

    def test_normalize_tags_collapses_whitespace(self):
        assert normalize_tags(["  golden   hour ", "Golden Hour"], max_tags=10) == ["golden hour"]

    def test_normalize_tags_replaces_keyword_separator(self):
        assert normalize_tags(["black; white", "cat"], max_tags=10) == ["black, white", "cat"]

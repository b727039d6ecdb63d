"""Tests for recovering JSON arrays from noisy provider output."""

from __future__ import annotations

import json

import pytest

from llm_taskgen.extraction.json_extractor import (
    STRATEGIES,
    ensure_array,
    extract_array,
    parse_aggressively_cleaned,
    parse_array_span,
    parse_between_markers,
    parse_bracket_slice,
    parse_direct,
    parse_object_fragments,
    parse_object_span,
    parse_without_fences,
)

RECORDS = [
    {
        "title": "Add login",
        "description": "Implement OAuth login flow",
        "priority": "high",
        "complexity": 5,
        "dependencies": [],
        "tags": ["auth"],
    },
    {
        "title": "Build dashboard",
        "description": "Render per-user metrics with charts",
        "priority": "medium",
        "complexity": 7,
        "dependencies": ["Add login"],
        "tags": ["frontend", "ui"],
    },
]


class TestStrategies:
    def test_order(self):
        assert [name for name, _ in STRATEGIES] == [
            "direct",
            "without_fences",
            "array_span",
            "bracket_slice",
            "object_span",
            "between_markers",
            "aggressive_clean",
            "object_fragments",
        ]

    def test_direct_array_and_object(self):
        assert parse_direct('  [{"a": 1}]  ') == [{"a": 1}]
        assert parse_direct('{"a": 1}') == [{"a": 1}]
        assert parse_direct("42") is None
        assert parse_direct("Here: [1]") is None

    def test_without_fences(self):
        assert parse_without_fences('```json\n[{"a": 1}]\n```') == [{"a": 1}]
        assert parse_without_fences('```\n{"a": 1}\n```') == [{"a": 1}]

    def test_array_span(self):
        assert parse_array_span('Here you go: [{"a": 1}] hope it helps') == [{"a": 1}]
        assert parse_array_span('["x", "y"]') is None

    def test_bracket_slice(self):
        assert parse_bracket_slice('Names: ["x", "y"] done') == ["x", "y"]
        assert parse_bracket_slice("] backwards [") is None

    def test_object_span_is_wrapped(self):
        assert parse_object_span('Result: {"title": "x"} end') == [{"title": "x"}]
        assert parse_object_span("no braces") is None

    def test_between_markers(self):
        text = '===== START LLM RESPONSE =====\n{"a": 1}\n===== END LLM RESPONSE ====='
        assert parse_between_markers(text) == [{"a": 1}]
        assert parse_between_markers('JSON START [{"a": 2}] JSON END trailing') == [{"a": 2}]
        assert parse_between_markers('[{"a": 1}]') is None

    def test_aggressive_clean_repairs_syntax(self):
        text = "[\n  {title: 'Add login', complexity: 5,},\n]"
        assert parse_aggressively_cleaned(text) == [{"title": "Add login", "complexity": 5}]

    def test_object_fragments(self):
        text = 'Task one: {"title": "A", "n": 1} and task two: {"title": "B", "n": 2}.'
        assert parse_object_fragments(text) == [{"title": "A", "n": 1}, {"title": "B", "n": 2}]
        assert parse_object_fragments("nothing here") is None


class TestExtractArray:
    def test_fenced_response_with_prose(self):
        text = (
            'Here is the result:\n```json\n[{"title":"Add login","description":"Implement OAuth login flow",'
            '"priority":"high","complexity":5,"dependencies":[],"tags":["auth"]}]\n```'
        )
        result = extract_array(text)
        assert len(result) == 1
        assert result[0]["title"] == "Add login"
        assert result[0]["priority"] == "high"
        assert result[0]["complexity"] == 5

    @pytest.mark.parametrize(
        "wrap",
        [
            lambda payload: payload,
            lambda payload: f"Sure! Here are the tasks:\n```json\n{payload}\n```\nLet me know if you need more.",
            lambda payload: f"===== START LLM RESPONSE =====\n{payload}\n===== END LLM RESPONSE =====",
            lambda payload: f"JSON RESPONSE: {payload} END JSON (2 tasks)",
        ],
    )
    def test_records_survive_surrounding_noise(self, wrap):
        for payload in (json.dumps(RECORDS), json.dumps(RECORDS, indent=2)):
            assert extract_array(wrap(payload)) == RECORDS

    def test_single_object_is_wrapped(self):
        assert extract_array(json.dumps(RECORDS[0])) == [RECORDS[0]]

    def test_not_json_at_all(self):
        assert extract_array("not json at all") is None
        assert extract_array("not json at all", fallback_to_empty=True) == []

    def test_empty_array_is_distinct_from_not_found(self):
        assert extract_array("[]") == []
        assert extract_array("[]") is not None

    def test_empty_input(self):
        assert extract_array("") is None
        assert extract_array(None, fallback_to_empty=True) == []

    def test_truncated_json_is_not_found(self):
        assert extract_array('[{"title": "Add login", "description": ') is None

    def test_ensure_array(self):
        assert ensure_array("garbage") == []
        assert ensure_array('[{"a": 1}]') == [{"a": 1}]

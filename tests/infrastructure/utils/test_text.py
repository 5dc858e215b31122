"""Tests for atomic_review.infrastructure.utils.text."""

import pytest

from atomic_review.infrastructure.utils.text import (
    extract_tags,
    normalize_tag,
    parse_frontmatter,
    tag_matches,
)

# ---------- Frontmatter ----------


def test_parse_frontmatter_basic():
    meta, body = parse_frontmatter("---\ntitle: Hello\ntags: [a, b]\n---\nBody text")
    assert meta == {"title": "Hello", "tags": ["a", "b"]}
    assert body == "Body text"


def test_parse_frontmatter_absent():
    text = "# Heading\n\nNo frontmatter here."
    assert parse_frontmatter(text) == ({}, text)


def test_parse_frontmatter_unclosed():
    text = "---\ntitle: Hello\nBody"
    assert parse_frontmatter(text) == ({}, text)


def test_parse_frontmatter_bom_and_tabs():
    meta, _ = parse_frontmatter("\ufeff---\nouter:\n\tinner: 1\n---\n")
    assert meta == {"outer": {"inner": 1}}


def test_parse_frontmatter_malformed_yaml_keeps_text():
    text = "---\nkey: [unclosed\n---\nBody"
    meta, body = parse_frontmatter(text)
    assert meta == {}
    assert body == text


def test_parse_frontmatter_duplicate_keys_rejected():
    text = "---\nkey: 1\nkey: 2\n---\nBody"
    meta, body = parse_frontmatter(text)
    assert meta == {}
    assert body == text


def test_parse_frontmatter_non_mapping():
    meta, body = parse_frontmatter("---\n- just\n- a list\n---\nBody")
    assert meta == {}
    assert body == "Body"


# ---------- Tags ----------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("#Topic", "topic"),
        ("  Topic/Sub ", "topic/sub"),
        ("##double", "double"),
    ],
)
def test_normalize_tag(raw, expected):
    assert normalize_tag(raw) == expected


def test_extract_tags_from_frontmatter_list_and_string():
    assert extract_tags({"tags": ["Math", "#physics"]}, "") == ["math", "physics"]
    assert extract_tags({"tags": "a, b c"}, "") == ["a", "b", "c"]
    assert extract_tags({"tag": "single"}, "") == ["single"]


def test_extract_tags_inline():
    body = "#start of line and a #nested/tag mid-sentence.\nNot a # heading"
    assert extract_tags({}, body) == ["start", "nested/tag"]


def test_extract_tags_ignores_code_and_urls():
    body = "Real #keep\n```\n#fenced\n```\nInline `#code` and http://x.org/#frag"
    assert extract_tags({}, body) == ["keep"]


def test_extract_tags_ignores_non_string_entries():
    assert extract_tags({"tags": ["ok", None, {"x": 1}, 42]}, "") == ["ok", "42"]


def test_tag_matches_nested():
    assert tag_matches("math", "math")
    assert tag_matches("math/algebra", "math")
    assert not tag_matches("mathematics", "math")
    assert not tag_matches("math", "math/algebra")

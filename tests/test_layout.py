import pytest

from openapi_errors import PatternMismatch
from openapi_layout import (
    TARGET_LAYOUTS,
    LineIndex,
    Namespace,
    TextRegion,
    apply_regions,
    header_pattern,
    reindent,
    split_lines,
)

DOC = """\
components:
  schemas:
    'Quoted':
      type: object

    Plain:
      type: string
  securitySchemes:
    basic:
      type: http
"""


def test_split_lines_keeps_endings_and_partial_tail():
    assert split_lines("a\nb\r\nc") == ["a\n", "b\r\n", "c"]
    assert split_lines("") == []


def test_find_path_handles_quoted_keys_and_block_bounds():
    index = LineIndex(DOC)
    quoted = index.find_path(("components", "schemas", "Quoted"))
    assert quoted is not None
    assert quoted.indent == 4
    # trailing blank line is left to whatever follows
    assert index.slice(quoted.header, quoted.body_end) == "    'Quoted':\n      type: object\n"
    schemas = index.find_path(("components", "schemas"))
    assert index.find_key("Plain", schemas) == 5
    assert index.find_path(("components", "parameters")) is None


def test_header_pattern_only_matches_its_indentation():
    pattern = header_pattern("Plain", 4)
    assert pattern.match("    Plain:")
    assert pattern.match('    "Plain": {}').group("value") == "{}"
    assert not pattern.match("      Plain:")
    assert not pattern.match("    PlainText:")


def test_field_layout_needs_an_owner():
    layout = TARGET_LAYOUTS[Namespace.FIELDS]
    assert layout.keys("Foo") == ("components", "schemas", "Foo", "properties")
    assert layout.entity_indent("Foo") == 8
    with pytest.raises(ValueError):
        layout.keys()


def test_apply_regions_rejects_overlap():
    text = "abcdef"
    assert apply_regions(text, [TextRegion(0, 1, "A"), TextRegion(4, 6)]) == "Abcd"
    with pytest.raises(ValueError):
        apply_regions(text, [TextRegion(0, 3), TextRegion(2, 4)])


def test_sequence_items_split_structurally():
    text = """\
parameters:
- name: a
  in: query
- name: b
  schema:
    type: string
next: 1
"""
    index = LineIndex(text)
    items = index.sequence_items(index.find_path(("parameters",)))
    assert [(start, end) for start, end, _ in items] == [(1, 3), (3, 6)]
    assert index.sequence_items(index.find_path(("next",))) == []


def test_reindent_shifts_and_refuses_impossible_dedent():
    assert reindent("A:\n  b: 1\n", 0, 4) == "    A:\n      b: 1\n"
    assert reindent("    A:\n\n      b: 1\n", 4, 0) == "A:\n\n  b: 1\n"
    with pytest.raises(PatternMismatch):
        reindent("    A:\n  b: 1\n", 4, 0, "A")


def test_comments_inside_a_block_do_not_end_it():
    text = """\
components:
  schemas:
    Keep:
      type: object
    Bar:
      type: object
# legacy fields below
      properties:
        a:
          type: string
# trailing note
  parameters: {}
"""
    index = LineIndex(text)
    bar = index.find_path(("components", "schemas", "Bar"))
    assert (bar.header, bar.body_end) == (4, 10)
    assert index.find_path(("components", "schemas", "Bar", "properties", "a")) is not None
    # a comment with nothing deeper after it stays with what follows
    schemas = index.find_path(("components", "schemas"))
    assert schemas.body_end == 10


def test_sequence_items_step_over_comments():
    text = """\
parameters:
- name: a
# shared with /users
  in: query
- name: b
next: 1
"""
    index = LineIndex(text)
    items = index.sequence_items(index.find_path(("parameters",)))
    assert [(start, end) for start, end, _ in items] == [(1, 4), (4, 5)]


def test_reindent_moves_shallow_comments_to_the_margin():
    assert reindent("    A:\n# note\n      b: 1\n", 4, 0) == "A:\n# note\n  b: 1\n"

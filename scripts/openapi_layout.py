#!/usr/bin/env python3
"""
Namespace layouts and indentation-anchored text regions.

Every edit to a target document is a ``TextRegion``: a contiguous slice of
the raw text plus the text that replaces it.  Regions are found by anchoring
an entity name at the indentation its namespace lives at and extending over
every deeper-indented line that follows, so bytes outside the edited entity
never change.  Documents are expected to indent nested mappings by two spaces.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Pattern

from openapi_errors import PatternMismatch

INDENT_WIDTH = 2
HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

KEY_RE = re.compile(
    r"""^(?P<indent> *)"""
    r"""(?:'(?P<single>[^']*)'|"(?P<double>[^"]*)"|(?P<bare>[^\s'"#?{\[\-][^#]*?))"""
    r"""[ \t]*:(?:[ \t]+(?P<value>.*?))?[ \t]*$"""
)


class Namespace(Enum):
    SCHEMAS = "schemas"
    PARAMETERS = "parameters"
    PATHS = "paths"
    FIELDS = "fields"


@dataclass(frozen=True)
class NamespaceLayout:
    """Where the entities of one namespace live inside a document.

    ``section`` is the key path of the mapping holding the entities (for
    FIELDS: the mapping holding the owning schemas).  ``sentinel`` names the
    sibling section a missing header is synthesized in front of.
    """

    namespace: Namespace
    section: tuple[str, ...]
    sentinel: str | None = None
    ref_prefix: str | None = None

    def keys(self, owner: str | None = None) -> tuple[str, ...]:
        if self.namespace is Namespace.FIELDS:
            if owner is None:
                raise ValueError("field layouts need the owning schema name")
            return self.section + (owner, "properties")
        return self.section

    def entity_indent(self, owner: str | None = None) -> int:
        if self.namespace is Namespace.FIELDS:
            return INDENT_WIDTH * (len(self.section) + 2)
        return INDENT_WIDTH * len(self.section)


SCHEMA_REF_PREFIX = "#/components/schemas/"
PARAMETER_REF_PREFIX = "#/components/parameters/"

TARGET_LAYOUTS = {
    Namespace.SCHEMAS: NamespaceLayout(
        Namespace.SCHEMAS, ("components", "schemas"), "securitySchemes", SCHEMA_REF_PREFIX
    ),
    Namespace.PARAMETERS: NamespaceLayout(
        Namespace.PARAMETERS, ("components", "parameters"), "securitySchemes", PARAMETER_REF_PREFIX
    ),
    Namespace.PATHS: NamespaceLayout(Namespace.PATHS, ("paths",), "components"),
    Namespace.FIELDS: NamespaceLayout(
        Namespace.FIELDS, ("components", "schemas"), None, SCHEMA_REF_PREFIX
    ),
}


def flat_layout(namespace: Namespace) -> NamespaceLayout:
    """Layout of a flat source file (``models.yaml``): entities at the top level."""
    return NamespaceLayout(namespace, (), None, TARGET_LAYOUTS[namespace].ref_prefix)


def header_pattern(name: str, indent: int) -> Pattern[str]:
    """Match the key line of ``name`` at exactly ``indent`` spaces, quoted or bare."""
    return re.compile(
        r"^ {%d}(?P<q>['\"]?)%s(?P=q)[ \t]*:(?:[ \t]+(?P<value>.*?))?[ \t]*$"
        % (indent, re.escape(name))
    )


def key_name(match: re.Match[str]) -> str:
    for group in ("single", "double", "bare"):
        value = match.group(group)
        if value is not None:
            return value
    return ""


def _clean_value(value: str | None) -> str | None:
    if value is None or not value or value.startswith("#"):
        return None
    return value


def split_lines(text: str) -> list[str]:
    """Split on newlines only, keeping them; a trailing partial line is kept as-is."""
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def is_sequence_item(content: str) -> bool:
    return content == "-" or content.startswith("- ")


@dataclass(frozen=True)
class TextRegion:
    start: int
    end: int
    replacement: str = ""

    def apply(self, text: str) -> str:
        return text[: self.start] + self.replacement + text[self.end :]


def apply_regions(text: str, regions: Iterable[TextRegion]) -> str:
    """Apply non-overlapping regions, last first so earlier offsets stay valid."""
    ordered = sorted(regions, key=lambda region: region.start, reverse=True)
    boundary = len(text) + 1
    for region in ordered:
        if region.end > boundary:
            raise ValueError(f"overlapping text regions at offset {region.start}")
        text = region.apply(text)
        boundary = region.start
    return text


@dataclass(frozen=True)
class Block:
    """A mapping key and the lines nested under it.

    ``body_end`` is exclusive and stops after the last content line, so
    trailing blank lines stay with whatever follows.
    """

    header: int | None
    body_start: int
    body_end: int
    indent: int
    value: str | None = None

    @property
    def child_indent(self) -> int:
        return self.indent + INDENT_WIDTH


class LineIndex:
    """Line offsets and indentation lookups over one immutable text."""

    def __init__(self, text: str):
        self.text = text
        self.lines = split_lines(text)
        self.offsets = [0]
        for line in self.lines:
            self.offsets.append(self.offsets[-1] + len(line))

    def offset(self, number: int) -> int:
        return self.offsets[number]

    def content(self, number: int) -> str:
        return self.lines[number].rstrip("\r\n")

    def indent(self, number: int) -> int:
        content = self.content(number)
        return len(content) - len(content.lstrip(" "))

    def is_blank(self, number: int) -> bool:
        return not self.lines[number].strip()

    def is_comment(self, number: int) -> bool:
        return self.lines[number].lstrip().startswith("#")

    def key(self, number: int) -> re.Match[str] | None:
        if self.is_blank(number) or self.is_comment(number):
            return None
        return KEY_RE.match(self.content(number))

    def block_end(self, number: int, indent: int) -> int:
        end = number + 1
        cursor = number + 1
        while cursor < len(self.lines):
            if self.is_blank(cursor) or self.is_comment(cursor):
                cursor += 1
                continue
            if self.indent(cursor) <= indent:
                break
            cursor += 1
            end = cursor
        return end

    def root(self) -> Block:
        return Block(None, 0, len(self.lines), -INDENT_WIDTH)

    def find_key(self, name: str, parent: Block) -> int | None:
        pattern = header_pattern(name, parent.child_indent)
        for number in range(parent.body_start, parent.body_end):
            if pattern.match(self.content(number)):
                return number
        return None

    def child(self, parent: Block, name: str) -> Block | None:
        number = self.find_key(name, parent)
        if number is None:
            return None
        match = header_pattern(name, parent.child_indent).match(self.content(number))
        return Block(
            number,
            number + 1,
            self.block_end(number, parent.child_indent),
            parent.child_indent,
            _clean_value(match.group("value")),
        )

    def find_path(self, keys: Iterable[str], base: Block | None = None) -> Block | None:
        block: Block | None = base or self.root()
        for key in keys:
            block = self.child(block, key)
            if block is None:
                return None
        return block

    def block_at(self, number: int) -> Block | None:
        """The block whose key sits on line ``number``, if that line is a key."""
        match = self.key(number)
        if match is None:
            return None
        indent = len(match.group("indent"))
        return Block(
            number,
            number + 1,
            self.block_end(number, indent),
            indent,
            _clean_value(match.group("value")),
        )

    def region(self, block: Block, replacement: str = "") -> TextRegion:
        start = self.offset(block.header if block.header is not None else block.body_start)
        return TextRegion(start, self.offset(block.body_end), replacement)

    def slice(self, start: int, end: int) -> str:
        return self.text[self.offset(start) : self.offset(end)]

    def sequence_items(self, block: Block) -> list[tuple[int, int, int]]:
        """Split the block sequence under ``block`` into ``(start, end, indent)`` items.

        Items may sit at the key's own indentation or deeper.  An item runs
        from its ``- `` line up to the next line at or left of the item
        indentation.
        """
        if block.header is None or block.value is not None:
            return []
        cursor = block.header + 1
        while cursor < len(self.lines) and (self.is_blank(cursor) or self.is_comment(cursor)):
            cursor += 1
        if cursor >= len(self.lines):
            return []
        item_indent = self.indent(cursor)
        if item_indent < block.indent or not is_sequence_item(self.content(cursor)[item_indent:]):
            return []
        items: list[tuple[int, int, int]] = []
        start: int | None = None
        last = cursor
        while cursor < len(self.lines):
            if self.is_blank(cursor) or self.is_comment(cursor):
                cursor += 1
                continue
            indent = self.indent(cursor)
            if indent == item_indent and is_sequence_item(self.content(cursor)[indent:]):
                if start is not None:
                    items.append((start, last, item_indent))
                start = cursor
            elif indent <= item_indent:
                break
            cursor += 1
            last = cursor
        if start is not None:
            items.append((start, last, item_indent))
        return items


def reindent(block: str, from_indent: int, to_indent: int, name: str = "block") -> str:
    """Shift every non-blank line of block by ``to_indent - from_indent`` spaces."""
    shift = to_indent - from_indent
    out = []
    for line in split_lines(block):
        if not line.strip() or shift == 0:
            out.append(line)
        elif shift > 0:
            out.append(" " * shift + line)
        else:
            lead = len(line) - len(line.lstrip(" "))
            if lead >= -shift:
                out.append(line[-shift:])
            elif line.lstrip().startswith("#"):
                out.append(line[lead:])
            else:
                raise PatternMismatch(name, f"line indented {lead} cannot move {-shift} columns left")
    return "".join(out)

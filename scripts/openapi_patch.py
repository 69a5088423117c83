#!/usr/bin/env python3
"""
Format-preserving patches for a target OpenAPI document.

Every operation takes the current raw text and returns a ``PatchResult``
holding the new text plus what was applied, skipped (with a reason) and
failed.  Edits are contiguous ``TextRegion`` replacements located by
name-anchored headers, so every byte outside an edited entity is kept.
Entity-level problems land in ``failed``/``skipped``; only document-level
problems (a section that cannot be opened for insertion, an unparseable
document) raise.
Requires: PyYAML
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

import yaml

from openapi_diff import TYPE_MISMATCH, Diff, FieldMismatch, ParameterMismatch
from openapi_documents import SourceDocument, by_name, lookup, parse_fragment, parse_text
from openapi_errors import EntityNotFound, ParseError, PatternMismatch
from openapi_layout import (
    HTTP_METHODS,
    INDENT_WIDTH,
    PARAMETER_REF_PREFIX,
    TARGET_LAYOUTS,
    Block,
    LineIndex,
    Namespace,
    TextRegion,
    apply_regions,
    header_pattern,
    key_name,
    reindent,
)
from openapi_refs import rewrite_local_references

EMPTY_VALUES = {"{}", "~", "null", "Null", "NULL"}


@dataclass
class PatchResult:
    text: str
    applied: list[str] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)


def _label(name: str, owner: str | None) -> str:
    return f"{owner}.{name}" if owner else name


def _unquote(value: str | None) -> str | None:
    if value and len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def _open_block(text: str, index: LineIndex, block: Block, keys: Sequence[str]) -> str:
    if block.value is None:
        return text
    if block.value not in EMPTY_VALUES:
        raise PatternMismatch(
            ".".join(keys), f"holds an inline value ({block.value}) instead of a block mapping"
        )
    content = index.content(block.header)
    colon = content.rfind(":", 0, len(content) - len(block.value))
    start = index.offset(block.header)
    return TextRegion(start + colon + 1, start + len(content)).apply(text)


def ensure_block(text: str, keys: Sequence[str], sentinel: str | None = None) -> str:
    """Return text in which the mapping at ``keys`` exists and can take children.

    A missing header is synthesized in front of the ``sentinel`` sibling when
    there is one, otherwise after the last line of its parent; missing parents
    are created the same way.
    """
    index = LineIndex(text)
    block = index.find_path(keys)
    if block is not None:
        return _open_block(text, index, block, keys)
    parent_keys = tuple(keys[:-1])
    if parent_keys:
        text = ensure_block(text, parent_keys)
        index = LineIndex(text)
    parent = index.find_path(parent_keys)
    header = " " * parent.child_indent + keys[-1] + ":\n"
    anchor = None
    if sentinel:
        number = index.find_key(sentinel, parent)
        if number is not None:
            anchor = index.offset(number)
    if anchor is None:
        anchor = index.offset(parent.body_end)
        if anchor and text[anchor - 1] != "\n":
            header = "\n" + header
    return TextRegion(anchor, anchor, header).apply(text)


def insert_at_end(text: str, index: LineIndex, block: Block, payload: str) -> str:
    offset = index.offset(block.body_end)
    if offset and text[offset - 1] != "\n":
        payload = "\n" + payload
    return TextRegion(offset, offset, payload).apply(text)


def extract_block(source_text: str, keys: Sequence[str], name: str, where: str) -> tuple[str, int]:
    """Cut ``name``'s header and nested lines out of the source; return text and indent."""
    index = LineIndex(source_text)
    parent = index.find_path(keys)
    block = index.child(parent, name) if parent is not None else None
    if block is None:
        raise EntityNotFound(name, where)
    text = index.slice(block.header, block.body_end)
    if not text.endswith("\n"):
        text += "\n"
    return text, block.indent


def _add_blocks(
    text: str,
    names: Iterable[str],
    target_keys: tuple[str, ...],
    sentinel: str | None,
    source: SourceDocument,
    source_keys: tuple[str, ...],
    present: set[str],
    owner: str | None = None,
) -> PatchResult:
    result = PatchResult(text)
    index = LineIndex(text)
    section = index.find_path(target_keys)
    target_indent = INDENT_WIDTH * len(target_keys)
    blocks = []
    for name in names:
        label = _label(name, owner)
        if name in present or (section is not None and index.find_key(name, section) is not None):
            result.skipped.append((label, "already present"))
            continue
        try:
            block, indent = extract_block(source.document.text, source_keys, name, source.label)
            block = reindent(block, indent, target_indent, label)
        except (EntityNotFound, PatternMismatch) as exc:
            result.failed.append((label, str(exc)))
            continue
        if source.layout.ref_prefix:
            block = rewrite_local_references(block, source.layout.ref_prefix)
        blocks.append(block)
        result.applied.append(label)
    if blocks:
        text = ensure_block(text, target_keys, sentinel)
        index = LineIndex(text)
        result.text = insert_at_end(text, index, index.find_path(target_keys), "".join(blocks))
    return result


def add_entities(text: str, diff: Diff, source: SourceDocument) -> PatchResult:
    """Copy every ``missing`` entity of diff from the source text into text."""
    layout = TARGET_LAYOUTS[diff.namespace]
    data = parse_text(text)
    if diff.namespace is Namespace.FIELDS:
        schema_keys = layout.section + (diff.owner,)
        schema = lookup(data, schema_keys)
        if not isinstance(schema, dict) or LineIndex(text).find_path(schema_keys) is None:
            result = PatchResult(text)
            reason = str(EntityNotFound(diff.owner, "target schemas"))
            result.failed.extend((_label(name, diff.owner), reason) for name in diff.missing)
            return result
        present = set(by_name(schema.get("properties")))
    else:
        present = set(by_name(lookup(data, layout.section)))
    return _add_blocks(
        text,
        diff.missing,
        layout.keys(diff.owner),
        layout.sentinel,
        source,
        source.layout.keys(diff.owner),
        present,
        diff.owner,
    )


def remove_entities(text: str, diff: Diff) -> PatchResult:
    """Delete every ``extra`` entity of diff from text."""
    layout = TARGET_LAYOUTS[diff.namespace]
    keys = layout.keys(diff.owner)
    present = set(by_name(lookup(parse_text(text), keys)))
    result = PatchResult(text)
    for name in diff.extra:
        label = _label(name, diff.owner)
        if name not in present:
            result.skipped.append((label, "already absent"))
            continue
        index = LineIndex(result.text)
        section = index.find_path(keys)
        block = index.child(section, name) if section is not None else None
        if block is None:
            mismatch = PatternMismatch(
                label,
                f"no header at indentation {layout.entity_indent(diff.owner)} under {'.'.join(keys)}",
            )
            result.failed.append((label, str(mismatch)))
            continue
        result.text = index.region(block).apply(result.text)
        result.applied.append(label)
    return result


def _parameter_identities(text: str) -> dict[tuple[str, str], list[str]]:
    components = by_name(lookup(parse_text(text), TARGET_LAYOUTS[Namespace.PARAMETERS].section))
    identities: dict[tuple[str, str], list[str]] = defaultdict(list)
    for key, definition in components.items():
        if isinstance(definition, dict) and "name" in definition:
            identities[(str(definition["name"]), str(definition.get("in")))].append(key)
    return identities


def convert_inline_parameters(text: str) -> PatchResult:
    """Replace inline operation parameters with pointers to matching components.

    Each ``parameters:`` sequence under ``paths`` is split into its items and
    every item is parsed on its own.  An item is replaced only when its
    ``name``/``in`` pair matches exactly one component parameter.
    """
    result = PatchResult(text)
    identities = _parameter_identities(text)
    index = LineIndex(text)
    paths = index.find_path(TARGET_LAYOUTS[Namespace.PATHS].section)
    if paths is None:
        return result
    regions = []
    for number in range(paths.body_start, paths.body_end):
        match = index.key(number)
        if match is None or key_name(match) != "parameters":
            continue
        for start, end, item_indent in index.sequence_items(index.block_at(number)):
            location = f"line {start + 1}"
            try:
                parsed = parse_fragment(reindent(index.slice(start, end), item_indent, 0), location)
            except (ParseError, PatternMismatch) as exc:
                result.skipped.append((location, str(exc)))
                continue
            item = parsed[0] if isinstance(parsed, list) and len(parsed) == 1 else None
            if not isinstance(item, dict) or "$ref" in item:
                continue
            if "name" not in item:
                result.skipped.append((location, "inline parameter has no name"))
                continue
            identity = (str(item["name"]), str(item.get("in")))
            label = f"{identity[0]} in {identity[1]} ({location})"
            keys = identities.get(identity, [])
            if len(keys) != 1:
                reason = (
                    "ambiguous component match: " + ", ".join(sorted(keys))
                    if keys
                    else "no component parameter with this name"
                )
                result.skipped.append((label, reason))
                continue
            replacement = f"{' ' * item_indent}- $ref: '{PARAMETER_REF_PREFIX}{keys[0]}'\n"
            regions.append(TextRegion(index.offset(start), index.offset(end), replacement))
            result.applied.append(label)
    result.text = apply_regions(text, regions)
    return result


def _set_scalar(
    result: PatchResult, keys: Sequence[str], wanted: str, label: str, insert: bool = False
) -> None:
    """Point the inline value at ``keys`` to ``wanted``.

    With ``insert`` an absent key is appended to its parent mapping (parents
    are created as needed); otherwise an absent key is a failure.
    """
    index = LineIndex(result.text)
    block = index.find_path(keys)
    if block is not None and block.value is not None:
        current = _unquote(block.value)
        if current == wanted:
            result.skipped.append((label, f"already {wanted}"))
            return
        match = header_pattern(keys[-1], block.indent).match(index.content(block.header))
        start = index.offset(block.header)
        region = TextRegion(start + match.start("value"), start + match.end("value"), wanted)
        result.text = region.apply(result.text)
        result.applied.append(f"{label}: {current} -> {wanted}")
        return
    if block is not None or not insert:
        result.failed.append((label, f"no inline {keys[-1]} at the expected indentation"))
        return
    try:
        text = ensure_block(result.text, keys[:-1])
    except PatternMismatch as exc:
        result.failed.append((label, str(exc)))
        return
    index = LineIndex(text)
    parent = index.find_path(keys[:-1])
    line = f"{' ' * parent.child_indent}{keys[-1]}: {wanted}\n"
    result.text = insert_at_end(text, index, parent, line)
    result.applied.append(f"{label}: absent -> {wanted}")


def fix_field_types(text: str, mismatches: Iterable[FieldMismatch]) -> PatchResult:
    """Rewrite the ``type:`` line of each mismatched field to the reference type."""
    result = PatchResult(text)
    schemas = TARGET_LAYOUTS[Namespace.SCHEMAS].section
    for mismatch in mismatches:
        if mismatch.kind != TYPE_MISMATCH:
            continue
        label = f"{mismatch.schema}.{mismatch.field}"
        if not isinstance(mismatch.reference, str) or not mismatch.reference:
            result.failed.append((label, "no reference type recorded"))
            continue
        keys = schemas + (mismatch.schema, "properties", mismatch.field, "type")
        _set_scalar(result, keys, mismatch.reference, label)
    return result


def fix_parameter_schemas(text: str, mismatches: Iterable[ParameterMismatch]) -> PatchResult:
    """Set drifted ``in``/``schema.type``/``schema.items.type`` of component parameters.

    Missing attributes are inserted under the parameter; a parameter the
    target does not define is a failure, never created.
    """
    result = PatchResult(text)
    section = TARGET_LAYOUTS[Namespace.PARAMETERS].section
    for mismatch in mismatches:
        label = mismatch.label
        if not isinstance(mismatch.reference, str) or not mismatch.reference:
            result.failed.append((label, f"reference value {mismatch.reference!r} is not a name"))
            continue
        keys = section + (mismatch.parameter,)
        if LineIndex(result.text).find_path(keys) is None:
            missing = EntityNotFound(mismatch.parameter, "target parameters")
            result.failed.append((label, str(missing)))
            continue
        _set_scalar(result, keys + mismatch.attribute, mismatch.reference, label, insert=True)
    return result


def _tags_region(index: LineIndex, block: Block, tag: str) -> TextRegion:
    items = index.sequence_items(block)
    end = max([block.body_end] + [item_end for _, item_end, _ in items])
    item_indent = items[0][2] if items else block.child_indent
    dumped = yaml.safe_dump([tag], default_flow_style=False, allow_unicode=True)
    lines = "".join(" " * item_indent + line for line in dumped.splitlines(keepends=True))
    replacement = " " * block.indent + "tags:\n" + lines
    return TextRegion(index.offset(block.header), index.offset(end), replacement)


def sync_operation_tags(text: str, reference_paths: Mapping) -> PatchResult:
    """Make each shared operation's first tag match the reference's first tag."""
    result = PatchResult(text)
    ref_paths = by_name(reference_paths)
    target_paths = by_name(lookup(parse_text(text), ("paths",)))
    for path in sorted(set(ref_paths) & set(target_paths)):
        ref_ops, target_ops = by_name(ref_paths[path]), by_name(target_paths[path])
        for method in HTTP_METHODS:
            ref_op, target_op = ref_ops.get(method), target_ops.get(method)
            if not isinstance(ref_op, dict) or not isinstance(target_op, dict):
                continue
            ref_tags = ref_op.get("tags") or []
            target_tags = target_op.get("tags") or []
            if not isinstance(ref_tags, list) or not ref_tags or not isinstance(target_tags, list):
                continue
            wanted = str(ref_tags[0]).strip()
            if target_tags and str(target_tags[0]).strip() == wanted:
                continue
            label = f"{method.upper()} {path}"
            index = LineIndex(result.text)
            block = index.find_path(("paths", path, method, "tags"))
            if block is None:
                result.skipped.append((label, "operation has no tags key"))
                continue
            result.text = _tags_region(index, block, wanted).apply(result.text)
            result.applied.append(f"{label}: {wanted}")
    return result

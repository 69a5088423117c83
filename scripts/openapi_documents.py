#!/usr/bin/env python3
"""
Load reference and target OpenAPI documents.

Two views of every document are kept side by side: the parsed tree used for
analysis (diffing, reporting, presence checks) and the raw text used for
patching.  Parsed trees are never serialized back; a generic YAML dump would
rewrite quoting, dates and whitespace all over the file.
Requires: PyYAML
"""
from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator

import yaml

from openapi_errors import NotFoundError, ParseError
from openapi_layout import TARGET_LAYOUTS, Namespace, NamespaceLayout, flat_layout

TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"

SOURCE_FILES = {
    Namespace.SCHEMAS: "models.yaml",
    Namespace.PARAMETERS: "parameters.yaml",
}


class AnalysisLoader(yaml.SafeLoader):
    """SafeLoader that keeps date-like scalars as the strings they were written as."""


AnalysisLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != TIMESTAMP_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def read_text(path: Path) -> str:
    try:
        with Path(path).open("r", encoding="utf-8", newline="") as handle:
            return handle.read()
    except FileNotFoundError as exc:
        raise NotFoundError(f"missing document: {path}") from exc


def parse_fragment(text: str, source: str = "<fragment>") -> Any:
    try:
        return yaml.load(text, Loader=AnalysisLoader)
    except yaml.YAMLError as exc:
        raise ParseError(source, str(exc)) from exc


def parse_text(text: str, source: str = "<document>") -> dict:
    data = parse_fragment(text, source)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParseError(source, f"expected a mapping at the root, found {type(data).__name__}")
    return data


def by_name(mapping: Any) -> dict:
    """Re-key a mapping by str(key); anything else becomes empty."""
    if not isinstance(mapping, dict):
        return {}
    return {str(key): value for key, value in mapping.items()}


def lookup(data: Any, keys: Iterable[str]) -> Any:
    node = data
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = by_name(node).get(key)
    return node


@dataclass
class StructuredDocument:
    path: Path
    text: str
    data: dict

    def section(self, *keys: str) -> dict:
        return by_name(lookup(self.data, keys))


def load_document(path: Path) -> StructuredDocument:
    path = Path(path)
    text = read_text(path)
    return StructuredDocument(path, text, parse_text(text, str(path)))


@dataclass
class SourceDocument:
    """A reference document plus the layout its entities are cut from."""

    document: StructuredDocument
    layout: NamespaceLayout

    @property
    def entries(self) -> dict:
        return self.document.section(*self.layout.section)

    @property
    def label(self) -> str:
        return self.document.path.name


@dataclass
class ReferenceSet:
    root: StructuredDocument
    schemas: SourceDocument
    parameters: SourceDocument
    paths: SourceDocument

    def source(self, namespace: Namespace) -> SourceDocument:
        if namespace is Namespace.PATHS:
            return self.paths
        if namespace is Namespace.PARAMETERS:
            return self.parameters
        if namespace is Namespace.FIELDS:
            layout = self.schemas.layout
            return SourceDocument(
                self.schemas.document,
                NamespaceLayout(Namespace.FIELDS, layout.section, None, layout.ref_prefix),
            )
        return self.schemas


def _flat_candidates(root: Path, filename: str) -> Iterator[Path]:
    yield root.parent / filename
    yield root.parent / "schemas" / filename


def _source_for(
    root: StructuredDocument, namespace: Namespace, explicit: Path | None
) -> SourceDocument:
    if explicit is not None:
        return SourceDocument(load_document(explicit), flat_layout(namespace))
    for candidate in _flat_candidates(root.path, SOURCE_FILES[namespace]):
        if candidate.exists():
            return SourceDocument(load_document(candidate), flat_layout(namespace))
    return SourceDocument(root, TARGET_LAYOUTS[namespace])


def load_reference(
    root: Path, models: Path | None = None, parameters: Path | None = None
) -> ReferenceSet:
    """Load the reference root and its flat schema/parameter sources."""
    root_doc = load_document(root)
    return ReferenceSet(
        root=root_doc,
        schemas=_source_for(root_doc, Namespace.SCHEMAS, models),
        parameters=_source_for(root_doc, Namespace.PARAMETERS, parameters),
        paths=SourceDocument(root_doc, TARGET_LAYOUTS[Namespace.PATHS]),
    )


class DocumentHandle:
    """The on-disk target document, reread by every stage that touches it."""

    def __init__(self, path: Path, backup_suffix: str = ".backup"):
        self.path = Path(path)
        self.backup_path = self.path.with_name(self.path.name + backup_suffix)

    def read(self) -> str:
        return read_text(self.path)

    def load(self) -> StructuredDocument:
        return load_document(self.path)

    def write(self, text: str) -> None:
        fd, tmp = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(text)
            if self.path.exists():
                shutil.copymode(self.path, tmp)
            os.replace(tmp, self.path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)
            raise

    @contextlib.contextmanager
    def transaction(self, *, backup: bool = False) -> Iterator["DocumentHandle"]:
        """Restore the pre-stage bytes if the body fails or leaves unparseable YAML."""
        original = self.read()
        if backup:
            with self.backup_path.open("w", encoding="utf-8", newline="") as handle:
                handle.write(original)
        try:
            yield self
            parse_text(self.read(), str(self.path))
        except BaseException:
            self.write(original)
            raise

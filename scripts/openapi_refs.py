#!/usr/bin/env python3
"""
Rewrite cross-document ``$ref`` pointers into component pointers.

An external pointer (``'./schemas/models.yaml#/Account'``) becomes an
internal one (``'#/components/schemas/Account'``) only when every external
pointer in the document resolves to a component the document already
defines.  Otherwise nothing is rewritten and the unresolved names are
reported together.
"""
from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Mapping

from openapi_documents import SOURCE_FILES, StructuredDocument
from openapi_errors import SyncError, UnresolvedReferenceError
from openapi_layout import TARGET_LAYOUTS, Namespace, TextRegion, apply_regions

_REF_KEY = r"""(?P<prefix>(?P<kq>['"]?)\$ref(?P=kq)[ \t]*:[ \t]*)"""
_REF_END = r"""(?=[ \t]*(?:[,}\]#\r]|$))"""

EXTERNAL_REF_RE = re.compile(
    _REF_KEY
    + r"""(?P<q>['"]?)(?P<file>[^'"\s#{}\[\],]+)#/(?P<name>[^'"\s,{}\[\]]+?)(?P=q)"""
    + _REF_END,
    re.M,
)
LOCAL_REF_RE = re.compile(
    _REF_KEY + r"""(?P<q>['"]?)#/(?P<name>[^'"\s/,{}\[\]]+)(?P=q)""" + _REF_END,
    re.M,
)
INTERNAL_REF_RE = re.compile(
    _REF_KEY
    + r"""(?P<q>['"]?)#/components/(?P<section>[A-Za-z]+)/(?P<name>[^'"\s,{}\[\]]+?)(?P=q)"""
    + _REF_END,
    re.M,
)

REWRITTEN = (Namespace.SCHEMAS, Namespace.PARAMETERS)


@dataclass(frozen=True)
class ExternalReference:
    file: str
    name: str
    namespace: Namespace | None
    start: int
    end: int
    prefix: str
    quote: str

    @property
    def pointer(self) -> str:
        return f"{self.file}#/{self.name}"

    def internal(self) -> str:
        quote = self.quote or "'"
        target = TARGET_LAYOUTS[self.namespace].ref_prefix + self.name
        return f"{self.prefix}{quote}{target}{quote}"


def find_external_references(
    text: str, sources: Mapping[Namespace, str] | None = None
) -> list[ExternalReference]:
    files = {filename: namespace for namespace, filename in (sources or SOURCE_FILES).items()}
    refs = []
    for match in EXTERNAL_REF_RE.finditer(text):
        filename = match.group("file")
        refs.append(
            ExternalReference(
                file=filename,
                name=match.group("name"),
                namespace=files.get(PurePosixPath(filename).name),
                start=match.start(),
                end=match.end(),
                prefix=match.group("prefix"),
                quote=match.group("q"),
            )
        )
    return refs


def component_names(document: StructuredDocument) -> dict[str, set[str]]:
    """Names defined under each ``components`` subsection of the document."""
    return {
        section: set(document.section("components", section))
        for section in document.section("components")
    }


def unresolved_references(
    refs: list[ExternalReference], known: Mapping[str, set[str]]
) -> list[str]:
    missing = set()
    for ref in refs:
        if ref.namespace not in REWRITTEN:
            missing.add(ref.pointer)
        elif ref.name not in known.get(ref.namespace.value, set()):
            missing.add(ref.name)
    return sorted(missing)


def internalize(
    text: str,
    known: Mapping[str, set[str]],
    sources: Mapping[Namespace, str] | None = None,
) -> tuple[str, Counter]:
    """Return text with every external pointer made internal, plus per-namespace counts."""
    refs = find_external_references(text, sources)
    missing = unresolved_references(refs, known)
    if missing:
        raise UnresolvedReferenceError(missing)
    counts: Counter = Counter()
    regions = []
    for ref in refs:
        regions.append(TextRegion(ref.start, ref.end, ref.internal()))
        counts[ref.namespace.value] += 1
    rewritten = apply_regions(text, regions)
    remaining = find_external_references(rewritten, sources)
    if remaining:
        raise SyncError(f"{len(remaining)} external reference(s) survived the rewrite")
    return rewritten, counts


def _localize(match: "re.Match[str]", prefix: str) -> str:
    quote = match.group("q") or "'"
    return f"{match.group('prefix')}{quote}{prefix}{match.group('name')}{quote}"


def rewrite_local_references(block: str, prefix: str) -> str:
    """Turn flat-file pointers (``#/Name``) into ``prefix + Name`` pointers."""
    return LOCAL_REF_RE.sub(lambda match: _localize(match, prefix), block)


def dangling_references(text: str, known: Mapping[str, set[str]]) -> list[str]:
    """Internal component pointers whose target is not defined in the document."""
    dangling = set()
    for match in INTERNAL_REF_RE.finditer(text):
        section, name = match.group("section"), match.group("name")
        if name not in known.get(section, set()):
            dangling.add(f"#/components/{section}/{name}")
    return sorted(dangling)

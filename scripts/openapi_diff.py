#!/usr/bin/env python3
"""
Set-based comparison of a reference set against a target document.

Each namespace is a flat set of names (mapping keys at the namespace's
level).  ``missing`` is reference-only, ``extra`` is target-only and
``common`` is both; all three are sorted so reports are stable no matter how
the YAML was ordered.  Fields are diffed in two levels: only schemas common
to both sides are opened, then their ``properties`` key sets are compared.
Parameters defined on both sides are also checked for location and schema
type drift.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from openapi_documents import ReferenceSet, StructuredDocument, by_name
from openapi_layout import TARGET_LAYOUTS, Namespace

TYPE_MISMATCH = "type"
NULLABLE_MISMATCH = "nullable"
MISSING_EXAMPLE = "example"

PARAMETER_ATTRIBUTES = (("in",), ("schema", "type"), ("schema", "items", "type"))
REQUIRED_PARAMETER_PROPS = ("in", "name", "schema")


@dataclass(frozen=True)
class Diff:
    namespace: Namespace
    missing: tuple[str, ...] = ()
    extra: tuple[str, ...] = ()
    common: tuple[str, ...] = ()
    owner: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.missing and not self.extra


@dataclass(frozen=True)
class FieldMismatch:
    kind: str
    schema: str
    field: str
    reference: Any
    target: Any


@dataclass(frozen=True)
class ParameterMismatch:
    parameter: str
    attribute: tuple[str, ...]
    reference: Any
    target: Any

    @property
    def label(self) -> str:
        return f"{self.parameter}.{'.'.join(self.attribute)}"


@dataclass(frozen=True)
class IncompleteParameter:
    parameter: str
    document: str
    missing: tuple[str, ...]


@dataclass
class DiffReport:
    schemas: Diff
    parameters: Diff
    paths: Diff
    fields: list[Diff]
    mismatches: list[FieldMismatch]
    parameter_mismatches: list[ParameterMismatch] = field(default_factory=list)
    incomplete_parameters: list[IncompleteParameter] = field(default_factory=list)
    reference_sections: dict[Namespace, dict] = field(default_factory=dict)
    target_sections: dict[Namespace, dict] = field(default_factory=dict)
    source_labels: dict[Namespace, str] = field(default_factory=dict)

    def by_namespace(self) -> dict[Namespace, list[Diff]]:
        return {
            Namespace.SCHEMAS: [self.schemas],
            Namespace.PARAMETERS: [self.parameters],
            Namespace.PATHS: [self.paths],
            Namespace.FIELDS: [diff for diff in self.fields if not diff.is_empty],
        }

    def mismatches_of(self, kind: str) -> list[FieldMismatch]:
        return [m for m in self.mismatches if m.kind == kind]

    @property
    def is_empty(self) -> bool:
        return all(diff.is_empty for diffs in self.by_namespace().values() for diff in diffs)


def diff_names(
    namespace: Namespace, reference: Any, target: Any, owner: str | None = None
) -> Diff:
    ref_names = set(by_name(reference))
    tgt_names = set(by_name(target))
    return Diff(
        namespace,
        missing=tuple(sorted(ref_names - tgt_names)),
        extra=tuple(sorted(tgt_names - ref_names)),
        common=tuple(sorted(ref_names & tgt_names)),
        owner=owner,
    )


def diff_fields(reference_schemas: Any, target_schemas: Any) -> list[Diff]:
    ref_schemas = by_name(reference_schemas)
    tgt_schemas = by_name(target_schemas)
    diffs = []
    for name in diff_names(Namespace.SCHEMAS, ref_schemas, tgt_schemas).common:
        ref_schema, tgt_schema = ref_schemas[name], tgt_schemas[name]
        if not isinstance(ref_schema, dict) or not isinstance(tgt_schema, dict):
            continue
        diffs.append(
            diff_names(
                Namespace.FIELDS,
                ref_schema.get("properties"),
                tgt_schema.get("properties"),
                owner=name,
            )
        )
    return diffs


def compare_fields(field_diff: Diff, reference_props: Any, target_props: Any) -> list[FieldMismatch]:
    ref_props = by_name(reference_props)
    tgt_props = by_name(target_props)
    schema = field_diff.owner or ""
    found = []
    for name in field_diff.common:
        ref_field, tgt_field = ref_props.get(name), tgt_props.get(name)
        if not isinstance(ref_field, dict) or not isinstance(tgt_field, dict):
            continue
        ref_type, tgt_type = ref_field.get("type"), tgt_field.get("type")
        if ref_type and tgt_type and ref_type != tgt_type:
            found.append(FieldMismatch(TYPE_MISMATCH, schema, name, ref_type, tgt_type))
        ref_nullable, tgt_nullable = ref_field.get("nullable"), tgt_field.get("nullable")
        if ref_nullable is not None and tgt_nullable is not None and ref_nullable != tgt_nullable:
            found.append(FieldMismatch(NULLABLE_MISMATCH, schema, name, ref_nullable, tgt_nullable))
        if "example" in ref_field and "example" not in tgt_field:
            found.append(FieldMismatch(MISSING_EXAMPLE, schema, name, ref_field["example"], None))
    return found


def _attribute(definition: dict, keys: tuple[str, ...]) -> Any:
    node: Any = definition
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def compare_parameters(
    parameter_diff: Diff, reference_params: Any, target_params: Any
) -> list[ParameterMismatch]:
    """Location and schema-type drift of parameters defined on both sides.

    Only attributes the reference sets are compared; a target that lacks one
    of them is reported with ``target=None``.  ``$ref`` aliases are skipped.
    """
    ref_params = by_name(reference_params)
    tgt_params = by_name(target_params)
    found = []
    for name in parameter_diff.common:
        ref_param, tgt_param = ref_params.get(name), tgt_params.get(name)
        if not isinstance(ref_param, dict) or not isinstance(tgt_param, dict):
            continue
        if "$ref" in ref_param or "$ref" in tgt_param:
            continue
        for keys in PARAMETER_ATTRIBUTES:
            wanted = _attribute(ref_param, keys)
            actual = _attribute(tgt_param, keys)
            if wanted is not None and wanted != actual:
                found.append(ParameterMismatch(name, keys, wanted, actual))
    return found


def incomplete_parameters(params: Any, document: str) -> list[IncompleteParameter]:
    found = []
    for name, definition in sorted(by_name(params).items()):
        if not isinstance(definition, dict) or "$ref" in definition:
            continue
        missing = tuple(prop for prop in REQUIRED_PARAMETER_PROPS if prop not in definition)
        if missing:
            found.append(IncompleteParameter(name, document, missing))
    return found


def target_sections(target: StructuredDocument) -> dict[Namespace, dict]:
    return {
        namespace: target.section(*TARGET_LAYOUTS[namespace].section)
        for namespace in (Namespace.SCHEMAS, Namespace.PARAMETERS, Namespace.PATHS)
    }


def compare(reference: ReferenceSet, target: StructuredDocument) -> DiffReport:
    ref = {
        namespace: reference.source(namespace).entries
        for namespace in (Namespace.SCHEMAS, Namespace.PARAMETERS, Namespace.PATHS)
    }
    tgt = target_sections(target)
    parameters = diff_names(
        Namespace.PARAMETERS, ref[Namespace.PARAMETERS], tgt[Namespace.PARAMETERS]
    )
    fields = diff_fields(ref[Namespace.SCHEMAS], tgt[Namespace.SCHEMAS])
    mismatches: list[FieldMismatch] = []
    for field_diff in fields:
        owner = field_diff.owner or ""
        mismatches.extend(
            compare_fields(
                field_diff,
                ref[Namespace.SCHEMAS][owner].get("properties"),
                tgt[Namespace.SCHEMAS][owner].get("properties"),
            )
        )
    return DiffReport(
        schemas=diff_names(Namespace.SCHEMAS, ref[Namespace.SCHEMAS], tgt[Namespace.SCHEMAS]),
        parameters=parameters,
        paths=diff_names(Namespace.PATHS, ref[Namespace.PATHS], tgt[Namespace.PATHS]),
        fields=fields,
        mismatches=mismatches,
        parameter_mismatches=compare_parameters(
            parameters, ref[Namespace.PARAMETERS], tgt[Namespace.PARAMETERS]
        ),
        incomplete_parameters=incomplete_parameters(ref[Namespace.PARAMETERS], "reference")
        + incomplete_parameters(tgt[Namespace.PARAMETERS], "target"),
        reference_sections=ref,
        target_sections=tgt,
        source_labels={
            namespace: reference.source(namespace).label
            for namespace in (Namespace.SCHEMAS, Namespace.PARAMETERS, Namespace.PATHS)
        },
    )

#!/usr/bin/env python3
"""
Final validation of a reconciled target document.

Issues fail the run: parity gaps left after patching, field type and
parameter drift, incomplete target parameters, operation drift on shared
paths, external or dangling pointers, missing required sections and OpenAPI
schema-of-schemas violations.  Warnings are reported only: target-only
entities (removal is opt-in), incomplete reference parameters and tag drift.
Requires: PyYAML, openapi-spec-validator
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from openapi_spec_validator import OpenAPIV30SpecValidator, OpenAPIV31SpecValidator

from openapi_diff import TYPE_MISMATCH, DiffReport, compare
from openapi_documents import ReferenceSet, StructuredDocument, by_name
from openapi_errors import ValidationError
from openapi_layout import HTTP_METHODS, Namespace
from openapi_refs import component_names, dangling_references, find_external_references
from sync_utils import format_names

REQUIRED_SECTIONS = ("openapi", "info", "paths", "components")
REQUIRED_COMPONENTS = ("schemas", "parameters")


@dataclass
class ValidationReport:
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


def parity_findings(report: DiffReport) -> ValidationReport:
    found = ValidationReport()
    for namespace in (Namespace.SCHEMAS, Namespace.PARAMETERS, Namespace.PATHS):
        diff = report.by_namespace()[namespace][0]
        if diff.missing:
            found.issues.append(
                f"missing {len(diff.missing)} {namespace.value}: {format_names(diff.missing)}"
            )
        if diff.extra:
            found.warnings.append(
                f"extra {len(diff.extra)} {namespace.value}: {format_names(diff.extra)}"
            )
    for diff in report.fields:
        if diff.missing:
            found.issues.append(f"{diff.owner}: missing fields {format_names(diff.missing)}")
        if diff.extra:
            found.warnings.append(f"{diff.owner}: extra fields {format_names(diff.extra)}")
    for mismatch in report.mismatches_of(TYPE_MISMATCH):
        found.issues.append(
            f"type mismatch: {mismatch.schema}.{mismatch.field} "
            f"(reference: {mismatch.reference}, target: {mismatch.target})"
        )
    for drift in report.parameter_mismatches:
        found.issues.append(
            f"parameter mismatch: {drift.label} (reference: {drift.reference}, target: {drift.target})"
        )
    for incomplete in report.incomplete_parameters:
        message = (
            f"{incomplete.document} parameter {incomplete.parameter} "
            f"lacks {', '.join(incomplete.missing)}"
        )
        if incomplete.document == "target":
            found.issues.append(message)
        else:
            found.warnings.append(message)
    return found


def _operations(path_item: Any) -> list[str]:
    return sorted(key for key in by_name(path_item) if key.lower() in HTTP_METHODS)


def operation_findings(reference_paths: dict[str, Any], target_paths: dict[str, Any]) -> list[str]:
    issues = []
    for path in sorted(set(reference_paths) & set(target_paths)):
        ref_ops = _operations(reference_paths[path])
        target_ops = _operations(target_paths[path])
        missing = sorted(set(ref_ops) - set(target_ops))
        extra = sorted(set(target_ops) - set(ref_ops))
        if missing:
            issues.append(f"{path}: missing operations {', '.join(missing)}")
        if extra:
            issues.append(f"{path}: extra operations {', '.join(extra)}")
    return issues


def _first_tags(paths: dict[str, Any]) -> dict[str, str]:
    tags = {}
    for path, item in paths.items():
        for method, operation in by_name(item).items():
            if method.lower() not in HTTP_METHODS or not isinstance(operation, dict):
                continue
            values = operation.get("tags")
            if isinstance(values, list) and values:
                tags[f"{method.upper()} {path}"] = str(values[0])
    return tags


def tag_findings(reference_paths: dict[str, Any], target_paths: dict[str, Any]) -> list[str]:
    ref_tags = _first_tags(reference_paths)
    target_tags = _first_tags(target_paths)
    warnings = []
    for operation in sorted(set(ref_tags) & set(target_tags)):
        if ref_tags[operation] != target_tags[operation]:
            warnings.append(
                f"{operation}: tag {target_tags[operation]!r} differs from "
                f"reference {ref_tags[operation]!r}"
            )
    missing = sorted(set(ref_tags.values()) - set(target_tags.values()))
    if missing:
        warnings.append(f"tags never used by the target: {format_names(missing)}")
    return warnings


def structure_findings(data: dict[str, Any]) -> list[str]:
    issues = []
    missing = [section for section in REQUIRED_SECTIONS if not data.get(section)]
    if missing:
        issues.append(f"missing required sections: {', '.join(missing)}")
    components = by_name(data.get("components"))
    missing = [section for section in REQUIRED_COMPONENTS if not components.get(section)]
    if missing:
        issues.append(f"missing component sections: {', '.join(missing)}")
    return issues


def _stringify_keys(node: Any) -> Any:
    if isinstance(node, dict):
        return {str(key): _stringify_keys(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_stringify_keys(item) for item in node]
    return node


def schema_violations(data: dict[str, Any]) -> list[str]:
    """Every OpenAPI schema-of-schemas violation in the document."""
    spec = _stringify_keys(data)
    version = str(spec.get("openapi", ""))
    validator_cls = OpenAPIV31SpecValidator if version.startswith("3.1") else OpenAPIV30SpecValidator
    violations = []
    for error in validator_cls(spec).iter_errors():
        location = "/".join(str(part) for part in error.absolute_path)
        violations.append(f"{location or '<root>'}: {error.message}")
    return violations


def validate(
    reference: ReferenceSet, target: StructuredDocument, check_schema: bool = True
) -> ValidationReport:
    found = parity_findings(compare(reference, target))
    reference_paths = reference.paths.entries
    target_paths = target.section("paths")
    found.issues.extend(operation_findings(reference_paths, target_paths))

    external = find_external_references(target.text)
    if external:
        found.issues.append(
            f"{len(external)} external reference(s) remain: "
            + format_names(sorted({ref.pointer for ref in external}))
        )
    dangling = dangling_references(target.text, component_names(target))
    if dangling:
        found.issues.append(f"dangling internal references: {format_names(dangling)}")

    found.issues.extend(structure_findings(target.data))
    found.warnings.extend(tag_findings(reference_paths, target_paths))

    if check_schema:
        if external or dangling:
            found.warnings.append("OpenAPI schema validation skipped until references resolve")
        else:
            found.issues.extend(schema_violations(target.data))
    return found


def require_valid(report: ValidationReport) -> None:
    if report.issues:
        raise ValidationError(report.issues)

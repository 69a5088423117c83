#!/usr/bin/env python3
"""
Diff artifact (JSON) and narrative report (Markdown) for one comparison.

The artifact keeps the key set the reconciliation workflow has always used,
plus two parameter drift keys, so downstream tooling can read it unchanged.
Every "missing" record carries enough of the reference definition (type,
example, description, nullability) to review an Add without opening the
reference.  The Markdown header embeds a content hash of both documents
instead of a timestamp to avoid churn.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from openapi_diff import (
    MISSING_EXAMPLE,
    NULLABLE_MISMATCH,
    TYPE_MISMATCH,
    Diff,
    DiffReport,
    FieldMismatch,
    IncompleteParameter,
    ParameterMismatch,
)
from openapi_documents import by_name
from openapi_errors import NotFoundError, ParseError
from openapi_layout import Namespace
from sync_utils import format_names, text_sha256, write_if_changed

ARTIFACT_KEYS = (
    "missing_schemas",
    "missing_fields_in_schemas",
    "missing_parameters",
    "missing_paths",
    "field_type_mismatches",
    "missing_examples",
    "nullable_mismatches",
    "extra_schemas_in_mx",
    "extra_fields_in_schemas",
    "extra_parameters_in_mx",
    "extra_paths_in_mx",
    "parameter_mismatches",
    "incomplete_parameters",
)
FIELD_KEYS = ("missing_fields_in_schemas", "extra_fields_in_schemas")

BREAKING_KEYS = (
    "extra_schemas_in_mx",
    "extra_fields_in_schemas",
    "extra_parameters_in_mx",
    "extra_paths_in_mx",
    "field_type_mismatches",
    "parameter_mismatches",
)
NON_BREAKING_KEYS = (
    "missing_schemas",
    "missing_fields_in_schemas",
    "missing_parameters",
    "missing_paths",
    "missing_examples",
    "nullable_mismatches",
    "incomplete_parameters",
)

TITLES = {
    "missing_schemas": "Missing schemas",
    "missing_fields_in_schemas": "Missing fields in existing schemas",
    "missing_parameters": "Missing parameters",
    "missing_paths": "Missing paths",
    "field_type_mismatches": "Field type mismatches",
    "missing_examples": "Missing examples",
    "nullable_mismatches": "Nullable flag mismatches",
    "extra_schemas_in_mx": "Extra schemas (removal candidates)",
    "extra_fields_in_schemas": "Extra fields (removal candidates)",
    "extra_parameters_in_mx": "Extra parameters (removal candidates)",
    "extra_paths_in_mx": "Extra paths (removal candidates)",
    "parameter_mismatches": "Parameter location and schema mismatches",
    "incomplete_parameters": "Parameters missing required properties",
}

ARTIFACT_LABEL = "<diff artifact>"
NAME_KEYS = ("name", "path")
TYPE_KEYS = ("reference_type", "docs_v2_type")
TARGET_TYPE_KEYS = ("target_type", "mx_platform_type")


def _definition(section: dict[str, Any], name: str) -> dict:
    value = section.get(name)
    return value if isinstance(value, dict) else {}


def _property_names(definition: dict) -> list[str]:
    return list(by_name(definition.get("properties")))


def _schema_record(section: dict[str, Any], name: str, source: str | None = None) -> dict:
    record: dict[str, Any] = {"name": name}
    if source:
        record["source"] = source
    record["fields"] = _property_names(_definition(section, name))
    return record


def _parameter_record(section: dict[str, Any], name: str, detailed: bool) -> dict:
    definition = _definition(section, name)
    record = {
        "name": name,
        "in": definition.get("in", "unknown"),
        "required": definition.get("required"),
    }
    if detailed:
        record["description"] = definition.get("description")
    return record


def _path_record(section: dict[str, Any], name: str) -> dict:
    return {"name": name, "methods": list(by_name(section.get(name)))}


def _field_record(props: dict[str, Any], name: str, detailed: bool) -> dict:
    definition = _definition(props, name)
    record = {
        "field": name,
        "type": definition.get("type", "unknown"),
        "example": definition.get("example"),
    }
    if detailed:
        record["nullable"] = definition.get("nullable")
        record["description"] = definition.get("description")
    return record


def _mismatch_record(mismatch: FieldMismatch) -> dict:
    record = {"schema": mismatch.schema, "field": mismatch.field}
    if mismatch.kind == MISSING_EXAMPLE:
        record["reference_example"] = mismatch.reference
    else:
        record[f"reference_{mismatch.kind}"] = mismatch.reference
        record[f"target_{mismatch.kind}"] = mismatch.target
    return record


def _parameter_mismatch_record(mismatch: ParameterMismatch) -> dict:
    return {
        "name": mismatch.parameter,
        "attribute": ".".join(mismatch.attribute),
        "reference_value": mismatch.reference,
        "target_value": mismatch.target,
    }


def _incomplete_record(incomplete: IncompleteParameter) -> dict:
    return {
        "name": incomplete.parameter,
        "document": incomplete.document,
        "missing": list(incomplete.missing),
    }


def build_artifact(report: DiffReport) -> dict[str, Any]:
    """Render a DiffReport as the JSON-ready diff artifact."""
    ref = report.reference_sections
    tgt = report.target_sections
    ref_schemas = ref.get(Namespace.SCHEMAS, {})
    tgt_schemas = tgt.get(Namespace.SCHEMAS, {})
    artifact: dict[str, Any] = {key: [] for key in ARTIFACT_KEYS}
    artifact["missing_fields_in_schemas"] = {}
    artifact["extra_fields_in_schemas"] = {}

    source = report.source_labels.get(Namespace.SCHEMAS)
    artifact["missing_schemas"] = [
        _schema_record(ref_schemas, name, source) for name in report.schemas.missing
    ]
    artifact["extra_schemas_in_mx"] = [
        _schema_record(tgt_schemas, name) for name in report.schemas.extra
    ]
    for field_diff in report.fields:
        owner = field_diff.owner or ""
        ref_props = by_name(_definition(ref_schemas, owner).get("properties"))
        tgt_props = by_name(_definition(tgt_schemas, owner).get("properties"))
        if field_diff.missing:
            artifact["missing_fields_in_schemas"][owner] = [
                _field_record(ref_props, name, detailed=True) for name in field_diff.missing
            ]
        if field_diff.extra:
            artifact["extra_fields_in_schemas"][owner] = [
                _field_record(tgt_props, name, detailed=False) for name in field_diff.extra
            ]
    artifact["missing_parameters"] = [
        _parameter_record(ref.get(Namespace.PARAMETERS, {}), name, detailed=True)
        for name in report.parameters.missing
    ]
    artifact["extra_parameters_in_mx"] = [
        _parameter_record(tgt.get(Namespace.PARAMETERS, {}), name, detailed=False)
        for name in report.parameters.extra
    ]
    artifact["missing_paths"] = [
        _path_record(ref.get(Namespace.PATHS, {}), name) for name in report.paths.missing
    ]
    artifact["extra_paths_in_mx"] = [
        _path_record(tgt.get(Namespace.PATHS, {}), name) for name in report.paths.extra
    ]
    for kind, key in (
        (TYPE_MISMATCH, "field_type_mismatches"),
        (MISSING_EXAMPLE, "missing_examples"),
        (NULLABLE_MISMATCH, "nullable_mismatches"),
    ):
        artifact[key] = [_mismatch_record(m) for m in report.mismatches_of(kind)]
    artifact["parameter_mismatches"] = [
        _parameter_mismatch_record(m) for m in report.parameter_mismatches
    ]
    artifact["incomplete_parameters"] = [
        _incomplete_record(p) for p in report.incomplete_parameters
    ]
    return artifact


def dump_artifact(artifact: dict[str, Any]) -> str:
    return json.dumps(artifact, indent=2, ensure_ascii=False, default=str) + "\n"


def load_artifact(path: Path) -> dict[str, Any]:
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise NotFoundError(f"missing diff artifact: {path}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ParseError(str(path), str(exc)) from exc
    if not isinstance(data, dict):
        raise ParseError(str(path), "expected a JSON object at the root")
    for key in ARTIFACT_KEYS:
        data.setdefault(key, {} if key in FIELD_KEYS else [])
    return data


def _first(record: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in record:
            return record[key]
    return None


def _require(record: Any, keys: tuple[str, ...], what: str) -> dict:
    if not isinstance(record, dict) or not all(key in record for key in keys):
        raise ParseError(ARTIFACT_LABEL, f"{what} record without {', '.join(keys)}: {record!r}")
    return record


def _names(records: list[dict], keys: tuple[str, ...] = NAME_KEYS) -> tuple:
    """Sorted entity names; records written by older compare runs key paths by ``path``."""
    names = []
    for record in records:
        key = next((key for key in keys if isinstance(record, dict) and key in record), None)
        if key is None:
            raise ParseError(ARTIFACT_LABEL, f"record without {' or '.join(keys)}: {record!r}")
        names.append(str(record[key]))
    return tuple(sorted(names))


def diffs_from_artifact(artifact: dict[str, Any]) -> dict[Namespace, list[Diff]]:
    """Rebuild per-namespace diffs (missing and extra only) from a stored artifact."""
    missing_fields = artifact.get("missing_fields_in_schemas") or {}
    extra_fields = artifact.get("extra_fields_in_schemas") or {}
    fields = [
        Diff(
            Namespace.FIELDS,
            missing=_names(missing_fields.get(owner, []), ("field",)),
            extra=_names(extra_fields.get(owner, []), ("field",)),
            owner=owner,
        )
        for owner in sorted(set(missing_fields) | set(extra_fields))
    ]
    return {
        Namespace.SCHEMAS: [
            Diff(
                Namespace.SCHEMAS,
                missing=_names(artifact.get("missing_schemas", [])),
                extra=_names(artifact.get("extra_schemas_in_mx", [])),
            )
        ],
        Namespace.PARAMETERS: [
            Diff(
                Namespace.PARAMETERS,
                missing=_names(artifact.get("missing_parameters", [])),
                extra=_names(artifact.get("extra_parameters_in_mx", [])),
            )
        ],
        Namespace.PATHS: [
            Diff(
                Namespace.PATHS,
                missing=_names(artifact.get("missing_paths", [])),
                extra=_names(artifact.get("extra_paths_in_mx", [])),
            )
        ],
        Namespace.FIELDS: [diff for diff in fields if not diff.is_empty],
    }


def mismatches_from_artifact(artifact: dict[str, Any]) -> list[FieldMismatch]:
    mismatches = []
    for record in artifact.get("field_type_mismatches", []):
        record = _require(record, ("schema", "field"), "type mismatch")
        mismatches.append(
            FieldMismatch(
                TYPE_MISMATCH,
                record["schema"],
                record["field"],
                _first(record, TYPE_KEYS),
                _first(record, TARGET_TYPE_KEYS),
            )
        )
    return mismatches


def parameter_mismatches_from_artifact(artifact: dict[str, Any]) -> list[ParameterMismatch]:
    mismatches = []
    for record in artifact.get("parameter_mismatches", []):
        record = _require(record, ("name", "attribute"), "parameter mismatch")
        mismatches.append(
            ParameterMismatch(
                str(record["name"]),
                tuple(str(record["attribute"]).split(".")),
                record.get("reference_value"),
                record.get("target_value"),
            )
        )
    return mismatches


def summary_counts(artifact: dict[str, Any]) -> dict[str, int]:
    counts = {}
    for key in ARTIFACT_KEYS:
        value = artifact.get(key) or []
        if isinstance(value, dict):
            counts[key] = sum(len(records) for records in value.values())
        else:
            counts[key] = len(value)
    return counts


def _cell(value: Any, limit: int = 100) -> str:
    text = str(value).replace("\n", " ").replace("|", "\\|")
    return text if len(text) <= limit else text[:limit] + "..."


def _section_lines(key: str, value: Any) -> list[str]:
    lines = [f"### {TITLES[key]}", ""]
    if key in FIELD_KEYS:
        for schema in sorted(value):
            records = value[schema]
            lines.append(f"- **{schema}** ({len(records)})")
            for record in records:
                detail = f"`{record.get('type')}`"
                if record.get("example") is not None:
                    detail += f", example `{_cell(record['example'])}`"
                if record.get("nullable"):
                    detail += ", nullable"
                lines.append(f"  - `{record['field']}`: {detail}")
    elif key in ("field_type_mismatches", "nullable_mismatches"):
        kind = "type" if key == "field_type_mismatches" else "nullable"
        for record in value:
            lines.append(
                f"- `{record['schema']}.{record['field']}`: reference "
                f"`{record.get('reference_' + kind)}`, target `{record.get('target_' + kind)}`"
            )
    elif key == "missing_examples":
        for record in value:
            lines.append(
                f"- `{record['schema']}.{record['field']}`: "
                f"`{_cell(record.get('reference_example'))}`"
            )
    elif key in ("missing_paths", "extra_paths_in_mx"):
        for record in value:
            methods = ", ".join(str(m).upper() for m in record.get("methods", []))
            lines.append(f"- `{record['name']}` ({methods or 'no operations'})")
    elif key in ("missing_parameters", "extra_parameters_in_mx"):
        for record in value:
            required = " required" if record.get("required") else ""
            line = f"- `{record['name']}` (in {record.get('in')}{required})"
            if record.get("description"):
                line += f": {_cell(record['description'])}"
            lines.append(line)
    elif key == "parameter_mismatches":
        for record in value:
            lines.append(
                f"- `{record['name']}.{record['attribute']}`: reference "
                f"`{record.get('reference_value')}`, target `{record.get('target_value')}`"
            )
    elif key == "incomplete_parameters":
        for record in value:
            missing = ", ".join(record.get("missing", []))
            lines.append(f"- `{record['name']}` ({record.get('document')}): lacks {missing}")
    else:
        for record in value:
            line = f"- `{record['name']}`"
            if record.get("fields"):
                line += f": {format_names(record['fields'])}"
            lines.append(line)
    lines.append("")
    return lines


def render_markdown(
    artifact: dict[str, Any],
    reference_text: str = "",
    target_text: str = "",
    title: str = "OpenAPI Reconciliation Report",
) -> str:
    counts = summary_counts(artifact)
    digest = text_sha256(reference_text, target_text)[:12]
    lines = [f"# {title}", ""]
    lines.append(f"_Generated from reference and target (sha256:{digest}). Do not edit._")
    lines.append("")
    lines.append("| Difference | Count |")
    lines.append("|---|---|")
    for key in ARTIFACT_KEYS:
        lines.append(f"| {TITLES[key]} | {counts[key]} |")
    lines.append("")
    if not any(counts.values()):
        lines.append("No differences.")
        return "\n".join(lines) + "\n"
    for heading, keys in (("Breaking", BREAKING_KEYS), ("Non-breaking", NON_BREAKING_KEYS)):
        present = [key for key in keys if counts[key]]
        if not present:
            continue
        lines.append(f"## {heading}")
        lines.append("")
        for key in present:
            lines.extend(_section_lines(key, artifact[key]))
    return "\n".join(lines).rstrip("\n") + "\n"


def write_reports(
    artifact: dict[str, Any],
    diff_path: Path,
    reference_text: str = "",
    target_text: str = "",
    markdown_path: Path | None = None,
) -> list[Path]:
    """Write the JSON artifact and its Markdown companion; return the paths that changed."""
    diff_path = Path(diff_path)
    markdown_path = Path(markdown_path) if markdown_path else diff_path.with_suffix(".md")
    written = []
    if write_if_changed(diff_path, dump_artifact(artifact)):
        written.append(diff_path)
    if write_if_changed(markdown_path, render_markdown(artifact, reference_text, target_text)):
        written.append(markdown_path)
    return written

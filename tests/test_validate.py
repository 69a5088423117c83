import pytest

from openapi_diff import Diff, DiffReport, IncompleteParameter
from openapi_documents import load_document, load_reference, parse_text
from openapi_errors import ValidationError
from openapi_layout import Namespace
from openapi_validate import (
    parity_findings,
    require_valid,
    schema_violations,
    structure_findings,
    tag_findings,
    validate,
)
from openapi_sync import main


def test_drifted_target_has_issues(reference_set, target_doc):
    report = validate(reference_set, target_doc)
    assert not report.ok
    joined = "\n".join(report.issues)
    assert "missing 2 schemas: Foo, Wrapper" in joined
    assert "type mismatch: Qux.amount" in joined
    assert "external reference(s) remain" in joined
    assert any("extra 1 schemas: Bar" in w for w in report.warnings)
    with pytest.raises(ValidationError) as excinfo:
        require_valid(report)
    assert excinfo.value.violations == report.issues


def test_reconciled_target_passes(workspace, reference_set):
    args = [str(workspace["reference"]), str(workspace["target"]), str(workspace["diff"])]
    assert main(["run", *args, "--remove", "--fix-types", "--sync-tags", "--no-validate"]) == 0
    report = validate(reference_set, load_document(workspace["target"]))
    assert report.issues == []
    assert report.warnings == []


def test_structure_and_schema_violations():
    data = parse_text("openapi: 3.0.0\npaths: {}\n")
    assert structure_findings(data) == [
        "missing required sections: info, paths, components",
        "missing component sections: schemas, parameters",
    ]
    assert any("info" in violation for violation in schema_violations(data))


def test_tag_drift_is_a_warning():
    reference = {"/a": {"get": {"tags": ["Accounts"]}}}
    target = {"/a": {"get": {"tags": ["Platform"]}}}
    warnings = tag_findings(reference, target)
    assert warnings[0] == "GET /a: tag 'Platform' differs from reference 'Accounts'"
    assert tag_findings(reference, reference) == []


def test_parameter_drift_is_an_issue(workspace):
    parameters = workspace["parameters"]
    parameters.write_text(
        parameters.read_text(encoding="utf-8").replace(
            "    type: integer\nrecord_count", "    type: string\nrecord_count"
        ),
        encoding="utf-8",
    )
    report = validate(load_reference(workspace["reference"]), load_document(workspace["target"]))
    assert "parameter mismatch: page.schema.type (reference: string, target: integer)" in (
        report.issues
    )


def test_incomplete_parameters_fail_only_on_the_target_side():
    report = DiffReport(
        Diff(Namespace.SCHEMAS),
        Diff(Namespace.PARAMETERS),
        Diff(Namespace.PATHS),
        fields=[],
        mismatches=[],
        incomplete_parameters=[
            IncompleteParameter("a", "target", ("in",)),
            IncompleteParameter("b", "reference", ("schema",)),
        ],
    )
    found = parity_findings(report)
    assert found.issues == ["target parameter a lacks in"]
    assert found.warnings == ["reference parameter b lacks schema"]

from openapi_documents import parse_text
from openapi_sync import main, parse_args


def cli(workspace, command, *extra):
    args = [str(workspace["reference"]), str(workspace["target"]), str(workspace["diff"])]
    return main([command, *args, *extra]) if command else main([*args, *extra])


def test_default_command_is_run(monkeypatch, tmp_path):
    monkeypatch.setenv("OPENAPI_SYNC_ROOT", str(tmp_path))
    args = parse_args(["--remove"])
    assert args.command == "run"
    assert args.remove
    assert args.func.__name__ == "cmd_run"


def test_compare_writes_artifacts_without_touching_target(workspace):
    before = workspace["target"].read_bytes()
    assert cli(workspace, "compare") == 0
    assert workspace["diff"].exists()
    assert workspace["diff"].with_suffix(".md").exists()
    assert workspace["target"].read_bytes() == before


def test_run_without_remove_keeps_extras(workspace):
    assert cli(workspace, "run", "--fix-types") == 0
    data = parse_text(workspace["target"].read_text(encoding="utf-8"))
    schemas = data["components"]["schemas"]
    assert {"Foo", "Wrapper", "Bar", "Qux"} <= set(schemas)
    assert set(schemas["Qux"]["properties"]) == {"amount", "currency", "label", "legacy_code"}
    assert schemas["Qux"]["properties"]["amount"]["type"] == "number"
    assert "/legacy" in data["paths"]
    text = workspace["target"].read_text(encoding="utf-8")
    assert "models.yaml#" not in text
    assert "$ref: '#/components/schemas/Qux'" in text
    assert "# hand-maintained, keep formatting\n" in text
    assert 'summary: "List accounts"' in text


def test_validation_failure_exits_non_zero(workspace):
    # the type mismatch on Qux.amount is left in place
    assert cli(workspace, "run") == 1


def test_full_pipeline_is_stable(workspace):
    flags = ("--remove", "--fix-types", "--sync-tags")
    assert cli(workspace, None, *flags) == 0
    first = workspace["target"].read_bytes()
    assert cli(workspace, None, *flags) == 0
    assert workspace["target"].read_bytes() == first
    data = parse_text(first.decode("utf-8"))
    assert "Bar" not in data["components"]["schemas"]
    assert sorted(data["paths"]) == ["/accounts", "/users"]
    assert data["paths"]["/accounts"]["get"]["parameters"] == [
        {"$ref": "#/components/parameters/page"}
    ]


def test_unresolved_reference_leaves_target_unchanged(workspace):
    target = workspace["target"]
    target.write_text(
        target.read_text(encoding="utf-8").replace("models.yaml#/Qux", "models.yaml#/Missing"),
        encoding="utf-8",
    )
    before = target.read_bytes()
    assert cli(workspace, "internalize") == 1
    assert target.read_bytes() == before


def test_stages_can_run_one_at_a_time(workspace):
    assert cli(workspace, "compare") == 0
    assert cli(workspace, "add", "--namespace", "schemas") == 0
    data = parse_text(workspace["target"].read_text(encoding="utf-8"))
    assert {"Foo", "Wrapper"} <= set(data["components"]["schemas"])
    assert "record_count" not in data["components"]["parameters"]
    assert cli(workspace, "remove", "--namespace", "paths") == 0
    data = parse_text(workspace["target"].read_text(encoding="utf-8"))
    assert "/legacy" not in data["paths"]
    assert "Bar" in data["components"]["schemas"]
    assert workspace["target"].with_name("openapi.yml.backup").exists()


def test_missing_target_is_fatal(workspace):
    workspace["target"].unlink()
    assert cli(workspace, "compare") == 1


def test_summary_lists_applied_items(workspace, capsys):
    assert cli(workspace, "add", "--namespace", "schemas") == 0
    out = capsys.readouterr().out
    assert "summary: 2 applied" in out
    assert "  applied add schemas: Foo\n" in out
    assert "  applied add schemas: Wrapper\n" in out


def test_quiet_summary_only_lists_failures(workspace, capsys):
    assert cli(workspace, "add", "--namespace", "schemas", "--quiet") == 0
    assert capsys.readouterr().out == ""


def drift_page_parameter(workspace):
    parameters = workspace["parameters"]
    parameters.write_text(
        parameters.read_text(encoding="utf-8").replace(
            "    type: integer\nrecord_count", "    type: string\nrecord_count"
        ),
        encoding="utf-8",
    )


def test_fix_parameters_command(workspace):
    drift_page_parameter(workspace)
    before = workspace["target"].read_text(encoding="utf-8")
    assert cli(workspace, "fix-parameters") == 0
    after = workspace["target"].read_text(encoding="utf-8")
    assert after == before.replace(
        "      in: query\n      required: false\n      schema:\n        type: integer\n",
        "      in: query\n      required: false\n      schema:\n        type: string\n",
    )
    assert cli(workspace, "fix-parameters") == 0
    assert workspace["target"].read_text(encoding="utf-8") == after


def test_run_fixes_parameter_drift_only_when_asked(workspace):
    drift_page_parameter(workspace)
    flags = ("--remove", "--fix-types", "--sync-tags")
    assert cli(workspace, None, *flags) == 1
    assert cli(workspace, None, *flags, "--fix-parameters") == 0
    data = parse_text(workspace["target"].read_text(encoding="utf-8"))
    assert data["components"]["parameters"]["page"]["schema"] == {"type": "string"}

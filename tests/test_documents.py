import pytest

from openapi_documents import (
    DocumentHandle,
    load_reference,
    parse_text,
    read_text,
)
from openapi_errors import NotFoundError, ParseError
from openapi_layout import Namespace


def test_date_like_scalars_stay_strings():
    data = parse_text("created: 2016-10-13\nversion: 1.0\n")
    assert data["created"] == "2016-10-13"
    assert data["version"] == 1.0


def test_parse_errors_and_missing_files(tmp_path):
    with pytest.raises(ParseError):
        parse_text("key: [unclosed\n")
    with pytest.raises(ParseError):
        parse_text("- just\n- a list\n")
    assert parse_text("") == {}
    with pytest.raises(NotFoundError):
        read_text(tmp_path / "absent.yaml")


def test_read_text_keeps_line_endings(tmp_path):
    path = tmp_path / "crlf.yaml"
    path.write_bytes(b"a: 1\r\nb: 2\r\n")
    assert read_text(path) == "a: 1\r\nb: 2\r\n"


def test_flat_sources_are_found_beside_the_reference(reference_set):
    assert reference_set.schemas.label == "models.yaml"
    assert reference_set.parameters.label == "parameters.yaml"
    assert sorted(reference_set.schemas.entries) == ["Foo", "Qux", "Wrapper"]
    assert sorted(reference_set.source(Namespace.PATHS).entries) == ["/accounts", "/users"]
    fields = reference_set.source(Namespace.FIELDS)
    assert fields.layout.keys("Foo") == ("Foo", "properties")


def test_reference_without_flat_files_uses_its_components(tmp_path):
    root = tmp_path / "reference.yaml"
    root.write_text(
        "openapi: 3.0.0\ncomponents:\n  schemas:\n    Only:\n      type: string\n",
        encoding="utf-8",
    )
    reference = load_reference(root)
    assert list(reference.schemas.entries) == ["Only"]
    assert reference.schemas.layout.section == ("components", "schemas")
    assert reference.parameters.entries == {}


def test_transaction_restores_on_failure(workspace):
    handle = DocumentHandle(workspace["target"])
    before = handle.read()
    with pytest.raises(RuntimeError):
        with handle.transaction(backup=True):
            handle.write("broken: [\n")
            raise RuntimeError("stage failed")
    assert handle.read() == before
    assert handle.backup_path.read_text(encoding="utf-8") == before


def test_transaction_restores_unparseable_result(workspace):
    handle = DocumentHandle(workspace["target"])
    before = handle.read()
    with pytest.raises(ParseError):
        with handle.transaction():
            handle.write("broken: [\n")
    assert handle.read() == before
    assert not handle.backup_path.exists()

import pytest

from openapi_errors import UnresolvedReferenceError
from openapi_refs import (
    dangling_references,
    find_external_references,
    internalize,
    rewrite_local_references,
)

KNOWN = {"schemas": {"Baz", "Qux"}, "parameters": {"page"}}


def test_external_schema_pointer_becomes_internal():
    text = "schema:\n  $ref: './schemas/models.yaml#/Baz'\n"
    rewritten, counts = internalize(text, KNOWN)
    assert rewritten == "schema:\n  $ref: '#/components/schemas/Baz'\n"
    assert counts["schemas"] == 1
    assert find_external_references(rewritten) == []


def test_quote_style_and_parameter_namespace_are_kept():
    text = (
        'parameters:\n- $ref: "parameters.yaml#/page"\n'
        "schema:\n  $ref: ./schemas/models.yaml#/Qux\n"
    )
    rewritten, counts = internalize(text, KNOWN)
    assert '- $ref: "#/components/parameters/page"' in rewritten
    assert "$ref: '#/components/schemas/Qux'" in rewritten
    assert counts == {"parameters": 1, "schemas": 1}


def test_unresolved_pointer_aborts_without_changes():
    text = (
        "a:\n  $ref: './schemas/models.yaml#/Baz'\n"
        "b:\n  $ref: './schemas/models.yaml#/Missing'\n"
        "c:\n  $ref: './other.yaml#/Thing'\n"
    )
    with pytest.raises(UnresolvedReferenceError) as excinfo:
        internalize(text, KNOWN)
    assert excinfo.value.unresolved == ["./other.yaml#/Thing", "Missing"]
    assert "Missing" in str(excinfo.value)


def test_internal_pointers_are_left_alone():
    text = "$ref: '#/components/schemas/Baz'\n"
    assert find_external_references(text) == []
    assert internalize(text, KNOWN) == (text, {})


def test_local_flat_pointers_get_the_component_prefix():
    block = "    foo:\n      $ref: '#/Foo'\n    bar:\n      $ref: '#/components/schemas/Bar'\n"
    rewritten = rewrite_local_references(block, "#/components/schemas/")
    assert "$ref: '#/components/schemas/Foo'" in rewritten
    assert "$ref: '#/components/schemas/Bar'" in rewritten


def test_dangling_internal_pointers():
    text = "a:\n  $ref: '#/components/schemas/Baz'\nb:\n  $ref: '#/components/schemas/Gone'\n"
    assert dangling_references(text, KNOWN) == ["#/components/schemas/Gone"]

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "scripts"))

REFERENCE = """\
openapi: 3.0.0
info:
  title: Reference API
  version: '1.0'
paths:
  /accounts:
    get:
      tags:
      - Accounts
      summary: List accounts
      parameters:
      - $ref: '#/components/parameters/page'
      responses:
        '200':
          description: OK
  /users:
    get:
      tags:
      - Users
      summary: List users
      responses:
        '200':
          description: OK
components:
  schemas: {}
"""

MODELS = """\
Foo:
  type: object
  properties:
    a:
      type: string
      example: alpha
    b:
      type: integer
Qux:
  type: object
  properties:
    amount:
      type: number
    currency:
      type: string
      example: USD
    label:
      type: string
      example: hello
Wrapper:
  type: object
  properties:
    foo:
      $ref: '#/Foo'
"""

PARAMETERS = """\
page:
  name: page
  in: query
  required: false
  schema:
    type: integer
record_count:
  name: record_count
  in: query
  required: false
  schema:
    type: integer
"""

TARGET = """\
openapi: 3.0.0
info:
  title: Target API
  version: '1.0'
# hand-maintained, keep formatting
paths:
  /accounts:
    get:
      tags:
      - Platform
      summary: "List accounts"
      parameters:
      - name: page
        in: query
        required: false
        schema:
          type: integer
      responses:
        '200':
          description: OK
          content:
            application/json:
              schema:
                $ref: './schemas/models.yaml#/Qux'
  /legacy:
    get:
      tags:
      - Legacy
      responses:
        '200':
          description: OK
components:
  schemas:
    Bar:
      type: object
      properties:
        x:
          type: string
    Qux:
      type: object
      properties:
        amount:
          type: integer
        label:
          type: string
        legacy_code:
          type: string
  parameters:
    page:
      name: page
      in: query
      required: false
      schema:
        type: integer
  securitySchemes:
    basicAuth:
      type: http
      scheme: basic
"""


@pytest.fixture
def workspace(tmp_path):
    """Reference set (root, models.yaml, parameters.yaml) plus a drifted target."""
    openapi = tmp_path / "openapi"
    openapi.mkdir()
    files = {
        "reference": openapi / "reference.yaml",
        "models": openapi / "models.yaml",
        "parameters": openapi / "parameters.yaml",
        "target": openapi / "openapi.yml",
        "diff": tmp_path / "tmp" / "comparison_diff.json",
    }
    files["reference"].write_text(REFERENCE, encoding="utf-8")
    files["models"].write_text(MODELS, encoding="utf-8")
    files["parameters"].write_text(PARAMETERS, encoding="utf-8")
    files["target"].write_text(TARGET, encoding="utf-8")
    return files


@pytest.fixture
def reference_set(workspace):
    from openapi_documents import load_reference

    return load_reference(workspace["reference"])


@pytest.fixture
def target_doc(workspace):
    from openapi_documents import load_document

    return load_document(workspace["target"])

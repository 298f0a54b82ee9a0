import json
from typing import Any, List, Optional, Tuple

import httpx

from oasbench.bench.types import OperationDetails, ResponseDef, Schema, ValidationError

_KIND_CHECKS = {
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
}


class ResponseValidator:
    """
    Classifies a response against the operation's declared responses.

    Only the top level is checked: status code, declared headers, content
    type, the body's coarse JSON kind and the required keys of an object
    body. Nested properties, array items and formats are not validated.
    """

    def validate(
        self, response: Optional[httpx.Response], details: Optional[OperationDetails]
    ) -> List[ValidationError]:
        if response is None:
            return [ValidationError("response", "response is missing")]
        if details is None:
            return [ValidationError("operation", "operation details are missing")]

        status = response.status_code
        definition = match_response(details, status)
        if definition is None:
            return [
                ValidationError(
                    "status_code",
                    f"unexpected status code {status}, not defined in OpenAPI spec",
                )
            ]

        errors: List[ValidationError] = []

        for name in definition.headers:
            if not response.headers.get(name):
                errors.append(ValidationError(f"header.{name}", f"missing required header: {name}"))

        content_type = response.headers.get("content-type", "")
        if definition.content:
            declared = [media.split(";")[0].strip() for media in definition.content]
            if content_type and not any(media in content_type for media in declared):
                errors.append(ValidationError("content_type", f"unexpected content type: {content_type}"))

            if "json" in content_type:
                schema = _json_schema(definition)
                if schema is not None:
                    errors.extend(self._validate_body(response.content, schema))

        return errors

    def _validate_body(self, raw: bytes, schema: Schema) -> List[ValidationError]:
        try:
            body: Any = json.loads(raw)
        except ValueError as e:
            return [ValidationError("body", f"failed to parse JSON response: {e}")]

        errors: List[ValidationError] = []
        kind = schema.primary_type
        check = _KIND_CHECKS.get(kind)
        if check is not None and not check(body):
            expected = "number" if kind == "integer" else kind
            errors.append(ValidationError("body", f"expected {expected} type, got {_kind_of(body)}"))

        if kind == "object" and isinstance(body, dict):
            for name in schema.required:
                if name not in body:
                    errors.append(ValidationError(f"body.{name}", f"missing required field: {name}"))

        return errors


def match_response(details: OperationDetails, status: int) -> Optional[ResponseDef]:
    """Exact code, then ``default``, then the ``Nxx`` range."""
    responses = details.responses
    exact = responses.get(str(status))
    if exact is not None:
        return exact
    if "default" in responses:
        return responses["default"]
    status_range = f"{status // 100}xx"
    for key, definition in responses.items():
        if key.lower() == status_range:
            return definition
    return None


def _json_schema(definition: ResponseDef) -> Optional[Schema]:
    for media_type, schema in definition.content.items():
        if "json" in media_type:
            return schema
    return None


def _kind_of(value: Any) -> str:
    kinds: Tuple[Tuple[type, str], ...] = (
        (bool, "boolean"),
        (dict, "object"),
        (list, "array"),
        (str, "string"),
        ((int, float), "number"),
    )
    if value is None:
        return "null"
    for types, name in kinds:
        if isinstance(value, types):
            return name
    return type(value).__name__

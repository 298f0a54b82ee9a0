import json
import logging
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

from oasbench.bench.data_gen import DataGenerator, stringify
from oasbench.bench.types import (
    BODY_METHODS,
    BuiltRequest,
    OperationDetails,
    Parameter,
    RequestBodyDef,
    Schema,
    Value,
)
from oasbench.exceptions import BodyGenerationError, OasBenchError, ParameterGenerationError, RequestBuildError

logger = logging.getLogger(__name__)

USER_AGENT = "oas-bench/1.0"
FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"


class RequestBuilder:
    """Builds one concrete request per call; every call draws fresh values."""

    def __init__(self, generator: Optional[DataGenerator] = None) -> None:
        self.generator = generator or DataGenerator()

    def build(self, details: Optional[OperationDetails], server_url: str) -> BuiltRequest:
        if details is None:
            raise RequestBuildError("operation details are missing")

        method = details.method.upper()

        # 1) path template
        path = details.path
        for param in self._located(details, "path"):
            value = self._param_value(param)
            path = path.replace("{" + param.name + "}", quote(value, safe=""))

        # 2) base url
        url = server_url.rstrip("/") + path

        # 3) query string, only when something was declared
        query: List[Tuple[str, str]] = [(p.name, self._param_value(p)) for p in self._located(details, "query")]
        if query:
            url += "?" + urlencode(query)

        # 4) body
        body: Optional[bytes] = None
        headers: Dict[str, str] = {}
        if details.request_body is not None and method in BODY_METHODS:
            body, content_type = self._body(details.request_body)
            headers["Content-Type"] = content_type

        # 5) defaults
        headers["Accept"] = "application/json"
        headers["User-Agent"] = USER_AGENT

        # 6) header parameters override defaults
        for param in self._located(details, "header"):
            headers[param.name] = self._param_value(param)

        cookies = [f"{p.name}={self._param_value(p)}" for p in self._located(details, "cookie")]
        if cookies:
            headers["Cookie"] = "; ".join(cookies)

        logger.debug("built %s %s (%d body bytes)", method, url, len(body) if body else 0)
        return BuiltRequest(method=method, url=url, headers=headers, body=body)

    @staticmethod
    def _located(details: OperationDetails, location: str) -> List[Parameter]:
        return [p for p in details.parameters if p is not None and p.location == location]

    def _param_value(self, param: Parameter) -> str:
        try:
            value = self.generator.generate_parameter(param)
        except OasBenchError as e:
            raise ParameterGenerationError(param.name, param.location, e) from e
        if param.location in ("header", "cookie") and not value.isascii():
            # HTTP header values go on the wire as ASCII
            raise ParameterGenerationError(param.name, param.location, ValueError(f"non-ASCII value {value!r}"))
        return value

    def _body(self, body_def: RequestBodyDef) -> Tuple[bytes, str]:
        if not body_def.content:
            raise BodyGenerationError("no content defined in request body")

        content_type, schema = pick_media_type(body_def.content)
        if schema is None:
            raise BodyGenerationError("no schema found in request body")

        try:
            value = self.generator.generate(schema)
        except OasBenchError as e:
            raise BodyGenerationError(str(e)) from e

        try:
            encoded = encode_body(value, content_type)
        except (TypeError, ValueError) as e:
            raise BodyGenerationError(f"cannot encode {content_type} body: {e}") from e
        return encoded, content_type or "application/json"


def pick_media_type(content: Dict[str, Optional[Schema]]) -> Tuple[str, Optional[Schema]]:
    """JSON media type when declared with a schema, else the first one."""
    for media_type, schema in content.items():
        if "json" in media_type and schema is not None:
            return media_type, schema
    media_type = next(iter(content))
    return media_type, content[media_type]


def encode_body(value: Value, content_type: str) -> bytes:
    if content_type.startswith(FORM_MEDIA_TYPE) and isinstance(value, dict):
        return urlencode([(k, stringify(v)) for k, v in value.items()]).encode("utf-8")
    if content_type.startswith("text/") and isinstance(value, str):
        return value.encode("utf-8")
    return json.dumps(value).encode("utf-8")

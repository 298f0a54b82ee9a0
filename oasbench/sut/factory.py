import logging
import re
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Set

import yaml

from oasbench.bench.types import (
    Operation,
    OperationDetails,
    Parameter,
    RequestBodyDef,
    ResponseDef,
    Schema,
)
from oasbench.exceptions import OperationNotFoundError, SpecLoadError

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
DEFAULT_SERVER_URL = "http://localhost"
MAX_REF_HOPS = 32

_SERVER_VAR_RE = re.compile(r"\{([^}]+)\}")


class MetadataProvider(Protocol):
    def operations(self, server_url: str) -> List[Operation]: ...

    def operation_details(self, path: str, method: str) -> OperationDetails: ...


class SpecLoader:
    def load(self, path) -> "OpenAPIDocument":
        spec_path = Path(path)
        if not spec_path.exists():
            raise SpecLoadError(f"OpenAPI file not found: {spec_path}")
        try:
            raw = yaml.safe_load(spec_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise SpecLoadError(f"failed to parse OpenAPI document {spec_path}: {e}") from e
        doc = OpenAPIDocument(raw)
        logger.info("loaded %s: %d paths", spec_path, len(doc.paths))
        return doc


class OpenAPIDocument:
    """
    Navigable view over an OpenAPI 3.x document.

    Local references are resolved while converting. Each referenced schema is
    converted once and shared, so a schema that refers to itself becomes a
    cyclic object graph instead of an endless expansion.
    """

    def __init__(self, raw: Any):
        if not isinstance(raw, dict):
            raise SpecLoadError("OpenAPI document must be a mapping")
        version = str(raw.get("openapi", ""))
        if not version.startswith("3"):
            if "swagger" in raw:
                raise SpecLoadError(f"Swagger {raw['swagger']} documents are not supported, convert to OpenAPI 3")
            raise SpecLoadError("missing or unsupported 'openapi' version")
        self.raw = raw
        self.paths: Dict[str, Any] = raw.get("paths") or {}
        self._schema_cache: Dict[str, Schema] = {}
        self._filling: Set[int] = set()

    # servers / operations

    def server_urls(self) -> List[str]:
        urls = []
        for server in self.raw.get("servers") or []:
            if not isinstance(server, dict) or not server.get("url"):
                continue
            url = _expand_server_variables(str(server["url"]), server.get("variables") or {})
            urls.append(url.rstrip("/"))
        return urls or [DEFAULT_SERVER_URL]

    def operations(self, server_url: str) -> List[Operation]:
        ops = []
        for path, item in self.paths.items():
            if not isinstance(item, dict):
                continue
            for method in HTTP_METHODS:
                op = item.get(method.lower())
                if not isinstance(op, dict):
                    continue
                ops.append(
                    Operation(
                        path=path,
                        method=method,
                        operation_id=op.get("operationId") or "",
                        tags=tuple(op.get("tags") or ()),
                        server_url=server_url,
                        full_path=server_url + path,
                    )
                )
        return ops

    def operation_details(self, path: str, method: str) -> OperationDetails:
        method = method.upper()
        item = self.paths.get(path)
        if not isinstance(item, dict) or method not in HTTP_METHODS:
            raise OperationNotFoundError(path, method)
        op = item.get(method.lower())
        if not isinstance(op, dict):
            raise OperationNotFoundError(path, method)

        details = OperationDetails(path=path, method=method, operation_id=op.get("operationId") or "")
        details.parameters = self._parameters(item.get("parameters") or [], op.get("parameters") or [])

        if op.get("requestBody") is not None:
            body = self._deref(op["requestBody"]) or {}
            details.request_body = RequestBodyDef(
                content=self._content(body.get("content")),
                required=bool(body.get("required", False)),
            )

        for code, response in (op.get("responses") or {}).items():
            resolved = self._deref(response) or {}
            details.responses[str(code)] = ResponseDef(
                description=resolved.get("description") or "",
                headers=list((resolved.get("headers") or {}).keys()),
                content=self._content(resolved.get("content")),
            )
        return details

    # conversion

    def _parameters(self, path_level: Iterable[Any], op_level: Iterable[Any]) -> List[Parameter]:
        merged: Dict[tuple, Parameter] = {}
        for node in list(path_level) + list(op_level):
            resolved = self._deref(node)
            if not resolved or "name" not in resolved:
                continue
            schema = self._schema(resolved["schema"]) if "schema" in resolved else None
            if schema is None and resolved.get("content"):
                schema = next(iter(self._content(resolved["content"]).values()), None)
            param = Parameter(
                name=str(resolved["name"]),
                location=str(resolved.get("in", "query")),
                schema=schema,
                required=bool(resolved.get("required", False)),
            )
            # operation-level wins over path-level on the same name + location
            merged[(param.name, param.location)] = param
        return list(merged.values())

    def _content(self, content: Any) -> Dict[str, Optional[Schema]]:
        out: Dict[str, Optional[Schema]] = {}
        for media_type, media in (content or {}).items():
            node = media.get("schema") if isinstance(media, dict) else None
            out[str(media_type)] = self._schema(node) if node is not None else None
        return out

    def _schema(self, node: Any) -> Optional[Schema]:
        if not isinstance(node, dict):
            return None
        ref = node.get("$ref")
        if ref is None:
            schema = Schema()
            self._fill(schema, node)
            return schema

        cached = self._schema_cache.get(ref)
        if cached is not None:
            return cached
        target = self._deref(node)
        if target is None:
            logger.warning("unresolved schema reference %s", ref)
            return Schema(unresolved_ref=ref)

        # registered before filling so a self reference finds the placeholder
        schema = Schema()
        self._schema_cache[ref] = schema
        self._fill(schema, target)
        return schema

    def _fill(self, schema: Schema, node: Dict[str, Any]) -> None:
        if id(node) in self._filling:
            return
        self._filling.add(id(node))
        try:
            for part in node.get("allOf") or []:
                resolved = self._deref(part)
                if resolved:
                    self._fill(schema, resolved)
            for combinator in ("oneOf", "anyOf"):
                choices = node.get(combinator) or []
                if choices:
                    first = self._deref(choices[0])
                    if first:
                        self._fill(schema, first)

            kind = node.get("type")
            if isinstance(kind, str):
                schema.type = [kind]
            elif isinstance(kind, list):
                schema.type = [k for k in kind if k != "null"] + [k for k in kind if k == "null"]

            if "format" in node:
                schema.format = str(node["format"])
            if node.get("enum"):
                schema.enum = [_plain(v) for v in node["enum"]]
            if "pattern" in node:
                schema.pattern = str(node["pattern"])
            for key, attr in (
                ("minLength", "min_length"),
                ("maxLength", "max_length"),
                ("minItems", "min_items"),
                ("maxItems", "max_items"),
            ):
                if node.get(key) is not None:
                    setattr(schema, attr, _number(node, key, int))
            if node.get("minimum") is not None:
                schema.minimum = _number(node, "minimum", float)
            if node.get("maximum") is not None:
                schema.maximum = _number(node, "maximum", float)

            if "items" in node:
                schema.items = self._schema(node["items"])
            for name, sub in (node.get("properties") or {}).items():
                schema.properties[str(name)] = self._schema(sub)
            for name in node.get("required") or []:
                if name not in schema.required:
                    schema.required.append(name)

            if node.get("example") is not None:
                schema.example = _plain(node["example"])
            elif isinstance(node.get("examples"), list) and node["examples"]:
                schema.example = _plain(node["examples"][0])
            if node.get("default") is not None:
                schema.default = _plain(node["default"])

            if not schema.type:
                if schema.properties:
                    schema.type = ["object"]
                elif schema.items is not None:
                    schema.type = ["array"]
        finally:
            self._filling.discard(id(node))

    def _deref(self, node: Any) -> Optional[Dict[str, Any]]:
        """Follow a chain of local $ref pointers; None when it cannot be resolved."""
        hops = 0
        while isinstance(node, dict) and "$ref" in node:
            if hops >= MAX_REF_HOPS:
                return None
            node = self._pointer(str(node["$ref"]))
            hops += 1
        return node if isinstance(node, dict) else None

    def _pointer(self, ref: str) -> Any:
        if not ref.startswith("#/"):
            return None
        node: Any = self.raw
        for token in ref[2:].split("/"):
            token = token.replace("~1", "/").replace("~0", "~")
            if not isinstance(node, dict) or token not in node:
                return None
            node = node[token]
        return node


def filter_operations(operations: Sequence[Operation], text: str = "", tags: Sequence[str] = ()) -> List[Operation]:
    """Substring match on path or operation id, then any-of tag match."""
    selected = []
    for op in operations:
        if text and text not in op.path and text not in op.operation_id:
            continue
        if tags and not set(tags) & set(op.tags):
            continue
        selected.append(op)
    return selected


def _expand_server_variables(url: str, variables: Dict[str, Any]) -> str:
    def substitute(match):
        var = variables.get(match.group(1)) or {}
        return str(var.get("default", match.group(0))) if isinstance(var, dict) else match.group(0)

    return _SERVER_VAR_RE.sub(substitute, url)


def _number(node: Dict[str, Any], key: str, kind):
    value = node[key]
    if isinstance(value, bool):
        raise SpecLoadError(f"schema keyword {key} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise SpecLoadError(f"schema keyword {key} must be a number, got {value!r}") from e


def _plain(value: Any) -> Any:
    """YAML timestamps (unquoted 2024-01-15) back to the ISO strings they were written as."""
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value

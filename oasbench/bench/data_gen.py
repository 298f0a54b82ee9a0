import json
import logging
import math
import random
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Set

from oasbench.bench.types import Parameter, Schema, Value
from oasbench.exceptions import GenerationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 12

FIXED_UUID = str(uuid.UUID("123e4567-e89b-12d3-a456-426614174000"))
PATTERN_PLACEHOLDER = "test-string"
FORMAT_PLACEHOLDER = "test-value"
FILLER_CHAR = "a"


class DataGenerator:
    """
    Turns a schema into a synthetic value.

    Precedence: example > default > type rule > format rule > "".
    Recursion is guarded twice: a schema already on the current generation
    path (a cycle) yields ``cycle_value``, and so does anything nested deeper
    than ``max_depth``.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        cycle_value: Value = None,
    ) -> None:
        self.seed = seed
        self.rng = random.Random(seed)
        self.max_depth = max_depth
        self.cycle_value = cycle_value

    def generate(self, schema: Optional[Schema]) -> Value:
        if schema is None:
            raise GenerationError("schema is missing")
        if schema.unresolved_ref:
            raise GenerationError(f"unresolved reference {schema.unresolved_ref}")
        return self._generate(schema, set(), 0)

    def generate_parameter(self, param: Parameter) -> str:
        if param.schema is None:
            return "test"
        return stringify(self.generate(param.schema))

    def _generate(self, schema: Schema, path: Set[int], depth: int) -> Value:
        if schema.example is not None:
            return schema.example
        if schema.default is not None:
            return schema.default

        if id(schema) in path or depth > self.max_depth:
            logger.debug("recursion guard hit at depth %d", depth)
            return self.cycle_value

        path.add(id(schema))
        try:
            kind = schema.primary_type
            if kind == "string":
                return self._string(schema)
            if kind in ("integer", "number"):
                return self._number(schema)
            if kind == "boolean":
                return True
            if kind == "array":
                return self._array(schema, path, depth)
            if kind == "object":
                return self._object(schema, path, depth)

            if schema.format:
                return self.from_format(schema.format)
            return ""
        finally:
            path.discard(id(schema))

    def _string(self, schema: Schema) -> str:
        if schema.format:
            formatted = self.from_format(schema.format)
            if isinstance(formatted, str):
                return formatted

        if schema.enum:
            return schema.enum[0]

        # no regex synthesis, any pattern gets the same placeholder
        if schema.pattern:
            return PATTERN_PLACEHOLDER

        min_length = schema.min_length if schema.min_length is not None else 0
        max_length = schema.max_length if schema.max_length is not None else 10

        length = min_length
        if max_length > min_length:
            length = self.rng.randint(min_length, max_length)
        if length == 0:
            length = 5
        return FILLER_CHAR * length

    def _number(self, schema: Schema):
        low = schema.minimum
        high = schema.maximum
        # missing bounds default to 0..100, widened only when that would invert the range
        if low is None:
            low = 0.0 if high is None or high >= 0 else high - 100.0
        if high is None:
            high = 100.0 if low <= 100 else low + 100.0
        if high < low:
            high = low

        if schema.primary_type == "integer":
            lo, hi = math.ceil(low), math.floor(high)
            if lo > hi:
                logger.debug("no integer in [%s, %s], using %d", low, high, lo)
                return lo
            return self.rng.randint(lo, hi)
        return low + self.rng.random() * (high - low)

    def _array(self, schema: Schema, path: Set[int], depth: int) -> List[Value]:
        min_items = schema.min_items if schema.min_items is not None else 0
        max_items = schema.max_items if schema.max_items is not None else 3

        count = min_items
        if max_items > min_items:
            count = self.rng.randint(min_items, max_items)
        if count == 0:
            count = 1

        item_schema = schema.items
        if item_schema is None or item_schema.unresolved_ref:
            return ["item"] * count
        return [self._generate(item_schema, path, depth + 1) for _ in range(count)]

    def _object(self, schema: Schema, path: Set[int], depth: int) -> Dict[str, Value]:
        result: Dict[str, Value] = {}
        required = set(schema.required)
        for name, prop in schema.properties.items():
            if name in required or self.rng.random() < 0.5:
                if prop is None or prop.unresolved_ref:
                    continue
                result[name] = self._generate(prop, path, depth + 1)
        return result

    def from_format(self, fmt: str) -> Any:
        if fmt == "date":
            return date.today().isoformat()
        if fmt == "date-time":
            return datetime.now(timezone.utc).isoformat(timespec="seconds")
        if fmt == "email":
            return "test@example.com"
        if fmt == "uri":
            return "https://example.com"
        if fmt == "uuid":
            return FIXED_UUID
        if fmt == "int32":
            return self.rng.randint(0, 2**31 - 1)
        if fmt == "int64":
            return self.rng.randint(0, 2**63 - 1)
        if fmt in ("float", "double"):
            return self.rng.random()
        return FORMAT_PLACEHOLDER


def stringify(value: Value) -> str:
    """Render a value the way it appears in a path, query, header or cookie."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(stringify(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"))
    return str(value)

import json
from datetime import date
from urllib.parse import parse_qs, urlsplit

import pytest

from oasbench.bench.data_gen import FIXED_UUID, DataGenerator
from oasbench.bench.types import OperationDetails, Parameter, RequestBodyDef, Schema
from oasbench.exceptions import BodyGenerationError, ParameterGenerationError, RequestBuildError
from oasbench.sut.request_builder import RequestBuilder, encode_body, pick_media_type


def _param(name, location, **schema):
    return Parameter(name=name, location=location, schema=Schema(**schema) if schema else None)


def test_path_parameters_are_escaped():
    details = OperationDetails(
        path="/files/{name}",
        method="get",
        parameters=[_param("name", "path", type=["string"], example="a b/c")],
    )
    request = RequestBuilder().build(details, "http://api.test/")
    assert request.method == "GET"
    assert request.url == "http://api.test/files/a%20b%2Fc"


def test_no_query_string_without_query_parameters():
    request = RequestBuilder().build(OperationDetails(path="/ping", method="GET"), "http://api.test")
    assert request.url == "http://api.test/ping"
    assert request.body is None


def test_query_parameters():
    details = OperationDetails(
        path="/pets",
        method="GET",
        parameters=[
            _param("limit", "query", type=["integer"], example=10),
            _param("status", "query", type=["string"], enum=["sold"]),
        ],
    )
    url = urlsplit(RequestBuilder().build(details, "http://api.test").url)
    assert url.path == "/pets"
    assert parse_qs(url.query) == {"limit": ["10"], "status": ["sold"]}


def test_default_headers_and_header_override():
    details = OperationDetails(
        path="/x",
        method="GET",
        parameters=[
            _param("Accept", "header", type=["string"], example="text/plain"),
            _param("X-Trace", "header", type=["string"], example="t-1"),
        ],
    )
    headers = RequestBuilder().build(details, "http://api.test").headers
    assert headers["Accept"] == "text/plain"
    assert headers["X-Trace"] == "t-1"
    assert headers["User-Agent"] == "oas-bench/1.0"


def test_cookie_parameters_join_into_one_header():
    details = OperationDetails(
        path="/x",
        method="GET",
        parameters=[
            _param("session", "cookie", type=["string"], example="abc"),
            _param("theme", "cookie", type=["string"], example="dark"),
        ],
    )
    headers = RequestBuilder().build(details, "http://api.test").headers
    assert headers["Cookie"] == "session=abc; theme=dark"


def test_json_body_for_post():
    body_schema = Schema(
        type=["object"],
        properties={"name": Schema(type=["string"], example="rex")},
        required=["name"],
    )
    details = OperationDetails(
        path="/pets",
        method="POST",
        request_body=RequestBodyDef(content={"application/json": body_schema}, required=True),
    )
    request = RequestBuilder().build(details, "http://api.test")
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.body) == {"name": "rex"}


def test_body_ignored_for_get():
    details = OperationDetails(
        path="/pets",
        method="GET",
        request_body=RequestBodyDef(content={"application/json": Schema(type=["object"])}),
    )
    request = RequestBuilder().build(details, "http://api.test")
    assert request.body is None
    assert "Content-Type" not in request.headers


def test_body_without_content_fails():
    details = OperationDetails(path="/pets", method="PUT", request_body=RequestBodyDef())
    with pytest.raises(BodyGenerationError) as exc:
        RequestBuilder().build(details, "http://api.test")
    assert str(exc.value) == "failed to generate request body: no content defined in request body"


def test_body_without_schema_fails():
    details = OperationDetails(
        path="/pets", method="PATCH", request_body=RequestBodyDef(content={"application/json": None})
    )
    with pytest.raises(BodyGenerationError, match="no schema found"):
        RequestBuilder().build(details, "http://api.test")


def test_parameter_failure_names_the_parameter():
    details = OperationDetails(
        path="/pets",
        method="GET",
        parameters=[Parameter(name="limit", location="query", schema=Schema(unresolved_ref="#/x"))],
    )
    with pytest.raises(ParameterGenerationError) as exc:
        RequestBuilder().build(details, "http://api.test")
    assert exc.value.name == "limit"
    assert str(exc.value).startswith("failed to generate query parameter limit:")


def test_missing_details():
    with pytest.raises(RequestBuildError):
        RequestBuilder().build(None, "http://api.test")


def test_each_build_draws_fresh_values():
    details = OperationDetails(
        path="/items",
        method="GET",
        parameters=[_param("n", "query", type=["integer"], minimum=0, maximum=1_000_000)],
    )
    builder = RequestBuilder(DataGenerator(seed=42))
    urls = {builder.build(details, "http://api.test").url for _ in range(10)}
    assert len(urls) > 1


def test_petstore_operation(petstore):
    details = petstore.operation_details("/pets/{petId}", "GET")
    request = RequestBuilder().build(details, "http://api.test")
    assert request.url == f"http://api.test/pets/{FIXED_UUID}"
    assert request.headers["X-Request-Id"] == "req-1"
    assert request.headers["Cookie"] == "session=abc"


def test_pick_media_type():
    json_schema = Schema(type=["object"])
    assert pick_media_type({"text/plain": Schema(), "application/json": json_schema}) == (
        "application/json",
        json_schema,
    )
    text = Schema(type=["string"])
    assert pick_media_type({"text/plain": text, "application/json": None}) == ("text/plain", text)


def test_encode_body():
    assert encode_body({"a": 1, "b": True}, "application/x-www-form-urlencoded") == b"a=1&b=true"
    assert encode_body("hello", "text/plain") == b"hello"
    assert json.loads(encode_body([1, 2], "application/json")) == [1, 2]


def test_non_ascii_header_value_is_rejected():
    details = OperationDetails(
        path="/x",
        method="GET",
        parameters=[_param("X-Place", "header", type=["string"], example="café")],
    )
    with pytest.raises(ParameterGenerationError) as exc:
        RequestBuilder().build(details, "http://api.test")
    assert exc.value.location == "header"
    assert "non-ASCII" in str(exc.value)


def test_non_ascii_query_value_is_percent_encoded():
    details = OperationDetails(
        path="/x",
        method="GET",
        parameters=[_param("place", "query", type=["string"], example="café")],
    )
    assert RequestBuilder().build(details, "http://api.test").url == "http://api.test/x?place=caf%C3%A9"


def test_unserializable_body_value_is_a_build_error():
    details = OperationDetails(
        path="/events",
        method="POST",
        request_body=RequestBodyDef(content={"application/json": Schema(type=["string"], example=date(2024, 1, 15))}),
    )
    with pytest.raises(BodyGenerationError, match="cannot encode application/json body"):
        RequestBuilder().build(details, "http://api.test")

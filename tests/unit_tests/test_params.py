"""Unit tests for parameter helpers."""

import os
import sys

# Add the project root to the path to import modules
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.append(str(PROJECT_ROOT))

import json

import pytest

from api_cache.core.exceptions import ValidationError
from api_cache.utils.params import canonical_json, normalize_params, summarize_params, validate_identifier


def nested(depth):
    value = "leaf"
    for _ in range(depth):
        value = {"level": value}
    return value


@pytest.mark.parametrize("identifier", ["demo", "test-client", "open_ai", "1234567890", "A-b_C"])
def test_validate_identifier_accepts_constrained_charset(identifier):
    assert validate_identifier(identifier) == identifier


@pytest.mark.parametrize("identifier", ["", "api.client.v1", "open ai", "chinese-天气-api", "über-api", "!@#$%^&*()"])
def test_validate_identifier_rejects_other_characters(identifier):
    with pytest.raises(ValidationError):
        validate_identifier(identifier)


def test_normalize_params_sorts_nested_keys():
    assert normalize_params({"b": 2, "a": {"d": 4, "c": 3}}) == {"a": {"c": 3, "d": 4}, "b": 2}
    assert list(normalize_params({"b": 2, "a": 1})) == ["a", "b"]


def test_normalize_params_keeps_list_order_and_scalars():
    params = {"list": [3, 1, 2], "none": None, "flag": False, "zero": 0, "float": 1.5, "text": ""}
    normalized = normalize_params(params)
    assert normalized["list"] == [3, 1, 2]
    assert normalized["none"] is None
    assert normalized["flag"] is False
    assert normalized["zero"] == 0


def test_canonical_json_distinguishes_scalar_types():
    encodings = {canonical_json({"v": value}) for value in (1, "1", True, None, 1.5, "true")}
    assert len(encodings) == 6


def test_canonical_json_is_order_independent():
    assert canonical_json({"age": 25, "name": "John"}) == canonical_json({"name": "John", "age": 25})


def test_normalize_params_rejects_objects():
    with pytest.raises(ValidationError):
        normalize_params({"obj": object()})
    with pytest.raises(ValidationError):
        normalize_params({"callable": lambda: None})


def test_normalize_params_depth_limit():
    assert normalize_params(nested(19)) == nested(19)
    with pytest.raises(ValidationError):
        normalize_params(nested(21))


def test_summarize_params_truncates_long_strings():
    summary = summarize_params({"query": "a" * 200})
    assert summary == '{"query":"' + "a" * 100 + '..."}'


def test_summarize_params_drops_nulls_and_keeps_types():
    summary = summarize_params({"string": "test", "int": 123, "bool": True, "null": None, "array": {"key": "value"}})
    assert json.loads(summary) == {"array": '{"key":"value"}', "bool": True, "int": 123, "string": "test"}


def test_summarize_params_flattens_single_task_list():
    summary = summarize_params([{"keyword": "test", "location_code": 2840}])
    assert summary == '{"keyword":"test","location_code":2840}'


def test_summarize_params_empty():
    assert summarize_params([]) == "[]"
    assert summarize_params({}) == "{}"


def test_summarize_params_pretty():
    assert summarize_params({"key": "value"}, pretty=True) == '{\n    "key": "value"\n}'


def test_normalize_params_rejects_keys_colliding_as_strings():
    with pytest.raises(ValidationError):
        normalize_params({1: "a", "1": "b"})
    with pytest.raises(ValidationError):
        normalize_params({"outer": {True: 1, "True": 2}})
    assert normalize_params({1: "a", 2: "b"}) == {"1": "a", "2": "b"}

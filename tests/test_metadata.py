"""Pin metadata coercion tests."""

import math
from datetime import datetime

from evidvault.services.ipfs.metadata import coerce_metadata_value, sanitize_metadata


def test_scalars_are_kept():
    assert coerce_metadata_value("case-42") == "case-42"
    assert coerce_metadata_value(7) == 7
    assert coerce_metadata_value(1.5) == 1.5


def test_bool_becomes_string_not_int():
    assert coerce_metadata_value(True) == "true"
    assert coerce_metadata_value(False) == "false"


def test_non_finite_floats_are_stringified():
    assert coerce_metadata_value(math.nan) == "nan"
    assert coerce_metadata_value(math.inf) == "inf"


def test_containers_become_compact_json():
    assert coerce_metadata_value({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
    assert coerce_metadata_value(("x", 1)) == '["x",1]'


def test_datetime_becomes_iso():
    assert coerce_metadata_value(datetime(2024, 5, 1, 12, 30)) == "2024-05-01T12:30:00"


def test_sanitize_drops_none_and_stringifies_keys():
    result = sanitize_metadata({"caseId": "c-1", 3: "three", "note": None, "urgent": True})

    assert result == {"caseId": "c-1", "3": "three", "urgent": "true"}


def test_sanitize_empty():
    assert sanitize_metadata(None) == {}
    assert sanitize_metadata({}) == {}

"""Change request version numbering."""

import pytest

from sop_manager.core.exceptions import ValidationError
from sop_manager.services.versioning import next_version_number, normalize_version, parse_version


def test_new_request_always_1_0():
    assert next_version_number("new-request") == "1.0"
    assert next_version_number("new-request", "major", ["7.3"]) == "1.0"


def test_minor_on_2_3():
    assert next_version_number("change-request", "minor", ["1.0", "2.3"]) == "2.4"


def test_major_on_2_3():
    assert next_version_number("change-request", "major", ["2.3", "1.9"]) == "3.0"


def test_minor_does_not_carry():
    assert next_version_number("change-request", "minor", ["2.9"]) == "2.10"


def test_numeric_not_lexical_ordering():
    assert next_version_number("change-request", "minor", ["2.9", "2.10"]) == "2.11"


def test_no_existing_versions():
    assert next_version_number("change-request", "minor", []) == "1.0"


def test_unparseable_versions_ignored():
    assert next_version_number("change-request", "major", ["draft", None, "1.2"]) == "2.0"


def test_change_type_required():
    with pytest.raises(ValidationError):
        next_version_number("change-request", None, ["1.0"])


@pytest.mark.parametrize("raw,expected", [
    ("2.3", (2, 3)),
    ("4", (4, 0)),
    ("1.10", (1, 10)),
    ("v1", None),
    ("", None),
    ("1.x", None),
])
def test_parse_version(raw, expected):
    assert parse_version(raw) == expected


@pytest.mark.parametrize("raw,expected", [("2.3", "2.3"), ("4", "4.0"), (" 1.10 ", "1.10")])
def test_normalize_version(raw, expected):
    assert normalize_version(raw) == expected


@pytest.mark.parametrize("raw", ["banana", "1.2.3", "v2", ""])
def test_normalize_version_rejects(raw):
    with pytest.raises(ValidationError) as exc:
        normalize_version(raw)
    assert "version_number" in exc.value.details

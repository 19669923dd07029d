"""Tests for composite resource identities."""

import pytest

from gitlab_provider.clients.exceptions import (
    InvalidIdentifierComponentError,
    MalformedIdentifierError,
)
from gitlab_provider.core.identifiers import (
    ID_DELIMITER,
    build_two_part_id,
    decode_id,
    encode_id,
    parse_int_component,
    parse_two_part_id,
)


class TestEncodeDecode:
    """Test joining and splitting identity parts."""

    def test_encode_joins_with_delimiter(self):
        assert ID_DELIMITER == ":"
        assert encode_id(["group/project", "17"]) == "group/project:17"

    def test_decode_splits_exactly(self):
        assert decode_id("group/project:17", 2) == ["group/project", "17"]

    def test_parts_are_not_trimmed_or_case_folded(self):
        identity = encode_id([" Group/Project ", "17"])

        assert identity == " Group/Project :17"
        assert decode_id(identity, 2) == [" Group/Project ", "17"]

    def test_empty_parts_survive(self):
        assert decode_id(encode_id(["", "x"]), 2) == ["", "x"]

    @pytest.mark.parametrize("identity", ["a:b:c", "abc", ""])
    def test_decode_rejects_wrong_part_count(self, identity):
        with pytest.raises(MalformedIdentifierError):
            decode_id(identity, 2)

    def test_encode_rejects_part_containing_delimiter(self):
        with pytest.raises(MalformedIdentifierError):
            encode_id(["a:b", "c"])

    def test_encode_rejects_no_parts(self):
        with pytest.raises(MalformedIdentifierError):
            encode_id([])

    def test_two_part_helpers(self):
        identity = build_two_part_id("1", "17")

        assert identity == "1:17"
        assert parse_two_part_id(identity) == ("1", "17")


class TestParseIntComponent:
    """Test numeric identity parts."""

    @pytest.mark.parametrize("value,expected", [("42", 42), ("0", 0), ("-3", -3)])
    def test_parses_integers(self, value, expected):
        assert parse_int_component(value, "topic id") == expected

    @pytest.mark.parametrize("value", ["12a", " 12", "1_000", "", "-", "4.2"])
    def test_rejects_non_integers(self, value):
        with pytest.raises(InvalidIdentifierComponentError) as exc_info:
            parse_int_component(value, "topic id")

        assert exc_info.value.field == "topic id"

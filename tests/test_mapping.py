"""
Unit tests for declarative attribute mapping.
"""

import re

import pytest

from config.settings import ConfigurationError
from ch_adapter.transform.mapping import map_attributes
from ch_adapter.transform.values import to_plain


def mapped(record, rules, **kwargs) -> dict:
    return to_plain(map_attributes(record, rules, **kwargs))


class TestBasicMapping:
    """Tests for renames, copies and nested targets."""

    def test_rename(self):
        """Test that a string rule renames the attribute."""
        assert mapped({"customer_id": "C1"}, {"customer_id": "origin_customer_id"}) == {"origin_customer_id": "C1"}

    def test_unmapped_pass_through_by_default(self):
        """Test that attributes without a rule are copied."""
        assert mapped({"a": 1, "b": 2}, {"a": "x"}) == {"x": 1, "b": 2}

    def test_unmapped_disallowed_drops_fields(self):
        """Test that unmapped attributes are dropped when not accepted."""
        rules = {"__accept_unmapped__": False, "keep": True}
        assert mapped({"keep": 1, "drop": 2, "other": 3}, rules) == {"keep": 1}

    def test_nested_target(self):
        """Test mapping into a nested object."""
        rules = {"home_city": ["customer_address_attributes", "city"], "fare": ["trip_result_attributes"]}
        result = mapped({"home_city": "Portland", "fare": "2.50"}, rules)

        assert result == {
            "customer_address_attributes": {"city": "Portland"},
            "trip_result_attributes": {"fare": "2.50"},
        }

    def test_empty_nested_value_creates_nothing(self):
        """Test that blank values do not create nested containers."""
        rules = {"home_city": ["customer_address_attributes", "city"]}
        assert mapped({"home_city": ""}, rules) == {}

    def test_rule_for_absent_input_still_runs(self):
        """Test that every rule is evaluated even when the input lacks it."""
        result = mapped({}, {"missing": "target"})
        assert result == {"target": None}

    def test_seed_is_kept(self):
        """Test that mapping builds on an existing output."""
        assert mapped({"a": 1}, {"a": "b"}, seed={"c": 2}) == {"c": 2, "b": 1}

    def test_output_is_case_insensitive(self):
        """Test that mapped attributes can be read in any case."""
        result = map_attributes({"Customer_Name": "Ada"}, {})
        assert result["customer_name"] == "Ada"

    def test_sub_ruleset(self):
        """Test selecting one section of a rule document."""
        document = {"trip_ticket": {"a": "b"}, "trip_claim": {"a": "c"}}
        assert mapped({"a": 1}, document, sub="trip_claim") == {"c": 1}

    def test_missing_sub_ruleset_applies_no_rules(self):
        """Test that a missing section passes everything through."""
        assert mapped({"a": 1}, {"trip_ticket": {"a": "b"}}, sub="trip_result") == {"a": 1}

    def test_rules_are_not_modified(self):
        """Test that applying a ruleset leaves it unchanged."""
        rules = {"abc": {"split": ["|", "a", "b"]}}
        mapped({"abc": "one|two"}, rules)
        assert rules == {"abc": {"split": ["|", "a", "b"]}}


class TestTransformations:
    """Tests for transformation commands."""

    def test_truncate(self):
        """Test truncating into a new attribute."""
        assert mapped({"abc": "123"}, {"abc": {"truncate": ["xyz", 2]}}) == {"xyz": "12"}

    def test_split(self):
        """Test splitting into several attributes."""
        assert mapped({"abc": "one|two"}, {"abc": {"split": ["|", "a", "b"]}}) == {"a": "one", "b": "two"}

    def test_split_on_whitespace(self):
        """Test that a single space splits on runs of whitespace."""
        result = mapped({"name": "Ada   King"}, {"name": {"split": [" ", "first", "last"]}})
        assert result == {"first": "Ada", "last": "King"}

    def test_split_missing_pieces_are_none(self):
        """Test that targets without a piece get None."""
        result = mapped({"abc": "one"}, {"abc": {"split": ["|", "a", "b"]}})
        assert result == {"a": "one", "b": None}

    def test_prepend(self):
        """Test prepending with a separator."""
        rules = {"last": "name", "first": {"prepend": ["name", " "]}}
        assert mapped({"last": "Lovelace", "first": "Ada"}, rules) == {"name": "Ada Lovelace"}

    def test_append(self):
        """Test appending with a separator."""
        rules = {"phone": True, "ext": {"append": ["phone", " x"]}}
        assert mapped({"phone": "555-1234", "ext": "12"}, rules) == {"phone": "555-1234 x12"}

    def test_and(self):
        """Test copying one value to several attributes."""
        result = mapped({"phone": "555"}, {"phone": {"and": ["day_phone", "evening_phone"]}})
        assert result == {"day_phone": "555", "evening_phone": "555"}

    def test_or_keeps_first_value(self):
        """Test that OR only fills an empty target."""
        rules = {"day": "phone", "evening": {"or": "phone"}}
        assert mapped({"day": "111", "evening": "222"}, rules) == {"phone": "111"}
        assert mapped({"day": None, "evening": "222"}, rules) == {"phone": "222"}

    def test_match(self):
        """Test extracting pattern matches."""
        rules = {
            "phone": {
                "match": [re.compile(r"\d{3}-\d{3}-\d{4}"), "number", re.compile(r"x\d+$"), "ext"],
            },
        }
        result = mapped({"phone": "503-555-1234 x56"}, rules)
        assert result == {"number": "503-555-1234", "ext": "x56"}

    def test_key_values(self):
        """Test parsing key:value pairs into a map."""
        rules = {"ids": {"key_values": ["customer_identifiers", ",", "internal"]}}
        result = mapped({"ids": "medicaid:123, ABC"}, rules)
        assert result == {"customer_identifiers": {"medicaid": "123", "internal": "ABC"}}

    def test_key_value_round_trip(self):
        """Test that key_value_merge reverses key_values."""
        text = "medicaid:123,internal:ABC"
        pairs = mapped({"ids": text}, {"ids": {"key_values": ["customer_identifiers", ","]}})
        merged = mapped(pairs, {"customer_identifiers": {"key_value_merge": ["ids", ","]}})
        assert merged == {"ids": text}

    def test_list_round_trip(self):
        """Test that list_merge reverses list."""
        text = "wheelchair|walker|cane"
        listed = mapped({"needs": text}, {"needs": {"list": ["customer_mobility_factors", "|"]}})
        assert listed == {"customer_mobility_factors": ["wheelchair", "walker", "cane"]}

        merged = mapped(listed, {"customer_mobility_factors": {"list_merge": ["needs", "|"]}})
        assert merged == {"needs": text}

    def test_ignore(self):
        """Test dropping an attribute."""
        assert mapped({"status": "x", "a": 1}, {"status": {"ignore": True}}) == {"a": 1}


class TestInvalidRules:
    """Tests for malformed rules."""

    def test_bad_arguments_name_the_field(self):
        """Test that a malformed command identifies the attribute."""
        with pytest.raises(ConfigurationError, match="abc"):
            map_attributes({"abc": "123"}, {"abc": {"truncate": ["xyz"]}})

    def test_unknown_command(self):
        """Test that an unknown transformation is rejected."""
        with pytest.raises(ConfigurationError, match="explode"):
            map_attributes({"abc": "123"}, {"abc": {"explode": ["x"]}})

    def test_invalid_rule_type(self):
        """Test that a rule must be a name, path, command or true."""
        with pytest.raises(ConfigurationError):
            map_attributes({"abc": "123"}, {"abc": 42})

    def test_bad_rule_fails_even_without_input(self):
        """Test that rules are checked when their attribute is absent."""
        with pytest.raises(ConfigurationError):
            map_attributes({}, {"abc": {"split": ["|"]}})

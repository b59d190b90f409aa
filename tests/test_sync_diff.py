"""
Unit tests for structural diff detection.
"""

from ch_adapter.sync.diff import (
    ChangeType,
    DiffResult,
    clean_diff,
    compute_array_diff,
    compute_diff,
)


class TestComputeDiff:
    """Tests for map diffs."""

    def test_identical_records_have_no_diff(self):
        """Test that diffing a record against itself gives None."""
        record = {"a": 1, "nested": {"b": [1, 2]}, "people": [{"id": 1, "name": "Tom"}]}
        assert compute_diff(record, record) is None

    def test_absent_original_is_new(self):
        """Test that everything is new when there is no original."""
        modified = {"a": 1, "b": {"c": 2}}

        result = compute_diff(None, modified)

        assert result.change_type is ChangeType.NEW
        assert result.changes == modified

    def test_empty_modified_has_no_diff(self):
        """Test that an empty record reports nothing."""
        assert compute_diff({"a": 1}, {}) is None
        assert compute_diff({"a": 1}, None) is None

    def test_changed_and_added_scalars(self):
        """Test that only changed or added fields are reported."""
        result = compute_diff({"x": 1, "y": "2"}, {"x": 1, "y": "99", "z": 3})

        assert result.change_type is ChangeType.MODIFIED
        assert result.changes == {"y": "99", "z": 3}

    def test_removed_keys_are_not_reported(self):
        """Test that keys only in the original never appear."""
        assert compute_diff({"x": 1, "gone": True}, {"x": 1}) is None

    def test_required_keys_are_echoed(self):
        """Test that required keys accompany a non-empty diff."""
        result = compute_diff({"id": 7, "name": "Tom"}, {"id": 7, "name": "Tim"}, required_keys=["id"])
        assert result.changes == {"id": 7, "name": "Tim"}

    def test_required_keys_alone_are_no_change(self):
        """Test that required keys do not make a diff on their own."""
        assert compute_diff({"id": 7, "name": "Tom"}, {"id": 7, "name": "Tom"}, required_keys=["id"]) is None

    def test_nested_map_change(self):
        """Test that a nested map is embedded as its own diff."""
        result = compute_diff(
            {"address": {"city": "Portland", "zip": "97201"}},
            {"address": {"city": "Salem", "zip": "97201"}},
        )

        nested = result.changes["address"]
        assert isinstance(nested, DiffResult)
        assert nested.change_type is ChangeType.MODIFIED
        assert nested.changes == {"city": "Salem"}

    def test_new_nested_map(self):
        """Test that a nested map absent before is tagged new."""
        result = compute_diff({"a": 1}, {"a": 1, "result": {"outcome": "Completed"}})
        assert result.changes["result"].is_new

    def test_new_element_in_id_keyed_array(self):
        """Test matching array elements by id."""
        result = compute_diff(
            {"people": [{"id": 1, "name": "Tom"}]},
            {"people": [{"id": 1, "name": "Tom"}, {"id": 2, "name": "Jane"}]},
        )

        assert result.change_type is ChangeType.MODIFIED
        people = result.changes["people"]
        assert len(people) == 1
        assert people[0].change_type is ChangeType.NEW
        assert people[0].changes == {"id": 2, "name": "Jane"}

    def test_tuples_compare_like_lists(self):
        """Test that inputs are canonicalized before comparison."""
        assert compute_diff({"tags": ["a", "b"]}, {"tags": ("a", "b")}) is None


class TestComputeArrayDiff:
    """Tests for array diffs."""

    def test_modified_element_keeps_id(self):
        """Test that a changed element echoes its id."""
        result = compute_array_diff(
            [{"id": 1, "status": "pending"}],
            [{"id": 1, "status": "approved"}],
        )

        assert result[0].change_type is ChangeType.MODIFIED
        assert result[0].changes == {"id": 1, "status": "approved"}

    def test_deleted_elements_are_not_reported(self):
        """Test that elements only in the original never appear."""
        result = compute_array_diff(
            [{"id": 1, "status": "a"}, {"id": 2, "status": "b"}],
            [{"id": 1, "status": "a"}],
        )
        assert result is None

    def test_opaque_array_returned_whole(self):
        """Test that scalar arrays are compared as a whole."""
        assert compute_array_diff(["a", "b"], ["a", "c"]) == ["a", "c"]
        assert compute_array_diff(["a", "b"], ["a", "b"]) is None

    def test_non_list_original_counts_as_empty(self):
        """Test that every element is new against a missing original."""
        result = compute_array_diff(None, [{"id": 1}])
        assert result[0].is_new


class TestCleanDiff:
    """Tests for removing change tags."""

    def test_clean_removes_tags_at_every_depth(self):
        """Test that clean output is plain dicts and lists."""
        result = compute_diff(
            {"people": [{"id": 1, "name": "Tom"}], "address": {"city": "Portland"}},
            {"people": [{"id": 1, "name": "Tim"}, {"id": 2}], "address": {"city": "Salem"}},
        )

        cleaned = clean_diff(result)

        assert cleaned == {
            "people": [{"id": 1, "name": "Tim"}, {"id": 2}],
            "address": {"city": "Salem"},
        }

        def no_tags(value):
            if isinstance(value, DiffResult):
                return False
            if isinstance(value, dict):
                return all(no_tags(item) for item in value.values())
            if isinstance(value, list):
                return all(no_tags(item) for item in value)
            return True

        assert no_tags(cleaned)

"""
Tests for docbridge.analysis.updates.

Covers:
- operator precedence (unset -> inc -> addToSet -> pullAll -> plain)
- first-key identity for object array elements
- plain merge rules (_metadata, empty objects, dotted keys)
- the field-definition shortcut
- input is never mutated
"""

import pytest

from docbridge.analysis.updates import apply_update
from docbridge.errors import TranslationError


class TestPrecedence:
    """Operator groups apply in a fixed order."""

    def test_inc_and_add_to_set(self):
        old = {"a": 1, "b": [1, 2]}
        update = {"$inc": {"a": 5}, "$addToSet": {"b": {"$each": [2, 3]}}}

        assert apply_update(old, update) == {"a": 6, "b": [1, 2, 3]}

    def test_key_order_of_update_does_not_matter(self):
        old = {"a": 1, "tags": ["x"]}
        first = {"$pullAll": {"tags": ["y"]}, "$addToSet": {"tags": {"$each": ["y"]}}}
        second = {"$addToSet": {"tags": {"$each": ["y"]}}, "$pullAll": {"tags": ["y"]}}

        # addToSet runs before pullAll either way
        assert apply_update(old, first) == apply_update(old, second) == {"a": 1, "tags": ["x"]}

    def test_plain_fields_apply_last(self):
        assert apply_update({"a": 1}, {"a": 10, "$inc": {"a": 5}}) == {"a": 10}

    def test_unset_before_inc(self):
        assert apply_update({"a": 4}, {"$unset": {"a": ""}, "$inc": {"a": 1}}) == {"a": 1}

    def test_old_content_is_not_mutated(self):
        old = {"a": 1, "b": [1], "c": {"d": 1}}

        apply_update(old, {"$inc": {"a": 1}, "$addToSet": {"b": 2}, "c": {"e": 2}})

        assert old == {"a": 1, "b": [1], "c": {"d": 1}}


class TestInc:
    def test_absent_field_starts_at_zero(self):
        assert apply_update({}, {"$inc": {"n": 3}}) == {"n": 3}

    def test_dotted_path(self):
        assert apply_update({"stats": {"wins": 2}}, {"$inc": {"stats.wins": 1}}) == {
            "stats": {"wins": 3}
        }

    def test_non_numeric_target_is_rejected(self):
        with pytest.raises(TranslationError, match="non-numeric"):
            apply_update({"n": "three"}, {"$inc": {"n": 1}})


class TestArrayOperators:
    """$addToSet / $pullAll compare objects by their first key only."""

    def test_add_to_set_skips_object_with_same_first_key(self):
        old = {"perms": [{"a": 1}, 2]}
        update = {"$addToSet": {"perms": {"$each": [{"a": 99}, 2, 3]}}}

        assert apply_update(old, update) == {"perms": [{"a": 1}, 2, 3]}

    def test_add_to_set_creates_missing_array(self):
        assert apply_update({}, {"$addToSet": {"tags": {"$each": ["x", "x"]}}}) == {
            "tags": ["x"]
        }

    def test_add_to_set_on_non_array_is_rejected(self):
        with pytest.raises(TranslationError, match="non-array"):
            apply_update({"tags": "x"}, {"$addToSet": {"tags": "y"}})

    def test_pull_all_removes_objects_by_first_key(self):
        old = {"perms": [{"role:admin": True}, {"role:user": True}, "x"]}
        update = {"$pullAll": {"perms": [{"role:admin": False}]}}

        assert apply_update(old, update) == {"perms": [{"role:user": True}, "x"]}

    def test_pull_all_removes_scalars(self):
        assert apply_update({"tags": ["a", "b", "a"]}, {"$pullAll": {"tags": ["a"]}}) == {
            "tags": ["b"]
        }

    def test_pull_all_on_absent_field_leaves_it_absent(self):
        assert apply_update({"x": 1}, {"$pullAll": {"tags": ["a"]}}) == {"x": 1}


class TestPlainMerge:
    def test_nested_objects_are_deep_merged(self):
        old = {"profile": {"name": "ann", "prefs": {"theme": "dark"}}}
        update = {"profile": {"prefs": {"lang": "en"}}}

        assert apply_update(old, update) == {
            "profile": {"name": "ann", "prefs": {"theme": "dark", "lang": "en"}}
        }

    def test_lists_replace(self):
        assert apply_update({"tags": [1, 2]}, {"tags": [3]}) == {"tags": [3]}

    def test_empty_object_deletes_key(self):
        assert apply_update({"a": {"b": 1}, "c": 1}, {"a": {}}) == {"c": 1}

    def test_empty_updated_at_is_kept(self):
        assert apply_update({}, {"updatedAt": {}}) == {"updatedAt": {}}

    def test_dotted_key_sets_by_path(self):
        assert apply_update({"a": {"b": 1}}, {"a.c": 2}) == {"a": {"b": 1, "c": 2}}

    def test_metadata_merges_but_replaces_class_permissions(self):
        old = {
            "_metadata": {
                "fields": {"a": {"type": "String"}},
                "class_permissions": {"find": {"*": True}, "get": {"*": True}},
            }
        }
        update = {
            "_metadata": {
                "fields": {"b": {"type": "Number"}},
                "class_permissions": {"find": {}},
            }
        }

        assert apply_update(old, update) == {
            "_metadata": {
                "fields": {"a": {"type": "String"}, "b": {"type": "Number"}},
                "class_permissions": {"find": {}},
            }
        }

    def test_legacy_updated_at_alias(self):
        assert apply_update({}, {"_updated_at": "t1"}) == {"updatedAt": "t1"}


class TestFieldDefinition:
    def test_shortcut_bypasses_everything_else(self):
        old = {"fields": 1}
        update = {"fieldName": "score", "theFieldType": {"type": "Number"}}

        assert apply_update(old, update) == {"fields": 1, "score": {"type": "Number"}}

    def test_deterministic(self):
        update = {"$inc": {"a": 1}, "$addToSet": {"b": {"$each": [1, 2]}}, "c": {"d": 1}}

        assert apply_update({"a": 1}, update) == apply_update({"a": 1}, update)


class TestArrayIndexPaths:
    """An integer segment in a dotted path addresses an array element."""

    def test_inc_through_index(self):
        assert apply_update({"scores": [1, 2]}, {"$inc": {"scores.0": 5}}) == {"scores": [6, 2]}

    def test_plain_set_through_index(self):
        assert apply_update({"tags": ["a", "b"]}, {"tags.1": "z"}) == {"tags": ["a", "z"]}

    def test_add_to_set_on_nested_array_element(self):
        old = {"teams": [{"members": ["ann"]}, {"members": []}]}
        update = {"$addToSet": {"teams.0.members": {"$each": ["ann", "bob"]}}}

        assert apply_update(old, update) == {
            "teams": [{"members": ["ann", "bob"]}, {"members": []}]
        }

    def test_set_past_the_end_pads_with_null(self):
        assert apply_update({"tags": ["a"]}, {"tags.2": "c"}) == {"tags": ["a", None, "c"]}

    def test_unset_element_leaves_null(self):
        assert apply_update({"tags": ["a", "b"]}, {"$unset": {"tags.0": ""}}) == {
            "tags": [None, "b"]
        }

    def test_scalar_parent_is_rejected(self):
        with pytest.raises(TranslationError):
            apply_update({"score": 5}, {"score.best": 9})

    def test_named_segment_on_array_is_rejected(self):
        with pytest.raises(TranslationError):
            apply_update({"tags": ["a"]}, {"$inc": {"tags.count": 1}})

"""
Tests for docbridge.analysis.translator.

Covers:
- null equality / $ne null rewrites
- empty-set short-circuits ($in, $all, $nin)
- $all over objects and operator objects
- $or pass-through and branch dropping
- $containedBy deferral and post-filtering
- sort wrapping
"""

import pytest

from docbridge.analysis.expressions import Comparison, parse_filter
from docbridge.analysis.projection import SortKey
from docbridge.analysis.translator import apply_post_filters, translate
from docbridge.errors import TranslationError
from docbridge.signals import NO_MATCH, Signal

NULL_SCORE = {"$or": [{"score": {"$exists": False}}, {"score": None}]}


class TestNullRewrites:
    """null means 'absent or null' to callers; the store needs both spelled out."""

    def test_null_equality(self):
        assert translate({"score": None}).native == NULL_SCORE

    def test_eq_operator_with_null(self):
        assert translate({"score": {"$eq": None}}).native == NULL_SCORE

    def test_ne_null_requires_existence(self):
        assert translate({"score": {"$ne": None}}).native == {
            "$and": [{"score": {"$exists": True}}, {"score": {"$ne": None}}]
        }

    def test_null_equality_next_to_existing_or_is_wrapped(self):
        native = translate({"score": None, "$or": [{"a": 1}, {"b": 2}]}).native

        assert native == {"$and": [NULL_SCORE, {"$or": [{"a": 1}, {"b": 2}]}]}

    def test_null_inside_in_list(self):
        native = translate({"team": {"$in": [None, "red"]}}).native

        assert native == {
            "$or": [
                {"team": {"$in": ["red"]}},
                {"team": None},
                {"team": {"$exists": False}},
            ]
        }

    def test_in_list_of_only_null_is_null_equality(self):
        assert translate({"score": {"$in": [None]}}).native == NULL_SCORE


class TestEmptySets:
    """Empty $in/$all can never match; empty $nin never excludes."""

    def test_empty_in_is_no_match(self):
        assert translate({"tags": {"$in": []}}) is NO_MATCH

    def test_empty_in_poisons_conjunction(self):
        assert translate({"name": "ann", "tags": {"$in": []}}) is Signal.NO_MATCH

    def test_empty_all_is_no_match(self):
        assert translate({"tags": {"$all": []}}) is NO_MATCH

    def test_empty_nin_is_no_constraint(self):
        result = translate({"name": "ann", "tags": {"$nin": []}})

        assert result.native == {"name": "ann"}

    def test_empty_in_drops_only_its_or_branch(self):
        native = translate({"$or": [{"tags": {"$in": []}}, {"name": "ann"}]}).native

        assert native == {"$or": [{"name": "ann"}]}

    def test_or_with_every_branch_empty_is_no_match(self):
        result = translate({"$or": [{"tags": {"$in": []}}, {"ids": {"$all": []}}]})

        assert result is NO_MATCH

    def test_or_with_unconstrained_branch_is_no_constraint(self):
        result = translate({"$or": [{"tags": {"$nin": []}}, {"name": "ann"}]})

        assert result.native == {}
        assert result.is_unconstrained


class TestAll:
    """$all over scalars passes through; objects become array-member clauses."""

    def test_scalars_pass_through(self):
        assert translate({"tags": {"$all": ["a", "b"]}}).native == {
            "tags": {"$all": ["a", "b"]}
        }

    def test_objects_become_member_clauses(self):
        native = translate({"items": {"$all": [{"sku": "a", "qty": 2}, {"sku": "b"}]}}).native

        assert native == {
            "$and": [
                {"items[*].sku": "a"},
                {"items[*].qty": 2},
                {"items[*].sku": "b"},
            ]
        }

    def test_operator_objects_become_field_clauses(self):
        native = translate({"tags": {"$all": [{"$regex": "^a"}]}}).native

        assert native == {"$and": [{"tags": {"$regex": "^a"}}]}

    def test_leading_null_is_no_match(self):
        assert translate({"tags": {"$all": [None, "a"]}}) is NO_MATCH

    def test_empty_object_member_is_no_match(self):
        assert translate({"items": {"$all": [{"sku": "a"}, {}]}}) is NO_MATCH


class TestConjunctions:
    """Fragments of one conjunction merge into a single native dict."""

    def test_empty_filter_is_unconstrained(self):
        result = translate({})

        assert result.native == {}
        assert result.is_unconstrained

    def test_operators_on_same_field_merge(self):
        assert translate({"score": {"$gte": 1, "$lt": 5}}).native == {
            "score": {"$gte": 1, "$lt": 5}
        }

    def test_regex_options_survive(self):
        assert translate({"name": {"$regex": "^a", "$options": "i"}}).native == {
            "name": {"$regex": "^a", "$options": "i"}
        }

    def test_nested_and_drops_empty_members(self):
        native = translate({"$and": [{}, {"name": "ann"}, {"tags": {"$nin": []}}]}).native

        assert native == {"name": "ann"}

    def test_source_tree_is_threaded_through(self):
        raw = {"name": "ann", "tags": {"$containedBy": ["a"]}}

        assert translate(raw).source == parse_filter(raw)


class TestContainedBy:
    """$containedBy has no native form and is evaluated after the read."""

    def test_deferred_to_post_filter(self):
        result = translate({"tags": {"$containedBy": ["a", "b"]}, "name": "ann"})

        assert result.native == {"name": "ann"}
        assert result.post_filters == (Comparison("tags", "$containedBy", ["a", "b"]),)

    def test_rejected_under_or(self):
        with pytest.raises(TranslationError, match=r"\$containedBy"):
            translate({"$or": [{"tags": {"$containedBy": ["a"]}}, {"name": "ann"}]})

    def test_post_filter_semantics(self):
        docs = [
            {"tags": ["a"]},
            {"tags": ["a", "c"]},
            {},
            {"tags": None},
            {"tags": "b"},
        ]
        clause = Comparison("tags", "$containedBy", ["a", "b"])

        assert apply_post_filters(docs, [clause]) == [
            {"tags": ["a"]},
            {},
            {"tags": None},
            {"tags": "b"},
        ]


class TestSortWrapping:
    """A sort spec wraps the native filter in $query/$orderby."""

    def test_wraps_with_typed_order(self):
        sort = (SortKey("score", -1, "number"), SortKey("name", 1, "string"))

        native = translate({"team": "red"}, sort).native

        assert native == {
            "$query": {"team": "red"},
            "$orderby": [
                {"path": "score", "datatype": "number", "order": "desc"},
                {"path": "name", "datatype": "string", "order": "asc"},
            ],
        }

    def test_no_match_is_not_wrapped(self):
        assert translate({"tags": {"$in": []}}, (SortKey("score", 1),)) is NO_MATCH

"""Tests for the immutable Query value.

Covers:
- Builder methods return new queries and leave the receiver unchanged
- copy() independence
- Projection rules (select / select_not, pk always fetched)
- Writability derivation
- Validation errors at build time
"""

import pytest

from recordspine import predicate as p
from recordspine.errors import QueryError
from recordspine.query import ProjectionMode, Query


@pytest.fixture
def q(schema) -> Query:
    return Query(schema.model("User"))


class TestImmutability:
    def test_where_returns_new_query(self, q):
        filtered = q.where(p.eq("name", "ann"))
        assert q.predicate is None
        assert filtered.predicate == p.eq("name", "ann")

    def test_repeated_where_is_and(self, q):
        a, b = p.eq("name", "ann"), p.gt("age", 3)
        assert q.where(a).where(b).predicate == p.and_(a, b)

    def test_copy_then_extend_leaves_original(self, q):
        original = q.where(p.eq("name", "ann")).order("name").select("name")
        clone = original.copy()
        extended = clone.where(p.gt("age", 1)).order(p.desc("age")).select("email")

        assert original.predicate == p.eq("name", "ann")
        assert original.ordering == (p.asc("name"),)
        assert original.projection.columns == frozenset({"name"})
        assert extended.projection.columns == frozenset({"name", "email"})
        assert clone == original

    def test_defaults(self, q):
        assert q.get_limit() is None
        assert q.get_offset() is None
        assert q.get_batch_size() is None
        assert q.projection.mode is ProjectionMode.ALL


class TestPagination:
    def test_limit_offset(self, q):
        paged = q.limit(10).offset(20)
        assert paged.get_limit() == 10
        assert paged.get_offset() == 20

    @pytest.mark.parametrize("method", ["limit", "offset"])
    def test_negative_rejected(self, q, method):
        with pytest.raises(QueryError):
            getattr(q, method)(-1)

    def test_batch_size_must_be_positive(self, q):
        with pytest.raises(QueryError):
            q.batch_size(0)
        assert q.batch_size(7).get_batch_size() == 7


class TestProjection:
    def test_select_always_includes_pk(self, q):
        names = [c.column for c in q.select("name").selected_columns()]
        assert names == ["id", "name"]

    def test_select_not(self, q):
        names = [c.column for c in q.select_not("settings", "tags").selected_columns()]
        assert "settings" not in names and "tags" not in names
        assert "id" in names

    def test_select_not_cannot_drop_pk(self, q):
        assert "id" in [c.column for c in q.select_not("id").selected_columns()]

    def test_inline_fields_by_attribute_name(self, q):
        names = [c.column for c in q.select("created_at").selected_columns()]
        assert names == ["id", "created_at"]

    def test_mixing_modes_rejected(self, q):
        with pytest.raises(QueryError):
            q.select("name").select_not("email")
        with pytest.raises(QueryError):
            q.select_not("email").select("name")

    def test_unknown_field_rejected(self, q):
        with pytest.raises(QueryError):
            q.select("nope")


class TestWritability:
    def test_full_query_is_writable(self, q):
        assert q.is_writable

    def test_strict_subset_not_writable(self, q):
        assert not q.select("name").is_writable

    def test_selecting_every_field_is_writable(self, q):
        every = [c.name for c in q.model.columns]
        assert q.select(*every).is_writable

    def test_unfiltered_include_is_writable(self, q):
        assert q.include("posts").is_writable

    def test_filtered_include_not_writable(self, q):
        assert not q.include("posts", where=p.gt("score", 5)).is_writable


class TestInclude:
    def test_unknown_relationship(self, q):
        with pytest.raises(QueryError):
            q.include("comments")

    def test_same_relationship_replaced(self, q):
        twice = q.include("posts", where=p.gt("score", 1)).include("posts")
        assert len(twice.includes) == 1
        assert twice.includes[0].where is None

    def test_joined_and_batched(self, q):
        both = q.include("posts").include("profile")
        assert [i.relationship.name for i in both.joined_includes] == ["profile"]
        assert [i.relationship.name for i in both.batched_includes] == ["posts"]

    def test_where_requires_predicate(self, q):
        with pytest.raises(QueryError):
            q.where("name = 'ann'")  # type: ignore[arg-type]

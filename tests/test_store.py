"""Tests for the Store write protocol.

Covers:
- insert / update / save / delete preconditions and results
- Hook ordering and HookError wrapping
- Transaction promotion (after_* hooks, related records) and rollback
- Relationship saves one level deep, FORWARD before owner, INVERSE after
- reload, count, remove, transaction callbacks
"""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from recordspine import predicate as p
from recordspine.errors import (
    AlreadyPersistedError,
    ExecutionError,
    HookError,
    NoRowsError,
    NotPersistedError,
    NotWritableError,
    PreconditionError,
    QueryError,
    TransactionError,
)
from tests._support import Address, Post, Profile, User


@dataclass
class TracedPost(Post):
    calls: list[str] = field(default_factory=list)

    def before_save(self):
        self.calls.append("before_save")

    def before_insert(self):
        self.calls.append("before_insert")

    def before_update(self):
        self.calls.append("before_update")

    def after_insert(self):
        self.calls.append("after_insert")

    def after_update(self):
        self.calls.append("after_update")

    def after_save(self):
        self.calls.append("after_save")

    def before_delete(self):
        self.calls.append("before_delete")

    def after_delete(self):
        self.calls.append("after_delete")


@dataclass
class RejectedPost(Post):
    def before_insert(self):
        raise ValueError("title rejected")


@dataclass
class FailingAfterSave(Post):
    def after_save(self):
        raise RuntimeError("audit log unavailable")


def _rows(conn, table: str) -> int:
    return conn.raw.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


class TestInsert:
    def test_auto_increment_key_assigned(self, posts):
        post = Post(title="hello")
        posts.insert(post)
        assert post.id == 1
        assert post.is_persisted()
        assert posts.get(1).title == "hello"

    def test_already_persisted(self, posts):
        post = Post(title="x")
        posts.insert(post)
        with pytest.raises(AlreadyPersistedError):
            posts.insert(post)

    def test_manual_key_required(self, addresses):
        with pytest.raises(PreconditionError):
            addresses.insert(Address(city="Oslo"))

    def test_manual_key(self, addresses):
        addresses.insert(Address(id="a1", city="Oslo"))
        assert addresses.get("a1").city == "Oslo"

    def test_single_statement_not_promoted(self, posts, conn):
        posts.insert(Post(title="x"))
        assert conn.begins == 0
        assert conn.count("INSERT") == 1

    def test_constraint_violation(self, addresses):
        addresses.insert(Address(id="a1", city="Oslo"))
        with pytest.raises(ExecutionError):
            addresses.insert(Address(id="a1", city="Bergen"))

    def test_timestamps_touched(self, users, fixed_now):
        user = User(name="ann")
        users.insert(user)
        assert user.timestamps.created_at == fixed_now
        assert users.get(user.id).timestamps.updated_at == fixed_now


class TestHooks:
    def test_insert_hook_order(self, posts):
        post = TracedPost(title="x")
        posts.insert(post)
        assert post.calls == ["before_save", "before_insert", "after_insert", "after_save"]

    def test_update_hook_order(self, posts):
        post = TracedPost(title="x")
        posts.insert(post)
        post.calls.clear()
        posts.update(post)
        assert post.calls == ["before_save", "before_update", "after_update", "after_save"]

    def test_delete_hooks(self, posts):
        post = TracedPost(title="x")
        posts.insert(post)
        post.calls.clear()
        posts.delete(post)
        assert post.calls == ["before_delete", "after_delete"]

    def test_after_hook_promotes_transaction(self, posts, conn):
        posts.insert(TracedPost(title="x"))
        assert conn.begins == 1
        assert conn.commits == 1

    def test_before_hook_failure_is_hook_error(self, posts, conn):
        with pytest.raises(HookError) as exc:
            posts.insert(RejectedPost(title="x"))
        assert exc.value.hook == "before_insert"
        assert isinstance(exc.value.cause, ValueError)
        assert _rows(conn, "posts") == 0

    def test_after_hook_failure_rolls_back_write(self, posts, conn):
        post = FailingAfterSave(title="x")
        with pytest.raises(HookError):
            posts.insert(post)
        assert conn.rollbacks == 1
        assert _rows(conn, "posts") == 0
        # In-memory state is restored with the rollback.
        assert not post.is_persisted()
        assert post.id == 0


class TestUpdate:
    def test_returns_affected_rows(self, posts):
        post = Post(title="x")
        posts.insert(post)
        post.title = "y"
        assert posts.update(post) == 1
        assert posts.get(post.id).title == "y"

    def test_missing_row_returns_zero(self, posts, conn):
        post = Post(title="x")
        posts.insert(post)
        conn.raw.execute("DELETE FROM posts")
        assert posts.update(post) == 0

    def test_explicit_fields(self, posts):
        post = Post(title="x", score=1)
        posts.insert(post)
        post.title, post.score = "changed", 99
        posts.update(post, "score")
        stored = posts.get(post.id)
        assert (stored.title, stored.score) == ("x", 99)

    def test_unknown_field(self, posts):
        post = Post(title="x")
        posts.insert(post)
        with pytest.raises(QueryError):
            posts.update(post, "nope")

    def test_never_persisted(self, posts):
        with pytest.raises(NotPersistedError):
            posts.update(Post(id=5, title="x"))

    def test_empty_key(self, posts):
        with pytest.raises(PreconditionError):
            posts.update(Post(title="x"))

    def test_partial_record_not_writable_until_reload(self, users):
        users.insert(User(name="ann", age=3))
        partial = users.find_one(users.query().select("name"))
        with pytest.raises(NotWritableError):
            users.update(partial)
        with pytest.raises(NotWritableError):
            users.save(partial)
        users.reload(partial)
        assert partial.age == 3
        assert users.save(partial) is True


class TestSave:
    def test_insert_then_update(self, posts, conn):
        post = Post(title="x")
        assert posts.save(post) is False
        assert posts.save(post) is True
        assert posts.save(post) is True
        assert conn.count("INSERT") == 1
        assert conn.count("UPDATE") == 2
        assert _rows(conn, "posts") == 1

    def test_json_and_array_roundtrip(self, users):
        settings = {"theme": {"dark": True, "sizes": [1, 2.5, None]}, "tags": ["a"], "n": None}
        user = User(name="ann", tags=["x", "y"], settings=settings)
        users.save(user)
        stored = users.get(user.id)
        assert stored.settings == settings
        assert stored.tags == ["x", "y"]


class TestRelationshipSaves:
    def test_parent_with_two_children_one_transaction(self, users, conn):
        user = User(name="ann", posts=[Post(title="a"), Post(title="b")])
        users.insert(user)
        assert conn.begins == 1
        assert conn.commits == 1
        assert conn.count("INSERT") == 3
        assert all(post.user_id == user.id and post.is_persisted() for post in user.posts)

    def test_child_hook_failure_removes_parent(self, users, conn):
        user = User(name="ann", posts=[Post(title="a"), RejectedPost(title="b")])
        with pytest.raises(HookError):
            users.insert(user)
        assert _rows(conn, "users") == 0
        assert _rows(conn, "posts") == 0
        assert not user.is_persisted()
        assert not user.posts[0].is_persisted()
        assert user.id == 0

    def test_rollback_restores_child_foreign_keys(self, users):
        profile = Profile(bio="x")
        user = User(name="ann", posts=[Post(title="a", user_id=0), RejectedPost(title="b")], profile=profile)
        with pytest.raises(HookError):
            users.insert(user)
        assert user.posts[0].user_id == 0
        assert user.posts[1].user_id == 0
        assert profile.get_virtual("user_id") is None

    def test_rollback_restores_owner_foreign_key(self, users, conn):
        user = User(name="ann", address=Address(id="a1", city="Oslo"), posts=[RejectedPost(title="b")])
        with pytest.raises(HookError):
            users.insert(user)
        assert user.get_virtual("address_id") is None
        assert not user.address.is_persisted()
        assert _rows(conn, "addresses") == 0


    def test_save_updates_existing_children(self, users, posts):
        user = User(name="ann", posts=[Post(title="a")])
        users.insert(user)
        user.posts[0].title = "a2"
        user.posts.append(Post(title="b"))
        users.save(user)
        titles = sorted(x.title for x in posts.find_all())
        assert titles == ["a2", "b"]

    def test_one_to_one_key_filled_in(self, users, conn):
        profile = Profile(bio="x")
        users.insert(User(name="ann", profile=profile))
        assert profile.get_virtual("user_id") == 1
        assert _rows(conn, "profiles") == 1

    def test_forward_target_saved_first(self, users, conn):
        user = User(name="ann", address=Address(id="a1", city="Oslo"))
        users.insert(user)
        inserts = [s for s in conn.statements if s.startswith("INSERT")]
        assert inserts[0].startswith('INSERT INTO "addresses"')
        assert user.get_virtual("address_id") == "a1"

    def test_delete_does_not_cascade(self, users, conn):
        user = User(name="ann", posts=[Post(title="a")])
        users.insert(user)
        conn.raw.execute("PRAGMA foreign_keys = OFF")
        users.delete(user)
        assert _rows(conn, "users") == 0
        assert _rows(conn, "posts") == 1


class TestDelete:
    def test_delete(self, posts):
        post = Post(title="x")
        posts.insert(post)
        assert posts.delete(post) == 1
        assert not post.is_persisted()
        assert posts.count() == 0

    def test_never_persisted(self, posts):
        with pytest.raises(NotPersistedError):
            posts.delete(Post(id=3))


class TestReads:
    def test_count(self, posts):
        for i in range(4):
            posts.insert(Post(title=f"t{i}", score=i))
        assert posts.count() == 4
        assert posts.count(posts.query().where(p.gte("score", 2))) == 2

    def test_find_one_no_rows(self, posts):
        with pytest.raises(NoRowsError) as exc:
            posts.find_one(posts.query().where(p.eq("title", "none")))
        assert exc.value.context.model == "Post"

    def test_query_for_other_model_rejected(self, posts, users):
        with pytest.raises(QueryError):
            posts.find(users.query())

    def test_json_predicates(self, users):
        users.insert(User(name="ann", settings={"plan": {"tier": "pro"}, "beta": True}))
        users.insert(User(name="bob", settings={"plan": {"tier": "free"}}))

        def names(pred):
            return sorted(u.name for u in users.find(users.query().where(pred)))

        assert names(p.json_contains("settings", {"plan": {"tier": "pro"}})) == ["ann"]
        assert names(p.json_contains_any_key("settings", ["beta", "x"])) == ["ann"]
        assert names(p.json_contains_all_keys("settings", ["plan"])) == ["ann", "bob"]
        assert names(p.json_has_path("settings", ["plan", "tier"])) == ["ann", "bob"]

    def test_json_containment_of_nested_array_elements(self, users):
        users.insert(User(name="ann", settings={"items": [{"k": 1, "v": "x"}, {"k": 2}], "grid": [[1, 2]]}))
        users.insert(User(name="bob", settings={"items": ["plain", {"k": 3}], "grid": [3]}))

        def names(pred):
            return sorted(u.name for u in users.find(users.query().where(pred)))

        assert names(p.json_contains("settings", {"items": [{"k": 1}]})) == ["ann"]
        assert names(p.json_contains("settings", {"items": [{"k": 2}, {"k": 1, "v": "x"}]})) == ["ann"]
        assert names(p.json_contains("settings", {"items": [{"k": 3}]})) == ["bob"]
        assert names(p.json_contains("settings", {"items": [{"k": 9}]})) == []
        assert names(p.json_contains("settings", {"grid": [[2]]})) == ["ann"]
        assert names(p.json_contains("settings", {"items": [{}]})) == ["ann", "bob"]

    def test_array_predicates(self, users):
        users.insert(User(name="ann", tags=["a", "b"]))
        users.insert(User(name="bob", tags=["b", "c"]))

        def names(pred):
            return sorted(u.name for u in users.find(users.query().where(pred)))

        assert names(p.array_contains("tags", ["a", "b"])) == ["ann"]
        assert names(p.array_overlap("tags", ["a", "c"])) == ["ann", "bob"]
        assert names(p.array_overlap("tags", [])) == []

    def test_ilike(self, users):
        users.insert(User(name="Ann"))
        assert users.find_one(users.query().where(p.ilike("name", "an%"))).name == "Ann"


class TestReload:
    def test_discards_local_changes(self, posts):
        post = Post(title="x")
        posts.insert(post)
        post.title = "local"
        posts.reload(post)
        assert post.title == "x"

    def test_never_persisted(self, posts):
        with pytest.raises(NotPersistedError):
            posts.reload(Post(id=1))

    def test_row_gone(self, posts, conn):
        post = Post(title="x")
        posts.insert(post)
        conn.raw.execute("DELETE FROM posts")
        with pytest.raises(NoRowsError):
            posts.reload(post)

    def test_relationships_untouched(self, users):
        user = User(name="ann", posts=[Post(title="a")])
        users.insert(user)
        marker = user.posts
        users.reload(user)
        assert user.posts is marker


class TestTransactionCallback:
    def test_commits(self, posts, conn):
        def work(store):
            store.insert(Post(title="a"))
            store.insert(Post(title="b"))
            return "done"

        assert posts.transaction(work) == "done"
        assert conn.begins == 1
        assert _rows(conn, "posts") == 2

    def test_nested_reuses_transaction(self, posts, users, conn):
        def inner(store):
            store.insert(Post(title="inner"))

        def outer(store):
            store.insert(User(name="ann"))
            posts.transaction(inner)

        users.transaction(outer)
        assert conn.begins == 1
        assert conn.commits == 1

    def test_inner_failure_rolls_back_everything(self, posts, users, conn):
        def inner(store):
            store.insert(Post(title="inner"))
            raise RuntimeError("inner failed")

        def outer(store):
            store.insert(User(name="ann"))
            posts.transaction(inner)

        with pytest.raises(RuntimeError):
            users.transaction(outer)
        assert _rows(conn, "users") == 0
        assert _rows(conn, "posts") == 0

    def test_caught_inner_failure_still_rolls_back(self, posts, users, conn):
        def inner(store):
            store.insert(Post(title="inner"))
            raise RuntimeError("inner failed")

        def outer(store):
            store.insert(User(name="ann"))
            try:
                posts.transaction(inner)
            except RuntimeError:
                pass

        with pytest.raises(TransactionError) as exc:
            users.transaction(outer)
        assert isinstance(exc.value.cause, RuntimeError)
        assert conn.commits == 0
        assert conn.rollbacks == 1
        assert _rows(conn, "users") == 0
        assert _rows(conn, "posts") == 0

    def test_caught_relationship_save_failure_is_all_or_nothing(self, users, conn):
        user = User(name="ann", posts=[Post(title="a"), RejectedPost(title="b")])

        def outer(store):
            with pytest.raises(HookError):
                store.insert(user)

        with pytest.raises(TransactionError):
            users.transaction(outer)
        assert _rows(conn, "users") == 0
        assert _rows(conn, "posts") == 0
        assert not user.is_persisted()
        assert user.id == 0
        assert not user.posts[0].is_persisted()

    def test_next_transaction_starts_clean(self, posts, conn):
        def failing(store):
            try:
                store.transaction(lambda s: s.insert(FailingAfterSave(title="x")))
            except HookError:
                pass

        with pytest.raises(TransactionError):
            posts.transaction(failing)
        posts.transaction(lambda store: store.insert(Post(title="ok")))
        assert _rows(conn, "posts") == 1

    def test_hooked_write_inside_callback_not_double_begun(self, posts, conn):
        posts.transaction(lambda store: store.insert(TracedPost(title="x")))
        assert conn.begins == 1


class TestRemove:
    def _user_with_posts(self, users):
        user = User(name="ann", posts=[Post(title="a"), Post(title="b"), Post(title="c")])
        users.insert(user)
        return user

    def test_remove_listed(self, users, posts):
        user = self._user_with_posts(users)
        first = user.posts[0]
        assert users.remove(user, "posts", first) == 1
        assert not first.is_persisted()
        assert [x.title for x in user.posts] == ["b", "c"]
        assert posts.count() == 2

    def test_remove_all(self, users, posts):
        user = self._user_with_posts(users)
        children = list(user.posts)
        assert users.remove(user, "posts") == 3
        assert user.posts == []
        assert not any(c.is_persisted() for c in children)
        assert posts.count() == 0

    def test_remove_scoped_to_parent(self, users, posts):
        ann = self._user_with_posts(users)
        bob = User(name="bob", posts=[Post(title="z")])
        users.insert(bob)
        assert users.remove(ann, "posts", bob.posts[0]) == 0
        assert posts.count() == 4

    def test_remove_one_to_one(self, users, profiles):
        user = User(name="ann", profile=Profile(bio="x"))
        users.insert(user)
        assert users.remove(user, "profile") == 1
        assert user.profile is None
        assert profiles.count() == 0

    def test_forward_rejected(self, users):
        user = User(name="ann", address=Address(id="a1", city="Oslo"))
        users.insert(user)
        with pytest.raises(QueryError):
            users.remove(user, "address")

    def test_unknown_relationship(self, users):
        user = User(name="ann")
        users.insert(user)
        with pytest.raises(QueryError):
            users.remove(user, "comments")

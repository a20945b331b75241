"""Tests for the attribute-backed record implementation."""

from recordspine.model import Timestamps, has_after_hooks, has_hook, state_of
from tests._support import Post, User


def _field(schema, model, name):
    return schema.model(model).find_field(name)


class TestModel:
    def test_inline_paths(self, schema, fixed_now):
        user = User(name="ann")
        created = _field(schema, "User", "created_at")
        user.set_value(created, fixed_now)
        assert user.timestamps.created_at == fixed_now
        assert user.get_value(created) == fixed_now

    def test_virtual_columns_live_in_state(self):
        post = Post()
        post.set_virtual("x_id", 3)
        assert post.get_virtual("x_id") == 3
        assert "x_id" not in vars(post)
        assert state_of(post).virtual == {"x_id": 3}

    def test_fresh_record_state(self):
        post = Post()
        assert not post.is_persisted()
        assert post.is_writable()

    def test_hook_capabilities(self):
        assert has_hook(User(), "before_save")
        assert not has_hook(Post(), "before_save")
        assert not has_after_hooks(User())


class TestTimestamps:
    def test_touch_keeps_creation_time(self, fixed_now):
        stamps = Timestamps(created_at=None)
        stamps.touch()
        assert stamps.created_at == stamps.updated_at == fixed_now

    def test_touch_existing(self, fixed_now):
        earlier = fixed_now.replace(year=2020)
        stamps = Timestamps(created_at=earlier)
        stamps.touch()
        assert stamps.created_at == earlier
        assert stamps.updated_at == fixed_now

"""Tests for the session registry."""

import pytest

from agentrelay.services.session_registry import SessionRegistry


class TestSessionRegistry:
    def test_register_and_lookup(self):
        registry = SessionRegistry()
        entry = registry.register("a1", "agent:a1:main")
        assert registry.get_by_agent("a1") == entry
        assert registry.get_by_key("agent:a1:main") == entry
        assert "agent:a1:main" in registry
        assert len(registry) == 1

    def test_register_is_idempotent(self):
        registry = SessionRegistry()
        registry.register("a1", "k1")
        registry.touch("k1", now=5.0)
        entry = registry.register("a1", "k1")
        assert entry.last_message_at == 5.0
        assert len(registry) == 1

    def test_reregister_replaces_key(self):
        registry = SessionRegistry()
        registry.register("a1", "k1")
        registry.register("a1", "k2")
        assert len(registry) == 1
        assert "k1" not in registry
        assert registry.get_by_agent("a1").session_key == "k2"

    def test_key_moves_to_new_agent(self):
        registry = SessionRegistry()
        registry.register("a1", "k1")
        registry.register("a2", "k1")
        assert registry.get_by_agent("a1") is None
        assert registry.get_by_key("k1").agent_id == "a2"
        assert registry.agent_ids() == {"a2"}

    def test_remove(self):
        registry = SessionRegistry()
        registry.register("a1", "k1")
        removed = registry.remove("a1")
        assert removed.session_key == "k1"
        assert "k1" not in registry
        assert registry.remove("a1") is None

    def test_touch_updates_both_indexes(self):
        registry = SessionRegistry()
        registry.register("a1", "k1")
        registry.touch("k1", now=42.0)
        assert registry.get_by_key("k1").last_message_at == 42.0
        assert registry.get_by_agent("a1").last_message_at == 42.0

    def test_touch_unknown_key_is_noop(self):
        registry = SessionRegistry()
        registry.touch("missing")
        assert len(registry) == 0

    def test_register_requires_values(self):
        with pytest.raises(ValueError):
            SessionRegistry().register("", "k1")

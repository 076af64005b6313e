"""
Tests for automation subscriptions.
"""

import json

import pytest

from settlement_engine.dispatch.subscriptions import (
    PRESETS,
    Subscription,
    SubscriptionRegistry,
    preset_subscription,
)


class TestSubscriptionRegistry:
    """Tests for the subscription registry."""

    def test_add_and_match(self):
        """Test subscriptions are matched by event type."""
        registry = SubscriptionRegistry()
        registry.add_subscription(Subscription(url="https://a.example.com/hook", events=frozenset({"payment.success"})))
        registry.add_subscription(Subscription(url="https://b.example.com/hook", events=frozenset({"payout.failed"})))

        assert [s.url for s in registry.matching("payment.success")] == ["https://a.example.com/hook"]
        assert registry.matching("order.created") == ()
        assert len(registry) == 2

    def test_same_url_replaces(self):
        """Test adding a URL twice keeps the latest definition."""
        registry = SubscriptionRegistry()
        registry.add_subscription(Subscription(url="https://a.example.com/hook", events=frozenset({"payment.success"})))
        registry.add_subscription(Subscription(url="https://a.example.com/hook", events=frozenset({"payout.success"})))

        assert len(registry) == 1
        assert registry.get("https://a.example.com/hook").events == frozenset({"payout.success"})

    def test_remove(self):
        """Test removing by URL."""
        registry = SubscriptionRegistry([Subscription(url="https://a.example.com/hook", events=frozenset({"x"}))])

        assert registry.remove_subscription("https://a.example.com/hook") is True
        assert registry.remove_subscription("https://a.example.com/hook") is False
        assert len(registry) == 0

    def test_snapshot_is_immutable(self):
        """Test a snapshot is unaffected by later changes."""
        registry = SubscriptionRegistry([Subscription(url="https://a.example.com/hook", events=frozenset({"x"}))])
        snapshot = registry.snapshot()

        registry.remove_subscription("https://a.example.com/hook")

        assert len(snapshot) == 1


class TestLoad:
    """Tests for loading subscriptions from configuration."""

    def test_load_json(self):
        """Test loading a JSON list."""
        raw = json.dumps([
            {
                "url": "https://hooks.zapier.com/hooks/catch/1/abc",
                "events": ["payment.success", "payout.failed"],
                "headers": {"X-Api-Key": "k"},
                "max_retries": 5,
            }
        ])
        registry = SubscriptionRegistry()

        assert registry.load(raw) == 1
        (subscription,) = registry.snapshot()
        assert subscription.max_retries == 5
        assert subscription.headers == {"X-Api-Key": "k"}
        assert subscription.accepts("payout.failed")

    def test_load_preset(self):
        """Test entries can reference a platform preset."""
        registry = SubscriptionRegistry()
        registry.load([{"preset": "n8n", "url": "https://n8n.example.com/webhook/settle"}])

        (subscription,) = registry.snapshot()
        assert subscription.name == "n8n"
        assert subscription.max_retries == 5
        assert subscription.headers == {"X-N8N-Source": "settlement"}
        assert subscription.events == frozenset(PRESETS["n8n"]["events"])

    def test_load_empty(self):
        """Test empty configuration loads nothing."""
        registry = SubscriptionRegistry()
        assert registry.load("") == 0
        assert registry.load("[]") == 0

    @pytest.mark.parametrize(
        "raw",
        [
            "{not json",
            '{"url": "https://a.example.com/hook"}',
            '[{"url": "not a url", "events": ["payment.success"]}]',
            '[{"url": "https://a.example.com/hook", "events": []}]',
            '[{"url": "https://a.example.com/hook", "events": ["x"], "max_retries": 0}]',
            '[{"preset": "n8n"}]',
            '[{"preset": "ifttt", "url": "https://a.example.com/hook"}]',
        ],
    )
    def test_load_invalid(self, raw):
        """Test invalid configuration is rejected."""
        with pytest.raises(ValueError):
            SubscriptionRegistry().load(raw)

    def test_invalid_entry_loads_nothing(self):
        """Test a bad entry rejects the whole list."""
        registry = SubscriptionRegistry()
        raw = [
            {"url": "https://a.example.com/hook", "events": ["x"]},
            {"url": "https://b.example.com/hook", "events": []},
        ]

        with pytest.raises(ValueError):
            registry.load(raw)
        assert len(registry) == 0


class TestPresets:
    """Tests for platform presets."""

    def test_zapier(self):
        """Test the zapier preset."""
        subscription = preset_subscription("zapier", "https://hooks.zapier.com/hooks/catch/1/abc")

        assert subscription.accepts("payment.success")
        assert subscription.accepts("payout.failed")
        assert not subscription.accepts("order.created")
        assert subscription.max_retries == 3

    def test_overrides(self):
        """Test preset fields can be overridden."""
        subscription = preset_subscription(
            "buildship",
            "https://api.buildship.com/executeWorkflow/abc",
            max_retries=7,
        )
        assert subscription.max_retries == 7

    def test_unknown_platform(self):
        """Test unknown platforms are rejected."""
        with pytest.raises(ValueError):
            preset_subscription("ifttt", "https://a.example.com/hook")

"""
Automation subscriptions.

Process-wide registry of endpoints that want business events. Loaded from
configuration at startup, changed at runtime through add/remove, and read as
an immutable snapshot for each dispatch.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import BaseModel, Field, HttpUrl, ValidationError

from settlement_engine.contracts.types import AutomationEventType

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


@dataclass(frozen=True)
class Subscription:
    """An endpoint and the event types it accepts."""

    url: str
    events: frozenset[str]
    headers: dict[str, str] = field(default_factory=dict)
    max_retries: int = DEFAULT_MAX_RETRIES
    name: str | None = None

    def accepts(self, event_type: str) -> bool:
        return str(event_type) in self.events

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "events": sorted(self.events),
            "headers": dict(self.headers),
            "max_retries": self.max_retries,
            "name": self.name,
        }


class SubscriptionConfig(BaseModel):
    """Validated subscription definition (settings JSON, admin API)."""

    url: HttpUrl
    events: list[str] = Field(..., min_length=1)
    headers: dict[str, str] = Field(default_factory=dict)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1, le=10)
    name: str | None = None

    def to_subscription(self) -> Subscription:
        return Subscription(
            url=str(self.url),
            events=frozenset(self.events),
            headers=dict(self.headers),
            max_retries=self.max_retries,
            name=self.name,
        )


# Ready-made subscriptions for common automation platforms
PRESETS: dict[str, dict[str, Any]] = {
    "zapier": {
        "events": [
            AutomationEventType.PAYMENT_SUCCESS.value,
            AutomationEventType.PAYMENT_FAILED.value,
            AutomationEventType.PAYOUT_SUCCESS.value,
            AutomationEventType.PAYOUT_FAILED.value,
        ],
        "headers": {"User-Agent": "Settlement-Zapier-Integration/1.0"},
        "max_retries": 3,
    },
    "n8n": {
        "events": [
            AutomationEventType.PAYMENT_SUCCESS.value,
            AutomationEventType.PAYMENT_FAILED.value,
            AutomationEventType.ORDER_CREATED.value,
            AutomationEventType.ORDER_COMPLETED.value,
        ],
        "headers": {"X-N8N-Source": "settlement"},
        "max_retries": 5,
    },
    "buildship": {
        "events": [
            AutomationEventType.PAYMENT_SUCCESS.value,
            AutomationEventType.SELLER_PAYOUT.value,
            AutomationEventType.CUSTOMER_NOTIFICATION.value,
        ],
        "headers": {"X-BuildShip-Source": "settlement"},
        "max_retries": 3,
    },
}


def preset_subscription(platform: str, url: str, **overrides: Any) -> Subscription:
    """
    Build a subscription from a platform preset.

    Raises:
        ValueError: unknown platform
    """
    if platform not in PRESETS:
        raise ValueError(f"Unknown automation platform: {platform} (expected one of {sorted(PRESETS)})")
    config = {**PRESETS[platform], "name": platform, **overrides, "url": url}
    return SubscriptionConfig(**config).to_subscription()


class SubscriptionRegistry:
    """
    Thread-safe set of subscriptions keyed by URL.

    Adding a subscription for a URL that is already registered replaces it.
    """

    def __init__(self, subscriptions: Iterable[Subscription] = ()):
        self._lock = threading.Lock()
        self._subscriptions: dict[str, Subscription] = {}
        for subscription in subscriptions:
            self._subscriptions[subscription.url] = subscription

    def add_subscription(self, subscription: Subscription) -> None:
        with self._lock:
            replaced = subscription.url in self._subscriptions
            self._subscriptions[subscription.url] = subscription

        logger.info(
            f"{'Replaced' if replaced else 'Added'} automation subscription",
            extra={"url": subscription.url, "events": sorted(subscription.events)},
        )

    def remove_subscription(self, url: str) -> bool:
        """Remove by URL. Returns False if it wasn't registered."""
        with self._lock:
            removed = self._subscriptions.pop(url, None)

        if removed:
            logger.info(f"Removed automation subscription", extra={"url": url})
        return removed is not None

    def get(self, url: str) -> Subscription | None:
        with self._lock:
            return self._subscriptions.get(url)

    def snapshot(self) -> tuple[Subscription, ...]:
        """All subscriptions at this moment. Later changes don't affect it."""
        with self._lock:
            return tuple(self._subscriptions.values())

    def matching(self, event_type: str) -> tuple[Subscription, ...]:
        return tuple(s for s in self.snapshot() if s.accepts(event_type))

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def load(self, raw: str | list[dict[str, Any]]) -> int:
        """
        Load subscriptions from configuration (JSON text or decoded list).

        Entries may name a ``preset`` (zapier, n8n, buildship) instead of
        listing events.

        Raises:
            ValueError: invalid JSON or an invalid entry

        Returns:
            Number of subscriptions loaded
        """
        if isinstance(raw, str):
            try:
                raw = json.loads(raw or "[]")
            except json.JSONDecodeError as e:
                raise ValueError(f"AUTOMATION_SUBSCRIPTIONS is not valid JSON: {e}") from e

        if not isinstance(raw, list):
            raise ValueError("AUTOMATION_SUBSCRIPTIONS must be a JSON list")

        loaded = []
        for entry in raw:
            try:
                if isinstance(entry, dict) and entry.get("preset"):
                    entry = dict(entry)
                    platform = entry.pop("preset")
                    url = entry.pop("url", None)
                    if not url:
                        raise ValueError(f"{platform} subscription needs a url")
                    loaded.append(preset_subscription(platform, url, **entry))
                else:
                    loaded.append(SubscriptionConfig.model_validate(entry).to_subscription())
            except ValidationError as e:
                raise ValueError(f"Invalid subscription {entry!r}: {e}") from e

        for subscription in loaded:
            self.add_subscription(subscription)
        return len(loaded)

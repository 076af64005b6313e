"""
Dead letter queue for exhausted deliveries.

A Redis stream; each entry is one (event, endpoint) pair that ran out of
retries. Entries are replayed with the CLI and deleted once delivered.
"""

import json
import logging
from typing import Any

import redis

from settlement_engine.contracts.envelope import AutomationEvent

logger = logging.getLogger(__name__)

DLQ_STREAM = "settlement:dispatch:dlq"


class DeadLetterQueue:
    """
    Redis stream of deliveries that exhausted their retries.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        stream_name: str = DLQ_STREAM,
        max_len: int = 100000,
    ):
        self.redis = redis_client
        self.stream_name = stream_name
        self.max_len = max_len

    def publish(
        self,
        event: AutomationEvent,
        url: str,
        attempts: int,
        error: str | None,
    ) -> str:
        """
        Publish an exhausted delivery.

        Only the URL is stored, not the subscription headers (they may hold
        credentials); replay looks the subscription up again.

        Returns:
            Stream message ID
        """
        data = {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "url": url,
            "attempts": str(attempts),
            "error": error or "",
            "event": json.dumps(event.to_dict(), default=str),
        }

        msg_id = self.redis.xadd(
            self.stream_name,
            data,
            maxlen=self.max_len,
            approximate=True,
        )

        logger.info(
            f"Published exhausted delivery to DLQ",
            extra={"event_id": event.event_id, "url": url, "stream_msg_id": msg_id},
        )
        return msg_id

    def read(self, count: int = 10) -> list[tuple[str, dict[str, Any]]]:
        """
        Oldest entries first.

        Returns:
            (message id, entry) pairs; entry["event"] is an AutomationEvent
        """
        entries = []
        for msg_id, data in self.redis.xrange(self.stream_name, count=count):
            entry = dict(data)
            entry["attempts"] = int(entry.get("attempts", 0))
            entry["event"] = AutomationEvent.from_dict(json.loads(entry["event"]))
            entries.append((msg_id, entry))
        return entries

    def remove(self, msg_id: str) -> int:
        return self.redis.xdel(self.stream_name, msg_id)

    def size(self) -> int:
        return self.redis.xlen(self.stream_name)

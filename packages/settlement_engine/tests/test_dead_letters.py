"""
Tests for the dead letter queue.
"""

import json
from unittest.mock import MagicMock

from settlement_engine.contracts.envelope import AutomationEvent
from settlement_engine.dispatch.dead_letters import DLQ_STREAM, DeadLetterQueue


class TestDeadLetterQueue:
    """Tests for dead letter publishing and reading."""

    def test_publish(self):
        """Test an exhausted delivery is added to the stream."""
        redis_client = MagicMock()
        redis_client.xadd.return_value = "1700000000000-0"
        queue = DeadLetterQueue(redis_client, max_len=500)
        event = AutomationEvent.create("payout.failed", "transfer.failed:PAYOUT_1", {"amount": "10.00"})

        msg_id = queue.publish(event, "https://hooks.example.com/b", 3, "Endpoint returned HTTP 500")

        assert msg_id == "1700000000000-0"
        args, kwargs = redis_client.xadd.call_args
        assert args[0] == DLQ_STREAM
        fields = args[1]
        assert fields["event_id"] == "transfer.failed:PAYOUT_1"
        assert fields["url"] == "https://hooks.example.com/b"
        assert fields["attempts"] == "3"
        assert json.loads(fields["event"])["data"] == {"amount": "10.00"}
        assert kwargs == {"maxlen": 500, "approximate": True}

    def test_publish_stores_no_headers(self):
        """Test subscription headers never reach the stream."""
        redis_client = MagicMock()
        queue = DeadLetterQueue(redis_client)
        event = AutomationEvent.create("payment.success", "charge.success:R", {})

        queue.publish(event, "https://hooks.example.com/a", 1, None)

        fields = redis_client.xadd.call_args.args[1]
        assert set(fields) == {"event_id", "event_type", "url", "attempts", "error", "event"}
        assert fields["error"] == ""

    def test_read(self):
        """Test entries are decoded back into events."""
        event = AutomationEvent.create("payment.success", "charge.success:R", {"reference": "R"})
        redis_client = MagicMock()
        redis_client.xrange.return_value = [
            (
                "1-0",
                {
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "url": "https://hooks.example.com/a",
                    "attempts": "3",
                    "error": "timeout",
                    "event": json.dumps(event.to_dict()),
                },
            )
        ]
        queue = DeadLetterQueue(redis_client)

        ((msg_id, entry),) = queue.read(count=5)

        redis_client.xrange.assert_called_once_with(DLQ_STREAM, count=5)
        assert msg_id == "1-0"
        assert entry["attempts"] == 3
        assert entry["event"].event_id == "charge.success:R"
        assert entry["event"].data == {"reference": "R"}
        assert entry["event"].timestamp == event.timestamp

    def test_remove_and_size(self):
        """Test removal and length."""
        redis_client = MagicMock()
        redis_client.xdel.return_value = 1
        redis_client.xlen.return_value = 4
        queue = DeadLetterQueue(redis_client, stream_name="custom:dlq")

        assert queue.remove("1-0") == 1
        redis_client.xdel.assert_called_once_with("custom:dlq", "1-0")
        assert queue.size() == 4

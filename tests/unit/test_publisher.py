"""Tests for the SQS notification publisher."""

import json
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from wildcert.exceptions import DeliveryFailed
from wildcert.notify.publisher import NotificationPublisher
from wildcert.retry import BackoffPolicy

QUEUE_URL = "https://sqs.eu-west-1.amazonaws.com/123456789012/cert-events"
ISSUED_AT = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)


def _publisher(client, queue_url=QUEUE_URL):
    sleep = MagicMock()
    publisher = NotificationPublisher(
        queue_url,
        policy=BackoffPolicy(max_attempts=3, base_delay=1.0),
        sqs_client=client,
        sleep=sleep,
    )
    return publisher, sleep


def _error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "SendMessage")


class TestAnnounce:
    """Tests for NotificationPublisher.announce."""

    def test_message_sent(self):
        """Test the message body and attributes."""
        client = MagicMock()
        client.send_message.return_value = {"MessageId": "msg-1"}
        publisher, _ = _publisher(client)

        message_id = publisher.announce(4, "*.example.com", ISSUED_AT)

        assert message_id == "msg-1"
        kwargs = client.send_message.call_args.kwargs
        assert kwargs["QueueUrl"] == QUEUE_URL
        body = json.loads(kwargs["MessageBody"])
        assert body["version"] == 4
        assert body["domain_pattern"] == "*.example.com"
        assert body["message_type"] == "certificate.version.committed"
        assert kwargs["MessageAttributes"]["version"] == {
            "DataType": "Number",
            "StringValue": "4",
        }
        assert "MessageGroupId" not in kwargs

    def test_fifo_queue(self):
        """Test FIFO queues get group and deduplication IDs."""
        client = MagicMock()
        client.send_message.return_value = {"MessageId": "msg-1"}
        publisher, _ = _publisher(client, queue_url=QUEUE_URL + ".fifo")

        publisher.announce(4, "*.example.com", ISSUED_AT)

        kwargs = client.send_message.call_args.kwargs
        assert kwargs["MessageGroupId"] == "*.example.com"
        assert kwargs["MessageDeduplicationId"] == "*.example.com#4"

    def test_transient_error_retried(self):
        """Test throttling is retried."""
        client = MagicMock()
        client.send_message.side_effect = [
            _error("ThrottlingException"),
            {"MessageId": "msg-2"},
        ]
        publisher, sleep = _publisher(client)

        assert publisher.announce(1, "*.example.com", ISSUED_AT) == "msg-2"
        sleep.assert_called_once_with(1.0)

    def test_connection_error_exhausted(self):
        """Test persistent network errors fail as retryable."""
        client = MagicMock()
        client.send_message.side_effect = EndpointConnectionError(
            endpoint_url=QUEUE_URL
        )
        publisher, sleep = _publisher(client)

        with pytest.raises(DeliveryFailed) as exc_info:
            publisher.announce(1, "*.example.com", ISSUED_AT)

        assert exc_info.value.permanent is False
        assert exc_info.value.retryable is True
        assert client.send_message.call_count == 3
        assert sleep.call_count == 2

    def test_permanent_error_not_retried(self):
        """Test a missing queue fails at once."""
        client = MagicMock()
        client.send_message.side_effect = _error(
            "AWS.SimpleQueueService.NonExistentQueue"
        )
        publisher, sleep = _publisher(client)

        with pytest.raises(DeliveryFailed) as exc_info:
            publisher.announce(1, "*.example.com", ISSUED_AT)

        assert exc_info.value.permanent is True
        client.send_message.assert_called_once()
        sleep.assert_not_called()

    def test_no_queue_configured(self):
        """Test an empty queue URL is a permanent failure."""
        client = MagicMock()
        publisher, _ = _publisher(client, queue_url="")

        with pytest.raises(DeliveryFailed, match="No notification queue"):
            publisher.announce(1, "*.example.com", ISSUED_AT)

        client.send_message.assert_not_called()

    def test_policy_without_attempts(self):
        """Test a policy that allows no sends is rejected up front."""
        with pytest.raises(ValueError, match="at least one attempt"):
            NotificationPublisher(
                QUEUE_URL,
                policy=BackoffPolicy(max_attempts=0),
                sqs_client=MagicMock(),
            )

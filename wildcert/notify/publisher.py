"""Announce committed certificate versions on an SQS queue."""

import logging
import time
from collections.abc import Callable
from datetime import datetime

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from wildcert.exceptions import DeliveryFailed
from wildcert.models import NotificationMessage
from wildcert.retry import BackoffPolicy

logger = logging.getLogger(__name__)

DEFAULT_POLICY = BackoffPolicy(max_attempts=3, base_delay=1.0)

# SQS error codes that will not go away by retrying
PERMANENT_ERROR_CODES = frozenset(
    {
        "AWS.SimpleQueueService.NonExistentQueue",
        "QueueDoesNotExist",
        "AccessDenied",
        "AccessDeniedException",
        "InvalidParameterValue",
        "KMS.AccessDeniedException",
    }
)


class NotificationPublisher:
    """
    Sends NotificationMessages to downstream consumers.

    Delivery is at-least-once: a retried send may duplicate a message, and
    consumers deduplicate on NotificationMessage.dedup_key. FIFO queues get
    the key as MessageDeduplicationId so SQS drops duplicates itself.
    """

    def __init__(
        self,
        queue_url: str,
        policy: BackoffPolicy = DEFAULT_POLICY,
        sqs_client=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the publisher.

        Args:
            queue_url: SQS queue URL
            policy: Retry policy for transient delivery errors
            sqs_client: Optional boto3 SQS client (for testing)
            sleep: Sleep function (for testing)
        """
        if policy.max_attempts < 1:
            raise ValueError("Notification policy needs at least one attempt")
        self.queue_url = queue_url
        self.policy = policy
        self._sqs_client = sqs_client
        self._sleep = sleep

    @property
    def sqs_client(self):
        """Lazy-load SQS client."""
        if self._sqs_client is None:
            self._sqs_client = boto3.client("sqs")
        return self._sqs_client

    @property
    def is_fifo(self) -> bool:
        """Check if the queue is a FIFO queue."""
        return self.queue_url.endswith(".fifo")

    def _send_args(self, message: NotificationMessage) -> dict:
        args = {
            "QueueUrl": self.queue_url,
            "MessageBody": message.to_body(),
            "MessageAttributes": {
                "message_type": {
                    "DataType": "String",
                    "StringValue": message.message_type,
                },
                "domain_pattern": {
                    "DataType": "String",
                    "StringValue": message.domain_pattern,
                },
                "version": {"DataType": "Number", "StringValue": str(message.version)},
            },
        }
        if self.is_fifo:
            args["MessageGroupId"] = message.domain_pattern
            args["MessageDeduplicationId"] = message.dedup_key
        return args

    def announce(
        self, version: int, domain_pattern: str, issued_at: datetime
    ) -> str:
        """
        Publish a message for a committed version.

        Args:
            version: Committed version number
            domain_pattern: Domain pattern of the certificate
            issued_at: Issue time of the version

        Returns:
            SQS message ID

        Raises:
            DeliveryFailed: If the queue rejects the message permanently, or
                transient errors persist beyond the retry policy
        """
        if not self.queue_url:
            raise DeliveryFailed("No notification queue configured", permanent=True)

        message = NotificationMessage(
            version=version, domain_pattern=domain_pattern, issued_at=issued_at
        )
        args = self._send_args(message)

        for attempt in range(self.policy.max_attempts):
            try:
                response = self.sqs_client.send_message(**args)
                message_id = response["MessageId"]
                logger.info(
                    f"Announced version {version} of {domain_pattern} "
                    f"(message {message_id})"
                )
                return message_id
            except ClientError as e:
                code = e.response.get("Error", {}).get("Code", "")
                if code in PERMANENT_ERROR_CODES:
                    raise DeliveryFailed(
                        f"Queue {self.queue_url} rejected notification: {code}",
                        permanent=True,
                    ) from e
                error = e
            except BotoCoreError as e:
                error = e

            if self.policy.has_attempts_left(attempt):
                delay = self.policy.delay(attempt)
                logger.warning(
                    f"Notification attempt {attempt + 1} failed: {error}, "
                    f"retrying in {delay:.0f}s"
                )
                self._sleep(delay)

        raise DeliveryFailed(
            f"Failed to announce version {version} of {domain_pattern} after "
            f"{self.policy.max_attempts} attempts: {error}"
        )

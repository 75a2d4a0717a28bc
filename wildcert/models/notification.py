"""Notification message announcing a new certificate version."""

from datetime import datetime

from pydantic import BaseModel, Field

MESSAGE_TYPE = "certificate.version.committed"


class NotificationMessage(BaseModel):
    """
    Message published after a certificate version is committed.

    Delivery is at-least-once, so consumers deduplicate on dedup_key.
    """

    version: int = Field(..., ge=1)
    domain_pattern: str
    issued_at: datetime
    message_type: str = MESSAGE_TYPE

    @property
    def dedup_key(self) -> str:
        """Idempotency key for consumers."""
        return f"{self.domain_pattern}#{self.version}"

    def to_body(self) -> str:
        """Serialize to a queue message body."""
        return self.model_dump_json()

    @classmethod
    def from_body(cls, body: str) -> "NotificationMessage":
        """Parse a queue message body."""
        return cls.model_validate_json(body)

"""Data models for the certificate lifecycle engine."""

from wildcert.models.artifact import (
    ArtifactVersion,
    CertificateArtifact,
    split_fullchain,
)
from wildcert.models.notification import MESSAGE_TYPE, NotificationMessage
from wildcert.models.order import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Order,
    OrderStatus,
)
from wildcert.models.request import (
    CHALLENGE_LABEL,
    CertificateRequest,
    ChallengeRecord,
    domain_key,
    validation_name,
)
from wildcert.models.result import CycleResult, CycleStatus

__all__ = [  # noqa: RUF022
    # Request models
    "CertificateRequest",
    "ChallengeRecord",
    "CHALLENGE_LABEL",
    "domain_key",
    "validation_name",
    # Order models
    "Order",
    "OrderStatus",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    # Artifact models
    "ArtifactVersion",
    "CertificateArtifact",
    "split_fullchain",
    # Notification models
    "NotificationMessage",
    "MESSAGE_TYPE",
    # Result models
    "CycleResult",
    "CycleStatus",
]

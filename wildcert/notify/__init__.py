"""Downstream notification of committed certificate versions."""

from wildcert.notify.publisher import NotificationPublisher

__all__ = ["NotificationPublisher"]

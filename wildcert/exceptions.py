"""Error taxonomy for the certificate lifecycle engine."""


class CertificateLifecycleError(Exception):
    """Base exception for certificate lifecycle errors."""

    retryable = False

    @property
    def reason(self) -> str:
        """Short human-readable reason for structured results."""
        return str(self) or self.__class__.__name__


class TransientNetworkError(CertificateLifecycleError):
    """Network error or temporary server-side failure."""

    retryable = True


class RateLimited(CertificateLifecycleError):
    """Rate limited by the certificate authority."""

    retryable = True

    def __init__(self, message: str = "", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class DnsProvisionFailed(CertificateLifecycleError):
    """Challenge record could not be written or was not observed in DNS."""

    retryable = True


class OrderFailed(CertificateLifecycleError):
    """ACME order was abandoned; needs a fresh order."""

    def __init__(self, message: str = "", order_url: str | None = None):
        super().__init__(message)
        self.order_url = order_url


class InvalidOrderTransition(OrderFailed):
    """Order status change that the ACME state machine does not allow."""


class OrderInProgress(CertificateLifecycleError):
    """Another order is outstanding for the same domain pattern."""


class ArtifactWriteFailed(CertificateLifecycleError):
    """Certificate artifact could not be durably committed."""

    retryable = True


class ConcurrentUpdateError(ArtifactWriteFailed):
    """Current-version pointer was moved by another writer."""


class DeliveryFailed(CertificateLifecycleError):
    """Notification could not be delivered to the queue."""

    def __init__(self, message: str = "", permanent: bool = False):
        super().__init__(message)
        self.permanent = permanent
        self.retryable = not permanent


class CycleTimeout(CertificateLifecycleError):
    """Issuance cycle ran past its deadline."""

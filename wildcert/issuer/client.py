"""ACME client wrapper with error translation."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import josepy as jose
import requests
from acme import challenges, errors, messages
from acme import client as acme_client

from wildcert.exceptions import (
    OrderFailed,
    RateLimited,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 45

# ACME problem codes worth retrying on the same order
TRANSIENT_PROBLEM_CODES = frozenset({"serverInternal", "badNonce"})


def parse_retry_after(value: str | None) -> float | None:
    """
    Seconds to wait from a Retry-After header.

    Accepts delay-seconds or an HTTP date. Returns None if the header is
    missing or unreadable.
    """
    if not value:
        return None
    try:
        return max(float(int(value)), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max((when - datetime.now(UTC)).total_seconds(), 0.0)


class RateLimitAwareNetwork(acme_client.ClientNetwork):
    """ClientNetwork that keeps the Retry-After hint of rate-limit responses."""

    @classmethod
    def _check_response(cls, response, content_type=None):
        try:
            return super()._check_response(response, content_type=content_type)
        except messages.Error as e:
            if e.code != "rateLimited":
                raise
            raise RateLimited(
                e.detail or str(e),
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            ) from e


@contextmanager
def translate_acme_errors(action: str, order_url: str | None = None) -> Iterator[None]:
    """
    Map acme and requests exceptions onto the lifecycle error taxonomy.

    Args:
        action: What was being attempted, for error messages
        order_url: Order the request belongs to, if any
    """
    try:
        yield
    except RateLimited as e:
        raise RateLimited(
            f"Rate limited while {action}: {e}", retry_after=e.retry_after
        ) from e
    except messages.Error as e:
        if e.code == "rateLimited":
            raise RateLimited(f"Rate limited while {action}: {e.detail or e}") from e
        if e.code in TRANSIENT_PROBLEM_CODES:
            raise TransientNetworkError(f"CA error while {action}: {e}") from e
        raise OrderFailed(f"CA rejected {action}: {e}", order_url=order_url) from e
    except errors.IssuanceError as e:
        raise OrderFailed(
            f"Issuance failed while {action}: {e.error}", order_url=order_url
        ) from e
    except errors.ConflictError:
        raise
    except errors.ClientError as e:
        raise TransientNetworkError(
            f"Unexpected CA response while {action}: {e}"
        ) from e
    except requests.RequestException as e:
        raise TransientNetworkError(f"Network error while {action}: {e}") from e


class AcmeClient:
    """ACME v2 client for a single account."""

    def __init__(
        self,
        directory_url: str,
        account_key: jose.JWK,
        contact_email: str = "",
        user_agent: str = "wildcert",
        timeout: int = DEFAULT_TIMEOUT,
    ):
        """
        Initialize ACME client.

        Args:
            directory_url: ACME directory URL of the certificate authority
            account_key: Account JWK
            contact_email: Contact address for the account
            user_agent: User-Agent header sent to the CA
            timeout: Request timeout in seconds
        """
        self.directory_url = directory_url
        self.account_key = account_key
        self.contact_email = contact_email
        self.user_agent = user_agent
        self.timeout = timeout
        self._client: acme_client.ClientV2 | None = None
        self._net: RateLimitAwareNetwork | None = None

    def __enter__(self) -> "AcmeClient":
        """Context manager entry."""
        self._net = RateLimitAwareNetwork(
            self.account_key, user_agent=self.user_agent, timeout=self.timeout
        )
        with translate_acme_errors("fetching ACME directory"):
            directory = acme_client.ClientV2.get_directory(
                self.directory_url, self._net
            )
        self._client = acme_client.ClientV2(directory, self._net)
        self.register_account()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        if self._net is not None:
            self._net.session.close()
        self._client = None
        self._net = None

    @property
    def client(self) -> acme_client.ClientV2:
        """Get the ACME client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("AcmeClient must be used as context manager")
        return self._client

    def register_account(self) -> messages.RegistrationResource:
        """
        Register the account, or re-use it if the key is already registered.

        Returns:
            Account registration resource
        """
        registration = messages.NewRegistration.from_data(
            email=self.contact_email or None, terms_of_service_agreed=True
        )
        try:
            with translate_acme_errors("registering account"):
                regr = self.client.new_account(registration)
            logger.info(f"Registered ACME account {regr.uri}")
        except errors.ConflictError as e:
            # Key already registered; the location is the account URL
            regr = messages.RegistrationResource(
                uri=str(e.location), body=messages.Registration()
            )
            self.client.net.account = regr
            logger.info(f"Using existing ACME account {regr.uri}")
        return regr

    def _post_as_get(self, url: str, **kwargs) -> requests.Response:
        return self.client.net.post(
            url, None, new_nonce_url=self.client.directory["newNonce"], **kwargs
        )

    def new_order(self, csr_pem: bytes) -> messages.OrderResource:
        """Create a new order for the names in the CSR."""
        with translate_acme_errors("creating order"):
            return self.client.new_order(csr_pem)

    def poll_authorization(
        self, authzr: messages.AuthorizationResource
    ) -> messages.AuthorizationResource:
        """Fetch the current state of an authorization."""
        with translate_acme_errors(f"polling authorization {authzr.uri}"):
            updated, _ = self.client.poll(authzr)
        return updated

    def dns_challenge(
        self, authzr: messages.AuthorizationResource
    ) -> tuple[messages.ChallengeBody, str] | None:
        """
        Select the DNS-01 challenge of an authorization.

        Returns:
            Tuple of (challenge body, TXT record value), or None if the CA
            did not offer DNS-01
        """
        for challb in authzr.body.challenges:
            if isinstance(challb.chall, challenges.DNS01):
                return challb, challb.chall.validation(self.account_key)
        return None

    def answer_challenge(self, challb: messages.ChallengeBody) -> None:
        """Tell the CA the challenge is ready to be validated."""
        response = challb.chall.response(self.account_key)
        with translate_acme_errors(f"answering challenge {challb.uri}"):
            self.client.answer_challenge(challb, response)

    def fetch_order(
        self, orderr: messages.OrderResource
    ) -> messages.OrderResource:
        """Fetch the current state of an order."""
        with translate_acme_errors("polling order", order_url=orderr.uri):
            response = self._post_as_get(orderr.uri)
            body = messages.Order.from_json(response.json())
        return orderr.update(body=body)

    def begin_finalization(
        self, orderr: messages.OrderResource
    ) -> messages.OrderResource:
        """Submit the CSR to finalize a ready order."""
        with translate_acme_errors("finalizing order", order_url=orderr.uri):
            return self.client.begin_finalization(orderr)

    def download_certificate(self, orderr: messages.OrderResource) -> str:
        """
        Download the fullchain PEM of a valid order.

        Raises:
            OrderFailed: If the order has no certificate URL
        """
        url = orderr.body.certificate
        if not url:
            raise OrderFailed(
                "Valid order has no certificate URL", order_url=orderr.uri
            )
        with translate_acme_errors("downloading certificate", order_url=orderr.uri):
            response = self._post_as_get(url)
        return response.text
